"""Translation of generated documentation into other languages."""

from .manager import TranslationTaskManager, in_flight_key
from .models import LanguageStatus, TranslationResult
from .registry import CancellationRegistry
from .translator import Translator, language_name

__all__ = [
    "CancellationRegistry",
    "LanguageStatus",
    "TranslationResult",
    "TranslationTaskManager",
    "Translator",
    "in_flight_key",
    "language_name",
]
