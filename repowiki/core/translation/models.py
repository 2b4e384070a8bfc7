"""Result and status types returned by the translation manager."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..utils import utcnow


@dataclass
class TranslationResult:
    """Outcome of one translation run."""
    target_id: str
    target_language: str
    source_language: str
    success: bool = False
    catalogs_translated: int = 0
    files_translated: int = 0
    error_message: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


@dataclass
class LanguageStatus:
    """Translation state of one warehouse in one language."""
    language_code: str
    status: str                 # none | generating | completed | failed
    exists: bool
    progress: int = 0
    last_generated: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "language_code": self.language_code,
            "status": self.status,
            "exists": self.exists,
            "progress": self.progress,
            "last_generated": self.last_generated.isoformat() if self.last_generated else None,
        }
