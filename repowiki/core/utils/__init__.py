"""Shared helpers for LLM calls, output parsing and timestamps."""

from datetime import datetime, timezone

from .llm_output import extract_block, parse_json_block
from .llm_utils import resolve_llm, stream_text
from .retry import call_with_llm_retry


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


__all__ = [
    "call_with_llm_retry",
    "extract_block",
    "parse_json_block",
    "resolve_llm",
    "stream_text",
    "utcnow",
]
