"""Tolerant extraction of structured payloads from model output.

Models wrap answers in prose, XML-ish tags or markdown fences. Extraction
tries, in order: the innermost ``<tag>...</tag>`` block, a fenced code
block (``json`` fences first), then the raw text. JSON decoding falls back to the
outermost bracket pair before giving up with ``LLMOutputParseError``.
"""

import json
import logging
import re
from typing import Any, List, Optional

from ..exceptions import LLMOutputParseError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*[ \t]*\n?(.*?)```", re.DOTALL)
_JSON_FENCE_RE = re.compile(r"```json[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)


def _innermost_tag_block(text: str, tag: str) -> Optional[str]:
    """Return the content of the innermost <tag>...</tag> pair, if any."""
    open_tag = f"<{tag}>"
    close_tag = f"</{tag}>"
    end = text.find(close_tag)
    if end < 0:
        return None
    start = text.rfind(open_tag, 0, end)
    if start < 0:
        return None
    return text[start + len(open_tag):end]


def _innermost_fence_block(text: str) -> Optional[str]:
    """Return a ```json block when present, else the first non-empty fence."""
    json_match = _JSON_FENCE_RE.search(text)
    if json_match:
        return json_match.group(1)
    matches: List[str] = [m for m in _FENCE_RE.findall(text) if m.strip()]
    return matches[0] if matches else None


def extract_block(text: str, tag: Optional[str] = None, unwrap_fence: bool = True) -> str:
    """Pick the payload out of model output: tag, then fence, then raw.

    Pass ``unwrap_fence=False`` for Markdown payloads, whose own code blocks
    must survive; only the tag is stripped then.
    """
    if text is None:
        raise LLMOutputParseError("Empty model output")

    if tag:
        tagged = _innermost_tag_block(text, tag)
        if tagged is not None:
            if not unwrap_fence:
                return tagged.strip()
            # Tagged content may itself be fenced
            fenced = _innermost_fence_block(tagged)
            return (fenced if fenced is not None else tagged).strip()

    if not unwrap_fence:
        return text.strip()

    fenced = _innermost_fence_block(text)
    if fenced is not None:
        return fenced.strip()

    return text.strip()


def _repair_json(cleaned: str) -> Any:
    for open_char, close_char in (("{", "}"), ("[", "]")):
        start = cleaned.find(open_char)
        end = cleaned.rfind(close_char)
        if start >= 0 and end > start:
            try:
                return json.loads(cleaned[start:end + 1])
            except json.JSONDecodeError:
                continue
    raise LLMOutputParseError("No JSON payload found in model output", cleaned)


def parse_json_block(text: str, tag: Optional[str] = None, expect: Optional[type] = None) -> Any:
    """Extract and decode a JSON payload.

    Args:
        text: Raw model output
        tag: Optional tag name to look for first (e.g. ``"changelog"``)
        expect: Optional required top-level type (``dict`` or ``list``)

    Raises:
        LLMOutputParseError: nothing decodable, or the wrong top-level type
    """
    cleaned = extract_block(text, tag)
    if not cleaned:
        raise LLMOutputParseError("Empty payload in model output", text or "")

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning(f"JSON parse failed: {e}. Attempting repair.")
        parsed = _repair_json(cleaned)

    if expect is not None and not isinstance(parsed, expect):
        raise LLMOutputParseError(
            f"Expected JSON {expect.__name__}, got {type(parsed).__name__}", cleaned
        )
    return parsed
