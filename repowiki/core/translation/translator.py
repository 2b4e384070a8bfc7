"""LLM-backed text translation with source-text fallback.

A translation unit never fails because of the model: on any LLM or
parse error the untranslated source text is kept and the error logged.
"""

import json
import logging
from typing import Dict

from ..constants import DEFAULT_LLM_TIMEOUT_SECONDS, SUPPORTED_LANGUAGES
from ..utils import extract_block, parse_json_block, stream_text
from .prompts import build_content_prompt, build_fields_prompt

logger = logging.getLogger(__name__)

TRANSLATION_TAG = "translation"


def language_name(code: str) -> str:
    for language in SUPPORTED_LANGUAGES:
        if language["code"].lower() == code.lower():
            return language["name"]
    return code


class Translator:
    """Translates short fields (one call per unit) and Markdown bodies."""

    def __init__(self, llm=None, llm_timeout: float = DEFAULT_LLM_TIMEOUT_SECONDS):
        self._llm = llm
        self.llm_timeout = llm_timeout

    def translate_fields(self, fields: Dict[str, str], target_language: str, source_language: str) -> Dict[str, str]:
        """Translate every non-blank value in one LLM pass.

        Blank values are returned unchanged and, when all are blank, no call
        is made. Keys missing from the reply keep their source text.
        """
        pending = {k: v for k, v in fields.items() if v and v.strip()}
        if not pending:
            return dict(fields)

        prompt = build_fields_prompt(
            json.dumps(pending, ensure_ascii=False, indent=2),
            language_name(source_language),
            language_name(target_language),
        )
        try:
            raw = stream_text(self._llm, prompt, timeout=self.llm_timeout, purpose="translation")
            translated = parse_json_block(raw, tag=TRANSLATION_TAG, expect=dict)
        except Exception as e:
            logger.error(f"Field translation to {target_language} failed, keeping source text: {e}")
            return dict(fields)

        result = dict(fields)
        for key in pending:
            value = translated.get(key)
            if isinstance(value, str) and value.strip():
                result[key] = value.strip()
        return result

    def translate_content(self, content: str, target_language: str, source_language: str) -> str:
        if not content or not content.strip():
            return content

        prompt = build_content_prompt(content, language_name(source_language), language_name(target_language))
        try:
            raw = stream_text(self._llm, prompt, timeout=self.llm_timeout, purpose="translation")
            translated = extract_block(raw, tag=TRANSLATION_TAG, unwrap_fence=False)
        except Exception as e:
            logger.error(f"Content translation to {target_language} failed, keeping source text: {e}")
            return content

        return translated or content
