"""Retry policy for LLM call + parse steps.

A step is retried as a whole (call the model, then parse its output), so
malformed output costs an attempt just like a transport error. Waits grow
as ``factor * 2 ** (attempt - 1)``: 2s then 4s with the default factor.
Cancellation is never retried.
"""

import logging
from typing import Callable, TypeVar

import backoff

from ..constants import LLM_MAX_ATTEMPTS, LLM_RETRY_FACTOR_SECONDS
from ..exceptions import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_llm_retry(
    fn: Callable[[], T],
    label: str,
    max_tries: int = LLM_MAX_ATTEMPTS,
    factor: float = LLM_RETRY_FACTOR_SECONDS,
) -> T:
    """Run ``fn`` under the LLM retry policy, re-raising the last error."""

    def _on_backoff(details: dict):
        logger.warning(
            f"{label}: attempt {details['tries']}/{max_tries} failed "
            f"({type(details.get('exception')).__name__}: {details.get('exception')}), "
            f"retrying in {details['wait']:.1f}s"
        )

    def _on_giveup(details: dict):
        exc = details.get("exception")
        if not isinstance(exc, OperationCancelled):
            logger.error(f"{label}: giving up after {details['tries']} attempts: {exc}")

    @backoff.on_exception(
        backoff.expo,
        Exception,
        max_tries=max_tries,
        factor=factor,
        jitter=None,
        giveup=lambda e: isinstance(e, OperationCancelled),
        on_backoff=_on_backoff,
        on_giveup=_on_giveup,
    )
    def _attempt():
        return fn()

    return _attempt()
