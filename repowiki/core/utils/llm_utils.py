"""LLM utility functions shared by the pipeline modules."""

import logging
import threading
import time
from typing import Optional

from llama_index.core import Settings

from ..constants import DEFAULT_LLM_TIMEOUT_SECONDS
from ..exceptions import OperationCancelled

logger = logging.getLogger(__name__)


def resolve_llm(llm=None):
    """Return the given LLM or the globally configured one."""
    llm = llm or Settings.llm
    if llm is None:
        raise RuntimeError("No LLM configured")
    return llm


def stream_text(
    llm,
    prompt: str,
    cancel_event: Optional[threading.Event] = None,
    timeout: Optional[float] = DEFAULT_LLM_TIMEOUT_SECONDS,
    purpose: str = "general",
) -> str:
    """Stream a completion and return the concatenated text.

    The cancel event and the deadline are checked between chunks, so a
    cancelled or overdue call stops at the next chunk boundary.

    Raises:
        OperationCancelled: cancel_event was set mid-stream
        TimeoutError: the call ran past ``timeout`` seconds
    """
    llm = resolve_llm(llm)
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelled("Cancelled before LLM call")

    deadline = time.monotonic() + timeout if timeout else None
    kwargs = {"gateway_purpose": purpose} if hasattr(llm, "get_metrics") else {}
    parts = []

    for chunk in llm.stream_complete(prompt, **kwargs):
        if chunk.delta:
            parts.append(chunk.delta)
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled("Cancelled during LLM stream")
        if deadline is not None and time.monotonic() > deadline:
            raise TimeoutError(f"LLM call exceeded {timeout:.0f}s")

    return "".join(parts)
