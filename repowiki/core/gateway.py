"""LLM Gateway: the single path every model call in the pipeline takes.

Any LlamaIndex LLM is wrapped as a CustomLLM so it can be installed as
``Settings.llm``. Callers tag each call with a purpose (``catalogue``,
``document``, ``changelog``, ``translation``, ``minimap``) through the
``gateway_purpose`` keyword; the gateway strips it before the provider
sees the call.

Features:
- Per-purpose call statistics (count, characters, latency, errors)
- Streams abandoned by the consumer (cancellation, deadline) counted apart
  from provider errors
- Transport-level retry with exponential backoff for blocking calls
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Generator

import backoff
import httpx
import openai
from llama_index.core.base.llms.types import CompletionResponse, LLMMetadata
from llama_index.core.llms import CustomLLM

logger = logging.getLogger(__name__)

RETRYABLE_EXCEPTIONS = (
    TimeoutError,
    ConnectionError,
    httpx.TransportError,
    openai.APIConnectionError,
    openai.RateLimitError,
)
MAX_TRIES = 3
DEFAULT_PURPOSE = "general"


@dataclass
class PurposeStats:
    calls: int = 0
    errors: int = 0
    abandoned: int = 0
    chars_in: int = 0
    chars_out: int = 0
    latency_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "calls": self.calls,
            "errors": self.errors,
            "abandoned": self.abandoned,
            "chars_in": self.chars_in,
            "chars_out": self.chars_out,
            "avg_latency_ms": round(self.latency_ms / max(self.calls, 1), 1),
        }


@dataclass
class GatewayMetrics:
    retries: int = 0
    by_purpose: Dict[str, PurposeStats] = field(default_factory=dict)

    def stats(self, purpose: str) -> PurposeStats:
        if purpose not in self.by_purpose:
            self.by_purpose[purpose] = PurposeStats()
        return self.by_purpose[purpose]

    def to_dict(self) -> dict:
        purposes = {name: s.to_dict() for name, s in sorted(self.by_purpose.items())}
        return {
            "total_calls": sum(s.calls for s in self.by_purpose.values()),
            "errors": sum(s.errors for s in self.by_purpose.values()),
            "abandoned": sum(s.abandoned for s in self.by_purpose.values()),
            "retries": self.retries,
            "purposes": purposes,
        }


class LLMGateway(CustomLLM):
    """Transparent LLM proxy that records what each pipeline stage spends.

    Usage:
        gateway = LLMGateway(OpenAI(model="gpt-4o-mini"))
        Settings.llm = gateway
        gateway.get_metrics()["purposes"]["changelog"]
    """

    # CustomLLM is a Pydantic model; private state is set with object.__setattr__
    _llm: Any = None
    _metrics: GatewayMetrics = None
    _lock: threading.Lock = None

    def __init__(self, llm: Any, **kwargs):
        super().__init__(**kwargs)
        object.__setattr__(self, "_llm", llm)
        object.__setattr__(self, "_metrics", GatewayMetrics())
        object.__setattr__(self, "_lock", threading.Lock())
        logger.info(f"LLM gateway installed over {type(llm).__name__} ({self.model})")

    @property
    def metadata(self) -> LLMMetadata:
        return self._llm.metadata

    @property
    def model(self) -> str:
        return getattr(self._llm, "model", "unknown")

    @property
    def wrapped(self) -> Any:
        return self._llm

    def complete(self, prompt: str, formatted: bool = False, **kwargs: Any) -> CompletionResponse:
        purpose = kwargs.pop("gateway_purpose", DEFAULT_PURPOSE)
        started = time.monotonic()

        @backoff.on_exception(
            backoff.expo, RETRYABLE_EXCEPTIONS, max_tries=MAX_TRIES, on_backoff=self._on_retry,
        )
        def _call():
            return self._llm.complete(prompt, formatted=formatted, **kwargs)

        try:
            response = _call()
        except Exception as e:
            self._record(purpose, prompt, 0, started, error=e)
            raise

        self._record(purpose, prompt, len(response.text or ""), started)
        return response

    def stream_complete(
        self, prompt: str, formatted: bool = False, **kwargs: Any
    ) -> Generator[CompletionResponse, None, None]:
        """Yield provider chunks unchanged.

        A stream cannot be replayed once chunks have been handed out, so no
        retry happens here; callers retry the whole call and parse step.
        """
        purpose = kwargs.pop("gateway_purpose", DEFAULT_PURPOSE)
        started = time.monotonic()
        out_chars = 0

        try:
            for chunk in self._llm.stream_complete(prompt, formatted=formatted, **kwargs):
                out_chars += len(chunk.delta or "")
                yield chunk
        except GeneratorExit:
            self._record(purpose, prompt, out_chars, started, abandoned=True)
            raise
        except Exception as e:
            self._record(purpose, prompt, out_chars, started, error=e)
            raise

        self._record(purpose, prompt, out_chars, started)

    def _on_retry(self, details: dict):
        with self._lock:
            self._metrics.retries += 1
        logger.warning(
            f"LLM call retry {details['tries']}/{MAX_TRIES} in {details['wait']:.1f}s "
            f"({type(details.get('exception')).__name__})"
        )

    def _record(self, purpose, prompt, out_chars, started, error=None, abandoned=False):
        latency_ms = (time.monotonic() - started) * 1000
        with self._lock:
            stats = self._metrics.stats(purpose)
            stats.calls += 1
            stats.chars_in += len(prompt)
            stats.chars_out += out_chars
            stats.latency_ms += latency_ms
            if error is not None:
                stats.errors += 1
            if abandoned:
                stats.abandoned += 1

        if error is not None:
            logger.error(f"LLM {purpose} call failed on {self.model}: {type(error).__name__}: {error}")
        elif abandoned:
            logger.info(f"LLM {purpose} stream abandoned after {out_chars} chars")
        else:
            logger.debug(
                f"LLM {purpose} call: in={len(prompt)} out={out_chars} "
                f"latency={latency_ms:.0f}ms model={self.model}"
            )

    def get_metrics(self) -> dict:
        with self._lock:
            result = self._metrics.to_dict()
        result["model"] = self.model
        return result

    def reset_metrics(self):
        with self._lock:
            object.__setattr__(self, "_metrics", GatewayMetrics())

    @classmethod
    def class_name(cls) -> str:
        return "LLMGateway"
