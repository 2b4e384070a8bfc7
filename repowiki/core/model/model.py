import logging
import os
from typing import Optional

from llama_index.core import Settings
from llama_index.llms.ollama import Ollama
from llama_index.llms.openai import OpenAI

from ..config import PipelineSettings
from ..gateway import LLMGateway

logger = logging.getLogger(__name__)

PROVIDERS = ("openai", "ollama")


def build_llm(settings: PipelineSettings):
    """Create the raw provider LLM named by the settings.

    Provider request timeouts follow ``llm_timeout_seconds`` so a stalled
    connection is bounded even before the first streamed chunk arrives.
    """
    provider = settings.llm_provider
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown LLM provider '{provider}', expected one of {PROVIDERS}")

    if provider == "openai":
        model = OpenAI(
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            timeout=settings.llm_timeout_seconds,
            api_key=os.getenv("OPENAI_API_KEY"),
            api_base=os.getenv("OPENAI_API_BASE") or None,
        )
    else:
        model = Ollama(
            model=settings.llm_model,
            base_url=settings.ollama_base_url,
            temperature=settings.llm_temperature,
            request_timeout=settings.llm_timeout_seconds,
        )

    logger.info(f"Created {provider.upper()} model: {settings.llm_model}")
    return model


def configure_llm(settings: PipelineSettings, llm: Optional[object] = None) -> LLMGateway:
    """Wrap the provider LLM in the gateway and install it as Settings.llm."""
    gateway = LLMGateway(llm or build_llm(settings))
    Settings.llm = gateway
    return gateway
