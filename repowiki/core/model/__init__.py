from .model import build_llm, configure_llm

__all__ = ["build_llm", "configure_llm"]
