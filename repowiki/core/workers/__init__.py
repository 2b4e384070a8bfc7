from .base import PollingWorker

__all__ = ["PollingWorker"]
