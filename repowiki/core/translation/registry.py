"""Process-local map of running translation tasks to their cancel events."""

import logging
import threading
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class CancellationRegistry:
    """Thread-safe ``task_id -> threading.Event`` map.

    A task id can be registered once while it is live, which gives each
    task row exactly one runner in this process.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._events: Dict[str, threading.Event] = {}

    def register(self, task_id: str) -> Optional[threading.Event]:
        """Register a task; returns its event, or None if already registered."""
        with self._lock:
            if task_id in self._events:
                return None
            event = threading.Event()
            self._events[task_id] = event
            return event

    def signal(self, task_id: str) -> bool:
        """Set the task's event. Returns False when the task is not running here."""
        with self._lock:
            event = self._events.get(task_id)
        if event is None:
            return False
        event.set()
        logger.info(f"Cancellation signalled for translation task {task_id}")
        return True

    def remove(self, task_id: str):
        with self._lock:
            self._events.pop(task_id, None)

    def task_ids(self) -> List[str]:
        with self._lock:
            return list(self._events)

    def get(self, task_id: str) -> Optional[threading.Event]:
        with self._lock:
            return self._events.get(task_id)

    def __contains__(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._events

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
