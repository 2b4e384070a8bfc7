"""Shared lifecycle for the pipeline's background pollers.

Each worker:
- Runs in a daemon thread with its own asyncio event loop
- Executes one blocking ``run_once()`` pass at a time via ``asyncio.to_thread``
- Optionally runs a heartbeat coroutine beside the pass
- Sleeps on a stop event, so ``stop()`` interrupts any idle wait or cooldown
"""

import asyncio
import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class PollingWorker:
    """Base class: subclasses implement ``run_once()``.

    ``run_once()`` returns True when it handled an item (poll again right
    away) and False when there was nothing to do (wait ``poll_interval``).
    """

    name = "worker"

    def __init__(self, poll_interval: float, heartbeat_interval: Optional[float] = None):
        self.poll_interval = poll_interval
        self.heartbeat_interval = heartbeat_interval

        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def stop_event(self) -> threading.Event:
        """Process-wide shutdown signal, also passed to cancellable LLM calls."""
        return self._stop_event

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start the background worker thread."""
        if self._running:
            logger.warning(f"{self.name} already running")
            return
        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name=self.name)
        self._thread.start()
        logger.info(f"{self.name} started")

    def stop(self, timeout: float = 5.0):
        """Signal shutdown and wait briefly for the current pass to return."""
        self._running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        logger.info(f"{self.name} stopped")

    def sleep(self, seconds: float) -> bool:
        """Blocking, interruptible sleep. Returns False when shutdown was signalled."""
        return not self._stop_event.wait(seconds)

    def run_once(self) -> bool:
        raise NotImplementedError

    def heartbeat(self):
        """Hook called every ``heartbeat_interval`` seconds while running."""

    def _run_loop(self):
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._main_loop())
        except Exception as e:
            logger.error(f"{self.name} loop error: {e}", exc_info=True)
        finally:
            self._loop.close()
            self._loop = None

    async def _main_loop(self):
        heartbeat_task = None
        if self.heartbeat_interval:
            heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        while self._running:
            try:
                handled = await asyncio.to_thread(self.run_once)
            except Exception as e:
                logger.error(f"Error in {self.name} pass: {e}", exc_info=True)
                handled = False
            if not handled and self._running:
                await self._wait(self.poll_interval)

        if heartbeat_task:
            heartbeat_task.cancel()
            try:
                await heartbeat_task
            except asyncio.CancelledError:
                pass

    async def _heartbeat_loop(self):
        while self._running:
            try:
                await asyncio.to_thread(self.heartbeat)
            except Exception as e:
                logger.error(f"{self.name} heartbeat error: {e}")
            await self._wait(self.heartbeat_interval)

    async def _wait(self, seconds: float):
        await asyncio.to_thread(self._stop_event.wait, seconds)
