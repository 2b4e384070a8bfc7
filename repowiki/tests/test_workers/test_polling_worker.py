"""Unit tests for the PollingWorker lifecycle.

Tests cover:
- start/stop state and the stop event
- Idle passes wait, handled passes poll again immediately
- Errors in a pass or heartbeat do not kill the loop
- Interruptible sleep
- The heartbeat task is finished, not left pending, when the loop exits
"""

import asyncio
import threading
import time
from unittest.mock import patch

from repowiki.core.workers import PollingWorker


# ── Fixtures ──────────────────────────────────────────────────────────────


class _CountingWorker(PollingWorker):
    name = "counting-worker"

    def __init__(self, results, poll_interval=0.01, heartbeat_interval=None):
        super().__init__(poll_interval=poll_interval, heartbeat_interval=heartbeat_interval)
        self._results = list(results)
        self.passes = 0
        self.heartbeats = 0
        self.done = threading.Event()

    def run_once(self) -> bool:
        self.passes += 1
        if not self._results:
            self.done.set()
            return False
        result = self._results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def heartbeat(self):
        self.heartbeats += 1
        if self.heartbeats == 1:
            raise RuntimeError("transient")


class _OnePassWorker(PollingWorker):
    name = "one-pass-worker"

    def run_once(self) -> bool:
        self.stop()
        return True


# ── Tests: Worker Lifecycle ──


class TestWorkerLifecycle:
    def test_start_sets_running(self):
        worker = _CountingWorker([])
        with patch.object(worker, "_run_loop"):
            worker.start()
            assert worker.running is True
            worker.stop()
        assert worker.running is False
        assert worker.stop_event.is_set()

    def test_double_start_ignored(self):
        worker = _CountingWorker([])
        with patch.object(worker, "_run_loop"):
            worker.start()
            first_thread = worker._thread
            worker.start()
            assert worker._thread is first_thread
            worker.stop()

    def test_sleep_interrupted_by_stop(self):
        worker = _CountingWorker([])
        worker.stop_event.set()
        started = time.monotonic()
        assert worker.sleep(5) is False
        assert time.monotonic() - started < 1

    def test_sleep_completes(self):
        assert _CountingWorker([]).sleep(0) is True


# ── Tests: Main loop ──


class TestMainLoop:
    def test_runs_until_queue_empty(self):
        worker = _CountingWorker([True, True])
        worker.start()
        assert worker.done.wait(5)
        worker.stop()
        assert worker.passes >= 3

    def test_pass_error_does_not_stop_loop(self):
        worker = _CountingWorker([RuntimeError("boom"), True])
        worker.start()
        assert worker.done.wait(5)
        worker.stop()
        assert worker.passes >= 3

    def test_heartbeat_keeps_running_after_error(self):
        worker = _CountingWorker([], heartbeat_interval=0.01)
        worker.start()
        deadline = time.monotonic() + 5
        while worker.heartbeats < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        worker.stop()
        assert worker.heartbeats >= 2

    def test_heartbeat_task_finished_on_exit(self):
        worker = _OnePassWorker(poll_interval=0.01, heartbeat_interval=60)
        worker._running = True

        async def run():
            await worker._main_loop()
            return [task for task in asyncio.all_tasks() if task is not asyncio.current_task()]

        assert asyncio.run(run()) == []
