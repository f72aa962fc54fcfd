"""In-process deferred task queue backed by worker threads.

Jobs are keyed; enqueueing a key that is already waiting does not add a second
copy, so a burst of triggers for the same program runs the job once. Every job
runs outside the caller's transaction and its failures are logged and counted,
never raised back to whoever enqueued it.
"""

import logging
import queue
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


class DeferredTaskQueue:
    def __init__(self, name: str = "deferred", max_workers: int = 1, enabled: bool = True):
        self.name = name
        self._max_workers = max(1, max_workers)
        self._enabled = enabled
        self._running = False
        self._workers: List[threading.Thread] = []
        self._queue: "queue.Queue[Optional[str]]" = queue.Queue()
        self._jobs: Dict[str, Callable[[], Any]] = {}
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._in_flight = 0
        self._stats = {
            "enqueued": 0,
            "coalesced": 0,
            "processed": 0,
            "failed": 0,
            "started_at": None,
        }

    @property
    def enabled(self) -> bool:
        return self._enabled

    def configure(self, max_workers: Optional[int] = None, enabled: Optional[bool] = None) -> None:
        if max_workers is not None:
            self._max_workers = max(1, max_workers)
        if enabled is not None:
            self._enabled = enabled

    def is_running(self) -> bool:
        return self._running

    def start(self, max_workers: Optional[int] = None) -> None:
        with self._lock:
            if self._running:
                return
            if max_workers is not None:
                self._max_workers = max(1, max_workers)
            self._running = True
            self._stats["started_at"] = datetime.now(timezone.utc).isoformat()
            for index in range(self._max_workers):
                worker = threading.Thread(
                    target=self._run_worker,
                    name=f"{self.name}-worker-{index + 1}",
                    daemon=True,
                )
                worker.start()
                self._workers.append(worker)
        logger.info("Deferred queue %s started with %s worker(s)", self.name, self._max_workers)

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            workers = list(self._workers)
            self._workers.clear()
        for _ in workers:
            self._queue.put(None)
        for worker in workers:
            worker.join(timeout=timeout)
        logger.info("Deferred queue %s stopped", self.name)

    def enqueue(self, key: str, job: Callable[[], Any]) -> bool:
        """Schedule *job* under *key*. Returns False when it was coalesced."""
        if not self._enabled:
            # Sin cola: se ejecuta en línea, después del commit que lo disparó
            with self._lock:
                self._stats["enqueued"] += 1
            self._execute(key, job)
            return True

        if not self._running:
            self.start()

        with self._lock:
            if key in self._jobs:
                self._jobs[key] = job
                self._stats["coalesced"] += 1
                return False
            self._jobs[key] = job
            self._in_flight += 1
            self._stats["enqueued"] += 1
        self._queue.put(key)
        logger.debug("Deferred job %s enqueued", key)
        return True

    def drain(self, timeout: Optional[float] = 10.0) -> bool:
        """Block until every job enqueued so far has finished."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._in_flight > 0:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            pending = len(self._jobs)
            return {
                "name": self.name,
                "running": self._running,
                "enabled": self._enabled,
                "workers": len(self._workers),
                "pending": pending,
                **self._stats,
            }

    def _run_worker(self) -> None:
        while True:
            key = self._queue.get()
            if key is None:
                break
            with self._lock:
                job = self._jobs.pop(key, None)
            try:
                if job is not None:
                    self._execute(key, job)
            finally:
                with self._idle:
                    self._in_flight -= 1
                    self._idle.notify_all()

    def _execute(self, key: str, job: Callable[[], Any]) -> None:
        try:
            job()
        except Exception:
            logger.exception("Deferred job %s failed", key)
            outcome = "failed"
        else:
            outcome = "processed"
        with self._lock:
            self._stats[outcome] += 1
