"""
Bounded worker thread pool with admission control.
"""

import logging
import queue
import threading
from typing import Any, Callable


logger = logging.getLogger(__name__)

# Seconds an extra (non-core) thread waits for work before retiring.
THREAD_KEEPALIVE = 60.0


class WorkerPool:
    """
    Thread pool that refuses work instead of queueing it.

    Core threads live for the life of the pool. Extra threads up to
    ``max_size`` are started on demand and retire after sitting idle for
    ``keepalive`` seconds. The pool never holds more admitted jobs than it
    has threads, so an admitted job always starts promptly.
    """

    def __init__(self, core_size: int = 5, max_size: int = 50, keepalive: float = THREAD_KEEPALIVE, name: str = "Worker"):
        if core_size < 0 or max_size < 1 or core_size > max_size:
            raise ValueError(f"Invalid pool sizes: core={core_size}, max={max_size}")

        self.core_size = core_size
        self.max_size = max_size
        self.keepalive = keepalive
        self.name = name

        self._jobs = queue.Queue()
        self._lock = threading.Lock()
        self._active = 0
        self._threads = 0
        self._spawned = 0
        self._running = True

    @property
    def active_count(self) -> int:
        with self._lock:
            return self._active

    @property
    def thread_count(self) -> int:
        with self._lock:
            return self._threads

    def try_submit(self, fn: Callable[..., Any], *args: Any) -> bool:
        """
        Run ``fn(*args)`` on a pool thread if a slot is free.

        Args:
            fn: Callable to run
            *args: Arguments passed to the callable

        Returns:
            True if the job was admitted, False if the pool is saturated
        """
        with self._lock:
            if not self._running or self._active >= self.max_size:
                return False
            self._active += 1
            if self._threads < self._active:
                self._start_thread()

        self._jobs.put((fn, args))
        return True

    def _start_thread(self) -> None:
        # Caller holds the lock.
        self._threads += 1
        self._spawned += 1
        thread = threading.Thread(target=self._worker_thread, name=f"{self.name}-{self._spawned}")
        thread.daemon = True
        thread.start()

    def _worker_thread(self) -> None:
        """Take jobs from the queue until retired or shut down."""
        while True:
            try:
                job = self._jobs.get(timeout=self.keepalive)
            except queue.Empty:
                with self._lock:
                    if self._threads > max(self.core_size, self._active):
                        self._threads -= 1
                        return
                continue

            if job is None:
                with self._lock:
                    self._threads -= 1
                return

            fn, args = job
            try:
                fn(*args)
            except Exception:
                logger.exception("Unhandled error in pool job")
            finally:
                with self._lock:
                    self._active -= 1

    def shutdown(self) -> None:
        """Stop admitting work and let every thread exit once idle."""
        with self._lock:
            self._running = False
            threads = self._threads
        for _ in range(threads):
            self._jobs.put(None)
