"""
Background grading queue.

Submissions and timeouts hand grading off here so the request returns at
once. Jobs run on worker threads, failed jobs are retried with a linear
back-off, and jobs that never succeed are logged and kept in ``failures``
instead of disappearing.
"""
import logging
import queue
import threading
import time
from typing import Any, Callable, List, Optional, Tuple

from .config import GRADING_MAX_RETRIES, GRADING_RETRY_DELAY_SECONDS, GRADING_WORKERS
from .errors import AssessmentError, PersistenceError

logger = logging.getLogger(__name__)


def _is_retryable(error: Exception) -> bool:
    # domain errors are deterministic, retrying them changes nothing
    return isinstance(error, PersistenceError) or not isinstance(error, AssessmentError)


class GradingQueue:
    def __init__(
        self,
        workers: int = GRADING_WORKERS,
        max_retries: int = GRADING_MAX_RETRIES,
        retry_delay: float = GRADING_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.num_workers = workers
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.sleep = sleep

        self._jobs: "queue.Queue[Optional[Tuple[str, Callable, tuple]]]" = queue.Queue()
        self._workers: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._closed = False

        self.processed = 0
        self.failures: List[Tuple[str, str]] = []

    @property
    def inline(self) -> bool:
        return self.num_workers <= 0

    def submit(self, name: str, fn: Callable[..., Any], *args: Any) -> None:
        """Queue ``fn(*args)``; with no workers configured it runs right away."""
        if self._closed:
            logger.error("Grading queue closed, dropping job %s", name)
            self.failures.append((name, "queue closed"))
            return

        if self.inline:
            self._run(name, fn, args)
            return

        self._ensure_workers()
        self._jobs.put((name, fn, args))
        logger.debug("Queued grading job %s", name)

    def join(self) -> None:
        """Block until every queued job has finished."""
        if not self.inline:
            self._jobs.join()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for _ in self._workers:
                self._jobs.put(None)
        for worker in self._workers:
            worker.join(timeout=5.0)

    def _ensure_workers(self) -> None:
        with self._lock:
            if self._workers:
                return
            for i in range(self.num_workers):
                t = threading.Thread(target=self._worker_loop, daemon=True, name=f"grading-worker-{i}")
                t.start()
                self._workers.append(t)

    def _worker_loop(self) -> None:
        while True:
            item = self._jobs.get()
            try:
                if item is None:
                    break
                name, fn, args = item
                self._run(name, fn, args)
            finally:
                self._jobs.task_done()

    def _run(self, name: str, fn: Callable[..., Any], args: tuple) -> None:
        tries = 0
        while True:
            tries += 1
            try:
                fn(*args)
                with self._lock:
                    self.processed += 1
                if tries > 1:
                    logger.info("Grading job %s succeeded after %d tries", name, tries)
                return
            except Exception as e:
                if tries > self.max_retries or not _is_retryable(e):
                    logger.exception("Grading job %s failed after %d tries", name, tries)
                    self.failures.append((name, str(e)))
                    return
                logger.warning("Grading job %s failed (try %d), retrying: %s", name, tries, e)
                self.sleep(self.retry_delay * tries)
