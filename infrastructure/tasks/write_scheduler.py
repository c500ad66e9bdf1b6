from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Optional

from domain.repositories import WriteScheduler


logger = logging.getLogger(__name__)


class ThreadedWriteScheduler(WriteScheduler):
    """
    Runs deferred write jobs, in submission order, on one worker thread.

    A failing job is logged and dropped; later jobs still run. Nothing is
    reported back to whoever enqueued the job. Jobs accepted before
    `shutdown` always run.
    """

    def __init__(self, name: str = "write-scheduler") -> None:
        self._name = name
        # One worker keeps jobs in submission order.
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._lock = threading.Lock()
        self._stopped = False

    def enqueue(self, job: Callable[[], None]) -> None:
        with self._lock:
            if self._stopped:
                logger.warning("%s is shut down; dropping job %r", self._name, job)
                return
            self._executor.submit(self._run, job)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every job queued so far has run.

        Returns False if `timeout` expired first or the scheduler is shut down.
        """

        with self._lock:
            if self._stopped:
                return False
            marker = self._executor.submit(lambda: None)
        try:
            marker.result(timeout)
        except FutureTimeoutError:
            return False
        return True

    def shutdown(self) -> None:
        """Stop accepting jobs and wait for the queued ones to finish."""

        with self._lock:
            if self._stopped:
                return
            self._stopped = True
        self._executor.shutdown(wait=True)
        logger.debug("%s stopped", self._name)

    @staticmethod
    def _run(job: Callable[[], None]) -> None:
        try:
            job()
        except Exception:
            logger.exception("Deferred write job failed")
