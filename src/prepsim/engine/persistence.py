"""Best-effort progress persistence.

Progress writes never block the player. Each write is queued on a
single-worker executor, so writes from one engine land in submission order,
and the caller gets a ``Future`` it may await or ignore. Failures are
logged, wrapped in ``PersistenceError`` and reported through an optional
callback; they never roll back what the player already sees.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from functools import partial
from typing import Any, Callable, Optional

from prepsim.errors import PersistenceError
from prepsim.storage.repository import ProgressRepository

logger = logging.getLogger(__name__)


class ProgressHandle:
    """Reference to a progress record whose id may not be known yet.

    A restart queues a create; updates queued after it read the id only when
    they run, by which point the create has filled it in.
    """

    def __init__(self, progress_id: Optional[str] = None) -> None:
        self.progress_id = progress_id

    def __repr__(self) -> str:
        return f"<ProgressHandle {self.progress_id}>"


class ProgressWriter:
    """Queue of progress writes against a ``ProgressRepository``.

    Attributes:
        repo: Progress store the writes go to
        immediate: Run writes inline on the caller's thread (the returned
            futures are already done). Useful for scripts and tests.
    """

    def __init__(
        self,
        repo: ProgressRepository,
        on_error: Optional[Callable[[PersistenceError], None]] = None,
        immediate: bool = False,
    ) -> None:
        self.repo = repo
        self.immediate = immediate
        self._on_error = on_error
        self._executor: Optional[ThreadPoolExecutor] = None
        if not immediate:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="prepsim-writer")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def set_error_handler(self, on_error: Optional[Callable[[PersistenceError], None]]) -> None:
        self._on_error = on_error

    def submit_update(self, handle: ProgressHandle, fields: dict[str, Any]) -> Future:
        """Queue a full-record update.

        Returns:
            Future resolving to None, or failing with PersistenceError
        """

        def task() -> None:
            if handle.progress_id is None:
                raise PersistenceError("update", "the progress record was never created")
            self.repo.update_progress(handle.progress_id, fields)

        return self._submit("update", task)

    def submit_create(
        self,
        handle: ProgressHandle,
        user_id: str,
        scenario_id: str,
        current_step_id: str,
    ) -> Future:
        """Queue creation of a fresh record, storing its id on ``handle``.

        Returns:
            Future resolving to the created row dict
        """

        def task() -> dict:
            record = self.repo.create_progress(user_id, scenario_id, current_step_id)
            handle.progress_id = str(record["id"])
            logger.info(f"Created progress {handle.progress_id} for {user_id}/{scenario_id}")
            return record

        return self._submit("create", task)

    def _submit(self, operation: str, task: Callable[[], Any]) -> Future:
        def run() -> Any:
            try:
                return task()
            except PersistenceError:
                raise
            except Exception as e:
                raise PersistenceError(operation, str(e)) from e

        if self.immediate:
            future: Future = Future()
            try:
                future.set_result(run())
            except PersistenceError as e:
                future.set_exception(e)
        else:
            future = self._executor.submit(run)
            with self._lock:
                self._pending.add(future)

        future.add_done_callback(partial(self._on_done, operation))
        return future

    def _on_done(self, operation: str, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is None:
            return
        logger.error(f"Progress {operation} failed: {error}")
        if self._on_error is not None:
            self._on_error(error)

    @property
    def pending(self) -> list[Future]:
        """Writes that have not finished yet."""
        with self._lock:
            return [f for f in self._pending if not f.done()]

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued writes.

        Returns:
            True if every write finished within the timeout
        """
        _, not_done = wait(self.pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = False) -> None:
        """Stop accepting writes.

        Queued writes still run to completion in the background unless
        ``wait`` is True, in which case this blocks until they have.
        """
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
