"""
Background execution for long-running batch operations.

Bulk settlement and inventory import process many independent rows. Run
through submit_batch() they execute in a worker thread with its own app
context, report progress as they go, and can be cancelled between rows.
Cancelling never undoes rows that were already committed.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Callable

from flask import Flask

from ..extensions import db


@dataclass(frozen=True)
class BatchProgress:
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0

    @property
    def remaining(self) -> int:
        return max(self.total - self.processed, 0)


ProgressCallback = Callable[[BatchProgress], None]


class ProgressTracker:
    """Accumulates per-row outcomes and forwards snapshots to a callback."""

    def __init__(self, total: int, callback: ProgressCallback | None = None):
        self._progress = BatchProgress(total=total)
        self._callback = callback

    @property
    def progress(self) -> BatchProgress:
        return self._progress

    def row_done(self, ok: bool) -> None:
        self._progress = replace(
            self._progress,
            processed=self._progress.processed + 1,
            succeeded=self._progress.succeeded + (1 if ok else 0),
            failed=self._progress.failed + (0 if ok else 1),
        )
        if self._callback is not None:
            self._callback(self._progress)


def is_cancelled(cancel_event: threading.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


class BatchJob:
    """Handle to a batch running in the background."""

    def __init__(self, future: Future, cancel_event: threading.Event):
        self._future = future
        self._cancel_event = cancel_event
        self._lock = threading.Lock()
        self._progress = BatchProgress()

    def _update(self, progress: BatchProgress) -> None:
        with self._lock:
            self._progress = progress

    @property
    def progress(self) -> BatchProgress:
        with self._lock:
            return self._progress

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None) -> Any:
        return self._future.result(timeout=timeout)


_executor: ThreadPoolExecutor | None = None
_executor_lock = threading.Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="kasir-batch")
        return _executor


def submit_batch(
    app: Flask,
    func: Callable[..., Any],
    *args: Any,
    on_progress: ProgressCallback | None = None,
    **kwargs: Any,
) -> BatchJob:
    """
    Run `func(*args, progress=..., cancel_event=..., **kwargs)` in the background.

    `func` is a batch operation such as settlement_service.settle_bulk or
    import_service.confirm_import.
    """
    cancel_event = threading.Event()
    holder: dict[str, BatchJob] = {}
    ready = threading.Event()

    def _progress(progress: BatchProgress) -> None:
        ready.wait()
        holder["job"]._update(progress)
        if on_progress is not None:
            on_progress(progress)

    def _run():
        with app.app_context():
            try:
                return func(*args, progress=_progress, cancel_event=cancel_event, **kwargs)
            finally:
                db.session.remove()

    future = _get_executor().submit(_run)
    job = BatchJob(future, cancel_event)
    holder["job"] = job
    ready.set()
    return job
