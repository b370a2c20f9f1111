"""
Supervised background tasks.

Detached work (document generation, emailing) runs on a small thread pool. Each
submission is tracked; failures are logged, listed through the API and can be
retried.
"""

import logging
import threading
import time
import uuid
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

PENDING = 'pending'
RUNNING = 'running'
SUCCEEDED = 'succeeded'
FAILED = 'failed'
CANCELLED = 'cancelled'

MAX_HISTORY = 500


def _now():
    return datetime.now(timezone.utc)


class TaskRecord:
    def __init__(self, name: str, fn: Callable, args: tuple, kwargs: dict, context: Optional[dict] = None):
        self.id = str(uuid.uuid4())
        self.name = name
        self.fn = fn
        self.args = args
        self.kwargs = kwargs
        self.context = context or {}
        self.status = PENDING
        self.attempts = 0
        self.error: Optional[str] = None
        self.result: Any = None
        self.submitted_at = _now()
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.future = None
        self.done = threading.Event()

    @property
    def finished(self) -> bool:
        return self.status in (SUCCEEDED, FAILED, CANCELLED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'status': self.status,
            'attempts': self.attempts,
            'error': self.error,
            'context': self.context,
            'submitted_at': self.submitted_at.isoformat(),
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }


class TaskSupervisor:
    """Thread pool wrapper that runs tasks inside the Flask app context and records their outcome."""

    def __init__(self, max_workers: int = 2, thread_name_prefix: str = "background-task"):
        self.max_workers = max_workers
        self.thread_name_prefix = thread_name_prefix
        self._app = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._tasks: "OrderedDict[str, TaskRecord]" = OrderedDict()
        self._lock = threading.Lock()

    def init_app(self, app):
        self.shutdown(wait=True)
        self._app = app
        self.max_workers = app.config.get('DOCUMENT_WORKERS', self.max_workers)
        with self._lock:
            self._tasks.clear()
        app.extensions['ovm_task_supervisor'] = self

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix=self.thread_name_prefix,
                )
            return self._executor

    def submit(self, name: str, fn: Callable, *args, context: Optional[dict] = None, **kwargs) -> TaskRecord:
        """Schedule ``fn(*args, **kwargs)`` without waiting for it."""
        record = TaskRecord(name, fn, args, kwargs, context)
        with self._lock:
            self._tasks[record.id] = record
            self._prune()
        self._dispatch(record)
        logger.info(f"Background task scheduled: {name} [{record.id}] {record.context}")
        return record

    def _dispatch(self, record: TaskRecord) -> None:
        record.status = PENDING
        record.error = None
        record.done.clear()
        future = self._get_executor().submit(self._run, record)
        record.future = future
        future.add_done_callback(lambda f, r=record: self._on_done(r, f))

    def _run(self, record: TaskRecord):
        record.status = RUNNING
        record.attempts += 1
        record.started_at = _now()
        if self._app is not None:
            with self._app.app_context():
                return record.fn(*record.args, **record.kwargs)
        return record.fn(*record.args, **record.kwargs)

    def _on_done(self, record: TaskRecord, future) -> None:
        try:
            self._record_outcome(record, future)
        finally:
            record.done.set()

    def _record_outcome(self, record: TaskRecord, future) -> None:
        record.finished_at = _now()
        if future.cancelled():
            record.status = CANCELLED
            logger.info(f"Background task cancelled: {record.name} [{record.id}]")
            return
        error = future.exception()
        if error is not None:
            record.status = FAILED
            record.error = str(error) or error.__class__.__name__
            logger.error(
                f"Background task failed: {record.name} [{record.id}] attempt {record.attempts}: {record.error}",
                exc_info=(type(error), error, error.__traceback__),
            )
            return
        record.status = SUCCEEDED
        record.result = future.result()
        logger.info(f"Background task succeeded: {record.name} [{record.id}]")

    def _prune(self) -> None:
        while len(self._tasks) > MAX_HISTORY:
            oldest_id = next((tid for tid, rec in self._tasks.items() if rec.finished), None)
            if oldest_id is None:
                break
            del self._tasks[oldest_id]

    def get(self, task_id: str) -> Optional[TaskRecord]:
        with self._lock:
            return self._tasks.get(task_id)

    def list(self, status: Optional[str] = None) -> List[TaskRecord]:
        with self._lock:
            records = list(self._tasks.values())
        if status:
            records = [r for r in records if r.status == status]
        return records

    def retry(self, task_id: str) -> Optional[TaskRecord]:
        """Re-run a failed or cancelled task. Returns None if unknown or not retryable."""
        record = self.get(task_id)
        if record is None or record.status not in (FAILED, CANCELLED):
            return None
        logger.info(f"Retrying background task {record.name} [{record.id}]")
        self._dispatch(record)
        return record

    def cancel(self, task_id: str) -> bool:
        record = self.get(task_id)
        if record is None or record.future is None:
            return False
        return record.future.cancel()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until every tracked task has finished. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        for record in self.list():
            if record.future is None:
                continue
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not record.done.wait(remaining):
                return False
        return True

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
