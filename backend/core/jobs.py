"""
jobs.py — Tracked background regeneration jobs.

Each submitted job gets an id and a status the caller can poll:
pending → running → succeeded | failed | cancelled. Runs for the same
academic year are serialized with a per-year lock.
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from pydantic import Field

from core.errors import ConfigurationError
from core.models import BatchReport, _Frozen

LOG = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINISHED = {JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED}

DEFAULT_RETENTION = 100


class JobRecord(_Frozen):
    job_id: str
    academic_year: str
    status: JobStatus = JobStatus.PENDING
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    report: Optional[BatchReport] = None
    error: Optional[str] = None
    error_details: List[str] = Field(default_factory=list)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobRegistry:
    """Jobs by id. Only the newest ``retention`` finished jobs are kept."""

    def __init__(self, retention: int = DEFAULT_RETENTION):
        self.retention = retention
        self._jobs: Dict[str, JobRecord] = {}
        self._events: Dict[str, threading.Event] = {}
        self._year_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def _update(self, job_id: str, **changes) -> JobRecord:
        with self._lock:
            record = self._jobs[job_id].model_copy(update=changes)
            self._jobs[job_id] = record
            if record.status in FINISHED:
                self._prune()
            return record

    def _prune(self) -> None:
        # caller holds self._lock
        finished = sorted(
            (r for r in self._jobs.values() if r.status in FINISHED),
            key=lambda r: (r.finished_at, r.created_at),
        )
        for record in finished[:max(len(finished) - self.retention, 0)]:
            del self._jobs[record.job_id]
            self._events.pop(record.job_id, None)

    def _year_lock(self, academic_year: str) -> threading.Lock:
        with self._lock:
            return self._year_locks.setdefault(academic_year, threading.Lock())

    def submit(self, academic_year: str) -> JobRecord:
        record = JobRecord(job_id=uuid.uuid4().hex, academic_year=academic_year, created_at=_now())
        with self._lock:
            self._jobs[record.job_id] = record
            self._events[record.job_id] = threading.Event()
        LOG.info("Job %s submitted for %s", record.job_id, academic_year)
        return record

    def cancel_event(self, job_id: str) -> threading.Event:
        with self._lock:
            return self._events[job_id]

    def run(self, job_id: str, work: Callable[[threading.Event], BatchReport]) -> JobRecord:
        """
        Execute ``work`` for a submitted job, holding its academic year's lock.

        ``work`` receives the job's cancellation event. Exceptions mark the
        job failed and are not re-raised.
        """
        record = self.get(job_id)
        if record is None:
            raise KeyError(job_id)
        event = self.cancel_event(job_id)

        with self._year_lock(record.academic_year):
            if event.is_set():
                return self._update(job_id, status=JobStatus.CANCELLED, finished_at=_now())

            self._update(job_id, status=JobStatus.RUNNING, started_at=_now())
            LOG.info("Job %s running", job_id)
            try:
                report = work(event)
            except ConfigurationError as exc:
                LOG.error("Job %s failed: %s %s", job_id, exc, exc.errors)
                return self._update(
                    job_id, status=JobStatus.FAILED, finished_at=_now(),
                    error=str(exc), error_details=exc.errors,
                )
            except Exception as exc:
                LOG.exception("Job %s failed", job_id)
                return self._update(job_id, status=JobStatus.FAILED, finished_at=_now(), error=str(exc))

            status = JobStatus.CANCELLED if report.cancelled else JobStatus.SUCCEEDED
            LOG.info("Job %s %s: %s", job_id, status.value, report.summary())
            return self._update(job_id, status=status, finished_at=_now(), report=report)

    def cancel(self, job_id: str) -> Optional[JobRecord]:
        record = self.get(job_id)
        if record is None:
            return None
        if record.status in FINISHED:
            return record
        self.cancel_event(job_id).set()
        LOG.info("Job %s cancellation requested", job_id)
        if record.status == JobStatus.PENDING:
            return self._update(job_id, status=JobStatus.CANCELLED, finished_at=_now())
        return record

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            return self._jobs.get(job_id)

    def list(self) -> List[JobRecord]:
        with self._lock:
            return sorted(self._jobs.values(), key=lambda r: r.created_at)
