# storage/scan_jobs.py
"""
Scan analysis jobs: PENDING -> FINAL | ERROR.

The coordinator is the only writer of a job record. Every update reads the
current record, builds a new one and puts it back whole, under a per-job
lock; a poller therefore sees either the old record or the new one, never
status=FINAL with result still empty.

Once a job is FINAL or ERROR it is frozen: complete/fail/record_quick_result
on it raise JobStateError instead of overwriting.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from safemeals.ocr_types import ClassifiedItem

from .job_store import JobStore, get_job_store

log = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "PENDING"
    FINAL = "FINAL"
    ERROR = "ERROR"

    @property
    def terminal(self) -> bool:
        return self is not JobStatus.PENDING


class JobNotFoundError(KeyError):
    """No job with that id (never created, or expired out of the store)."""


class JobStateError(RuntimeError):
    """Transition not allowed from the job's current state."""


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(timespec="milliseconds")


@dataclass(frozen=True)
class AnalysisJob:
    job_id: str
    status: JobStatus = JobStatus.PENDING
    created_at: float = field(default_factory=time.time)
    quick_result: Optional[Dict[str, Any]] = None
    result: Optional[List[ClassifiedItem]] = None
    overall_status: Optional[str] = None
    timings: Dict[str, float] = field(default_factory=dict)
    completed_at: Optional[float] = None
    error_message: Optional[str] = None

    # -- store records (plain JSON) ------------------------------------------

    def to_record(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "created_at": self.created_at,
            "quick_result": self.quick_result,
            "result": None if self.result is None else [i.to_dict() for i in self.result],
            "overall_status": self.overall_status,
            "timings": dict(self.timings),
            "completed_at": self.completed_at,
            "error_message": self.error_message,
        }

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "AnalysisJob":
        result = data.get("result")
        return cls(
            job_id=data["job_id"],
            status=JobStatus(data["status"]),
            created_at=float(data["created_at"]),
            quick_result=data.get("quick_result"),
            result=None if result is None else [ClassifiedItem.from_dict(r) for r in result],
            overall_status=data.get("overall_status"),
            timings=dict(data.get("timings") or {}),
            completed_at=data.get("completed_at"),
            error_message=data.get("error_message"),
        )

    # -- API shape ---------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Polling view: only the fields that make sense for the current status."""
        out: Dict[str, Any] = {
            "jobId": self.job_id,
            "status": self.status.value,
            "timings": dict(self.timings),
            "createdAt": _iso(self.created_at),
        }
        if self.status is JobStatus.PENDING:
            out["quickResult"] = self.quick_result
        elif self.status is JobStatus.FINAL:
            out["result"] = [i.to_dict() for i in (self.result or [])]
            out["quickResult"] = self.quick_result
            out["overallStatus"] = self.overall_status
            out["completedAt"] = _iso(self.completed_at)
        else:
            out["errorMessage"] = self.error_message
            out["completedAt"] = _iso(self.completed_at)
        return out


def generate_job_id() -> str:
    return str(uuid.uuid4())


class JobCoordinator:
    """Owns the lifecycle of AnalysisJob records in a JobStore."""

    def __init__(self, store: Optional[JobStore] = None):
        self.store = store if store is not None else get_job_store()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, job_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = self._locks[job_id] = threading.Lock()
            return lock

    def _release_lock(self, job_id: str) -> None:
        with self._locks_guard:
            self._locks.pop(job_id, None)

    def _load_pending(self, job_id: str, action: str) -> AnalysisJob:
        """Current record of a PENDING job; caller holds the job's lock."""
        try:
            data = self.store.get(job_id)
            if data is None:
                raise JobNotFoundError(job_id)
            job = AnalysisJob.from_record(data)
            if job.status.terminal:
                raise JobStateError(f"job {job_id} is already {job.status.value}; {action} rejected")
        except (JobNotFoundError, JobStateError):
            self._release_lock(job_id)
            raise
        return job

    # -- operations --------------------------------------------------------

    def create_job(self) -> str:
        job = AnalysisJob(job_id=generate_job_id())
        self.store.put(job.job_id, job.to_record())
        log.info("Job created job_id=%s", job.job_id)
        return job.job_id

    def get_job(self, job_id: str) -> Optional[AnalysisJob]:
        """None when the id is unknown or expired."""
        if not job_id:
            return None
        data = self.store.get(job_id)
        return AnalysisJob.from_record(data) if data is not None else None

    def record_quick_result(self, job_id: str, quick_result: Any) -> AnalysisJob:
        if hasattr(quick_result, "to_dict"):
            quick_result = quick_result.to_dict()
        with self._lock_for(job_id):
            job = self._load_pending(job_id, "quick result")
            updated = replace(job, quick_result=quick_result)
            self.store.put(job_id, updated.to_record())
        return updated

    def complete_job(
        self,
        job_id: str,
        result: Sequence[ClassifiedItem],
        timings: Optional[Mapping[str, float]] = None,
        overall_status: Optional[str] = None,
    ) -> AnalysisJob:
        with self._lock_for(job_id):
            job = self._load_pending(job_id, "complete")
            updated = replace(
                job,
                status=JobStatus.FINAL,
                result=list(result),
                overall_status=getattr(overall_status, "value", overall_status),
                timings={**job.timings, **(timings or {})},
                completed_at=time.time(),
            )
            self.store.put(job_id, updated.to_record())
        self._release_lock(job_id)
        log.info("Job completed job_id=%s items=%d", job_id, len(updated.result or []))
        return updated

    def fail_job(
        self,
        job_id: str,
        error_message: str,
        timings: Optional[Mapping[str, float]] = None,
    ) -> AnalysisJob:
        with self._lock_for(job_id):
            job = self._load_pending(job_id, "fail")
            updated = replace(
                job,
                status=JobStatus.ERROR,
                error_message=error_message,
                timings={**job.timings, **(timings or {})},
                completed_at=time.time(),
            )
            self.store.put(job_id, updated.to_record())
        self._release_lock(job_id)
        log.warning("Job failed job_id=%s: %s", job_id, error_message)
        return updated
