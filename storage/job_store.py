# storage/job_store.py
"""
Job store backends for scan analysis jobs.

The coordinator (storage/scan_jobs.py) never touches a dict or a DB directly;
it is handed one of these:

    MemoryJobStore   dev / single process. Lost on restart.
    SqliteJobStore   survives restarts; shared by every worker on one host.

Both keep the job as a plain JSON-able dict and replace the whole record on
every put, so a reader never sees half of an update.

Expiry (TTL) belongs to the store, not the coordinator: a job older than
ttl_seconds reads as missing and is removed by cleanup().
"""

from __future__ import annotations

import copy
import json
import logging
import os
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional

log = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DB_PATH = ROOT / "storage" / "safemeals_jobs.db"
DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_SWEEP_INTERVAL = 5 * 60


class JobStoreError(RuntimeError):
    """The backing store could not be read or written."""


class JobStore:
    """Interface: put / get / delete / cleanup, keyed by job id."""

    ttl_seconds: float = DEFAULT_TTL_SECONDS

    def put(self, job_id: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def delete(self, job_id: str) -> None:
        raise NotImplementedError

    def cleanup(self) -> int:
        """Drop expired jobs; return how many were removed."""
        raise NotImplementedError

    def _expired(self, data: Dict[str, Any], now: Optional[float] = None) -> bool:
        created = data.get("created_at")
        if created is None or not self.ttl_seconds:
            return False
        return ((now or time.time()) - float(created)) > self.ttl_seconds


# ---------------------------------------------------------------------------
# In-process store
# ---------------------------------------------------------------------------

class MemoryJobStore(JobStore):
    """
    Dict + lock. Stores deep copies so callers can't mutate a stored job
    behind the lock's back.

    Jobs do not survive a restart and are not shared between processes; use
    SqliteJobStore when the app runs more than one worker.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._jobs: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def put(self, job_id: str, data: Dict[str, Any]) -> None:
        snapshot = copy.deepcopy(data)
        with self._lock:
            self._jobs[job_id] = snapshot
        log.debug("Job store SET job_id=%s status=%s", job_id, data.get("status"))

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            data = self._jobs.get(job_id)
            if data is None:
                return None
            if self._expired(data):
                del self._jobs[job_id]
                log.info("Job store GET job_id=%s expired", job_id)
                return None
            return copy.deepcopy(data)

    def delete(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    def cleanup(self) -> int:
        now = time.time()
        with self._lock:
            expired = [jid for jid, data in self._jobs.items() if self._expired(data, now)]
            for jid in expired:
                del self._jobs[jid]
        if expired:
            log.info("Job store cleanup removed %d expired jobs", len(expired))
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            size = len(self._jobs)
        return {
            "backend": "memory",
            "size": size,
            "ttl_seconds": self.ttl_seconds,
            "sweeper_running": bool(self._sweeper and self._sweeper.is_alive()),
        }

    # -- background sweeper --------------------------------------------------

    def start_sweeper(self, interval: float = DEFAULT_SWEEP_INTERVAL) -> None:
        if self._sweeper and self._sweeper.is_alive():
            return
        self._stop.clear()

        def _loop():
            while not self._stop.wait(interval):
                try:
                    self.cleanup()
                except Exception:
                    log.exception("Job store sweep failed")

        self._sweeper = threading.Thread(target=_loop, name="job-store-sweeper", daemon=True)
        self._sweeper.start()

    def stop_sweeper(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1.0)
        self._sweeper = None


# ---------------------------------------------------------------------------
# SQLite store
# ---------------------------------------------------------------------------

class SqliteJobStore(JobStore):
    """
    One row per job: scan_jobs(job_id, status, created_at, data_json).

    Each put is a single INSERT ... ON CONFLICT statement, so a row is
    replaced in one step. A fresh connection per call keeps it usable from
    the request thread and the worker thread alike.
    """

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH, ttl_seconds: float = DEFAULT_TTL_SECONDS):
        self.db_path = Path(db_path)
        self.ttl_seconds = ttl_seconds
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def db_connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        try:
            with self.db_connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS scan_jobs (
                        job_id     TEXT PRIMARY KEY,
                        status     TEXT NOT NULL,
                        created_at REAL NOT NULL,
                        data_json  TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_scan_jobs_created ON scan_jobs(created_at)"
                )
        except sqlite3.Error as e:
            raise JobStoreError(f"cannot initialise job table at {self.db_path}: {e}") from e

    def put(self, job_id: str, data: Dict[str, Any]) -> None:
        try:
            payload = json.dumps(data, ensure_ascii=False)
            with self.db_connect() as conn:
                conn.execute(
                    """
                    INSERT INTO scan_jobs (job_id, status, created_at, data_json)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(job_id) DO UPDATE SET
                        status = excluded.status,
                        data_json = excluded.data_json
                    """,
                    (job_id, str(data.get("status") or ""), float(data.get("created_at") or time.time()), payload),
                )
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise JobStoreError(f"cannot write job {job_id}: {e}") from e

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        try:
            with self.db_connect() as conn:
                row = conn.execute(
                    "SELECT data_json FROM scan_jobs WHERE job_id = ?",
                    (job_id,),
                ).fetchone()
        except sqlite3.Error as e:
            raise JobStoreError(f"cannot read job {job_id}: {e}") from e

        if not row:
            return None
        try:
            data = json.loads(row["data_json"])
        except json.JSONDecodeError as e:
            raise JobStoreError(f"job {job_id} is corrupt: {e}") from e

        if self._expired(data):
            self.delete(job_id)
            log.info("Job store GET job_id=%s expired", job_id)
            return None
        return data

    def delete(self, job_id: str) -> None:
        try:
            with self.db_connect() as conn:
                conn.execute("DELETE FROM scan_jobs WHERE job_id = ?", (job_id,))
        except sqlite3.Error as e:
            raise JobStoreError(f"cannot delete job {job_id}: {e}") from e

    def cleanup(self) -> int:
        if not self.ttl_seconds:
            return 0
        cutoff = time.time() - self.ttl_seconds
        try:
            with self.db_connect() as conn:
                cur = conn.execute("DELETE FROM scan_jobs WHERE created_at < ?", (cutoff,))
                removed = cur.rowcount or 0
        except sqlite3.Error as e:
            raise JobStoreError(f"cleanup failed: {e}") from e
        if removed:
            log.info("Job store cleanup removed %d expired jobs", removed)
        return removed

    def stats(self) -> Dict[str, Any]:
        try:
            with self.db_connect() as conn:
                size = conn.execute("SELECT COUNT(*) AS n FROM scan_jobs").fetchone()["n"]
        except sqlite3.Error as e:
            raise JobStoreError(f"stats failed: {e}") from e
        return {
            "backend": "sqlite",
            "size": int(size),
            "ttl_seconds": self.ttl_seconds,
            "db_path": str(self.db_path),
        }


# ---------------------------------------------------------------------------
# Process default (selected from env)
# ---------------------------------------------------------------------------
_store: Optional[JobStore] = None
_store_lock = threading.Lock()


def _ttl_from_env() -> float:
    raw = os.getenv("SAFEMEALS_JOB_TTL_SECONDS", "").strip()
    try:
        return float(raw) if raw else float(DEFAULT_TTL_SECONDS)
    except ValueError:
        log.warning("Bad SAFEMEALS_JOB_TTL_SECONDS=%r, using %s", raw, DEFAULT_TTL_SECONDS)
        return float(DEFAULT_TTL_SECONDS)


def build_job_store_from_env() -> JobStore:
    backend = (os.getenv("SAFEMEALS_JOB_STORE") or "memory").strip().lower()
    ttl = _ttl_from_env()
    if backend == "sqlite":
        db_path = os.getenv("SAFEMEALS_JOB_DB") or str(DEFAULT_DB_PATH)
        log.info("Using SqliteJobStore at %s (ttl=%ss)", db_path, ttl)
        return SqliteJobStore(db_path, ttl_seconds=ttl)
    if backend != "memory":
        log.warning("Unknown SAFEMEALS_JOB_STORE=%r, falling back to memory", backend)
    store = MemoryJobStore(ttl_seconds=ttl)
    store.start_sweeper()
    log.info("Using MemoryJobStore (single-process only, ttl=%ss)", ttl)
    return store


def get_job_store() -> JobStore:
    global _store
    with _store_lock:
        if _store is None:
            _store = build_job_store_from_env()
        return _store


def set_job_store(store: Optional[JobStore]) -> None:
    """Replace the process default (tests inject their own here)."""
    global _store
    with _store_lock:
        _store = store
