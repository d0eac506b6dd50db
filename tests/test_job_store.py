# tests/test_job_store.py
"""
Job store backends.

Covers:
  MemoryJobStore: put/get/delete, stored copies are isolated, TTL expiry on
  read and in cleanup(), sweeper thread start/stop, stats
  SqliteJobStore: same contract on a temp DB file, upsert replaces the row,
  corrupt rows and backend failures raise JobStoreError
  get_job_store / set_job_store / build_job_store_from_env
"""

from __future__ import annotations

import sqlite3
import time

import pytest

from storage import job_store as job_store_mod
from storage.job_store import (
    JobStoreError,
    MemoryJobStore,
    SqliteJobStore,
    build_job_store_from_env,
    get_job_store,
    set_job_store,
)


def _record(job_id="job-1", status="PENDING", created_at=None, **extra):
    data = {"job_id": job_id, "status": status, "created_at": created_at or time.time()}
    data.update(extra)
    return data


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        s = MemoryJobStore(ttl_seconds=60)
    else:
        s = SqliteJobStore(tmp_path / "jobs.db", ttl_seconds=60)
    yield s
    if isinstance(s, MemoryJobStore):
        s.stop_sweeper()


class TestStoreContract:
    def test_missing_is_none(self, store):
        assert store.get("nope") is None

    def test_put_get_roundtrip(self, store):
        store.put("job-1", _record(timings={"ocrMs": 12.5}))
        got = store.get("job-1")
        assert got["status"] == "PENDING"
        assert got["timings"] == {"ocrMs": 12.5}

    def test_put_replaces_whole_record(self, store):
        store.put("job-1", _record(quick_result={"level": "SAFE"}))
        store.put("job-1", _record(status="FINAL", result=[]))
        got = store.get("job-1")
        assert got["status"] == "FINAL"
        assert "quick_result" not in got

    def test_delete(self, store):
        store.put("job-1", _record())
        store.delete("job-1")
        assert store.get("job-1") is None
        store.delete("job-1")  # deleting twice is fine

    def test_expired_reads_as_missing(self, store):
        store.put("old", _record("old", created_at=time.time() - 3600))
        assert store.get("old") is None

    def test_cleanup_removes_only_expired(self, store):
        store.put("old", _record("old", created_at=time.time() - 3600))
        store.put("new", _record("new"))
        assert store.cleanup() == 1
        assert store.get("new") is not None

    def test_stats(self, store):
        store.put("job-1", _record())
        stats = store.stats()
        assert stats["size"] == 1
        assert stats["ttl_seconds"] == 60


class TestMemoryJobStore:
    def test_stored_copy_isolated_from_caller(self):
        s = MemoryJobStore()
        data = _record(timings={"a": 1})
        s.put("job-1", data)
        data["timings"]["a"] = 999
        got = s.get("job-1")
        got["status"] = "MUTATED"
        again = s.get("job-1")
        assert again["timings"] == {"a": 1}
        assert again["status"] == "PENDING"

    def test_zero_ttl_never_expires(self):
        s = MemoryJobStore(ttl_seconds=0)
        s.put("job-1", _record(created_at=1.0))
        assert s.get("job-1") is not None

    def test_sweeper_removes_expired(self):
        s = MemoryJobStore(ttl_seconds=60)
        s._jobs["old"] = _record("old", created_at=time.time() - 3600)
        s.start_sweeper(interval=0.01)
        try:
            deadline = time.time() + 2.0
            while "old" in s._jobs and time.time() < deadline:
                time.sleep(0.01)
            assert "old" not in s._jobs
            assert s.stats()["sweeper_running"] is True
        finally:
            s.stop_sweeper()
        assert s.stats()["sweeper_running"] is False


class TestSqliteJobStore:
    def test_survives_new_instance(self, tmp_path):
        path = tmp_path / "jobs.db"
        SqliteJobStore(path).put("job-1", _record(status="FINAL"))
        assert SqliteJobStore(path).get("job-1")["status"] == "FINAL"

    def test_corrupt_row_raises(self, tmp_path):
        s = SqliteJobStore(tmp_path / "jobs.db")
        with s.db_connect() as conn:
            conn.execute(
                "INSERT INTO scan_jobs (job_id, status, created_at, data_json) VALUES (?, ?, ?, ?)",
                ("bad", "PENDING", time.time(), "{not json"),
            )
        with pytest.raises(JobStoreError):
            s.get("bad")

    def test_backend_failure_wrapped(self, tmp_path, monkeypatch):
        s = SqliteJobStore(tmp_path / "jobs.db")

        def broken():
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(s, "db_connect", broken)
        with pytest.raises(JobStoreError):
            s.get("job-1")
        with pytest.raises(JobStoreError):
            s.put("job-1", _record())


class TestProcessDefault:
    @pytest.fixture(autouse=True)
    def _reset(self):
        set_job_store(None)
        yield
        current = job_store_mod._store
        if isinstance(current, MemoryJobStore):
            current.stop_sweeper()
        set_job_store(None)

    def test_default_is_memory(self, monkeypatch):
        monkeypatch.delenv("SAFEMEALS_JOB_STORE", raising=False)
        s = get_job_store()
        assert isinstance(s, MemoryJobStore)
        assert get_job_store() is s

    def test_sqlite_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SAFEMEALS_JOB_STORE", "sqlite")
        monkeypatch.setenv("SAFEMEALS_JOB_DB", str(tmp_path / "env.db"))
        monkeypatch.setenv("SAFEMEALS_JOB_TTL_SECONDS", "120")
        s = build_job_store_from_env()
        assert isinstance(s, SqliteJobStore)
        assert s.ttl_seconds == 120.0

    def test_bad_ttl_falls_back(self, monkeypatch):
        monkeypatch.setenv("SAFEMEALS_JOB_STORE", "memory")
        monkeypatch.setenv("SAFEMEALS_JOB_TTL_SECONDS", "soon")
        s = build_job_store_from_env()
        try:
            assert s.ttl_seconds == float(job_store_mod.DEFAULT_TTL_SECONDS)
        finally:
            s.stop_sweeper()

    def test_set_job_store_injects(self):
        injected = MemoryJobStore()
        set_job_store(injected)
        assert get_job_store() is injected
