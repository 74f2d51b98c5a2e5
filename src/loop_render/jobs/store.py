from __future__ import annotations

import json
import re
import sqlite3
import threading
from contextlib import closing
from pathlib import Path
from typing import Any, Protocol

from sqlitedict import SqliteDict  # type: ignore

from loop_render.jobs.models import Job, JobStatus, ProgressRecord, now_utc
from loop_render.utils.log import logger

# Columns a transition may touch besides status/updated_at.
TRANSITION_FIELDS = frozenset({"final_artifact_ref", "error", "render_metadata"})

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


class JobStore(Protocol):
    """
    Storage capability the claim protocol needs.

    The only hard requirement is `conditional_transition`: an atomic
    "update where id=? and status=?" that reports whether a row changed.
    """

    def put(self, job: Job) -> Job: ...

    def get(self, job_id: int) -> Job | None: ...

    def list(self, *, status: JobStatus | None = None, limit: int = 100) -> list[Job]: ...

    def select_candidate(self) -> Job | None: ...

    def conditional_transition(
        self,
        job_id: int,
        from_status: JobStatus,
        to_status: JobStatus,
        fields: dict[str, Any] | None = None,
    ) -> bool: ...

    def unconditional_transition(
        self, job_id: int, to_status: JobStatus, fields: dict[str, Any] | None = None
    ) -> bool: ...

    def record_progress(self, job_id: int, percent: int, label: str) -> None: ...

    def get_progress(self, job_id: int) -> ProgressRecord | None: ...


def _check_fields(fields: dict[str, Any] | None) -> dict[str, Any]:
    out = dict(fields or {})
    unknown = set(out) - TRANSITION_FIELDS
    if unknown:
        raise ValueError(f"unsupported transition fields: {sorted(unknown)}")
    if "render_metadata" in out:
        out["render_metadata"] = json.dumps(out["render_metadata"] or {}, sort_keys=True)
    return out


class SqliteJobStore:
    """
    Job queue table in SQLite.

    Claims rely on a single conditional UPDATE; SQLite serializes writers, so
    two processes racing on the same row see exactly one rowcount == 1.
    Latest progress per job lives in a SqliteDict table next to the queue.
    """

    def __init__(self, db_path: Path, *, table: str = "render_jobs") -> None:
        if not _IDENT_RE.match(str(table)):
            raise ValueError(f"invalid table name: {table!r}")
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.table = str(table)
        self._lock = threading.Lock()
        self._init_schema()

    def _conn(self) -> sqlite3.Connection:
        # Open/close per operation (safe across threads and processes)
        con = sqlite3.connect(str(self.db_path), timeout=30.0, isolation_level=None)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA busy_timeout = 30000;")
        return con

    def _progress(self) -> SqliteDict:
        return SqliteDict(str(self.db_path), tablename=f"{self.table}_progress", autocommit=True)

    def _init_schema(self) -> None:
        with self._lock, closing(self._conn()) as con:
            con.execute("PRAGMA journal_mode = WAL;")
            con.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  status TEXT NOT NULL,
                  source_video_ref TEXT,
                  source_audio_ref TEXT,
                  target_minutes INTEGER,
                  channel_ref TEXT,
                  callback_ref TEXT,
                  final_artifact_ref TEXT,
                  error TEXT,
                  render_metadata TEXT,
                  created_at TEXT,
                  updated_at TEXT
                );
                """
            )
            con.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{self.table}_status_id ON {self.table}(status, id);"
            )

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        return Job.from_dict(dict(row))

    def put(self, job: Job) -> Job:
        d = job.to_dict()
        d["render_metadata"] = json.dumps(d.get("render_metadata") or {}, sort_keys=True)
        cols = [
            "status",
            "source_video_ref",
            "source_audio_ref",
            "target_minutes",
            "channel_ref",
            "callback_ref",
            "final_artifact_ref",
            "error",
            "render_metadata",
            "created_at",
            "updated_at",
        ]
        if job.id is not None:
            cols.insert(0, "id")
        placeholders = ", ".join("?" for _ in cols)
        with self._lock, closing(self._conn()) as con:
            cur = con.execute(
                f"INSERT OR REPLACE INTO {self.table} ({', '.join(cols)}) VALUES ({placeholders})",
                [d[c] for c in cols],
            )
            new_id = int(job.id if job.id is not None else cur.lastrowid)
        job.id = new_id
        return job

    def get(self, job_id: int) -> Job | None:
        with closing(self._conn()) as con:
            row = con.execute(f"SELECT * FROM {self.table} WHERE id = ?", (int(job_id),)).fetchone()
        return self._row_to_job(row) if row is not None else None

    def list(self, *, status: JobStatus | None = None, limit: int = 100) -> list[Job]:
        limit = max(1, min(1000, int(limit)))
        with closing(self._conn()) as con:
            if status is None:
                rows = con.execute(
                    f"SELECT * FROM {self.table} ORDER BY id ASC LIMIT ?", (limit,)
                ).fetchall()
            else:
                rows = con.execute(
                    f"SELECT * FROM {self.table} WHERE status = ? ORDER BY id ASC LIMIT ?",
                    (JobStatus(status).value, limit),
                ).fetchall()
        return [self._row_to_job(r) for r in rows]

    def select_candidate(self) -> Job | None:
        with closing(self._conn()) as con:
            row = con.execute(
                f"""
                SELECT * FROM {self.table}
                WHERE status = ? AND (final_artifact_ref IS NULL OR final_artifact_ref = '')
                ORDER BY id ASC
                LIMIT 1
                """,
                (JobStatus.WAITING.value,),
            ).fetchone()
        return self._row_to_job(row) if row is not None else None

    def _update(
        self,
        job_id: int,
        to_status: JobStatus,
        fields: dict[str, Any] | None,
        *,
        from_status: JobStatus | None,
    ) -> bool:
        values = _check_fields(fields)
        values["status"] = JobStatus(to_status).value
        values["updated_at"] = now_utc()
        assignments = ", ".join(f"{k} = ?" for k in values)
        sql = f"UPDATE {self.table} SET {assignments} WHERE id = ?"
        params: list[Any] = [*values.values(), int(job_id)]
        if from_status is not None:
            sql += " AND status = ?"
            params.append(JobStatus(from_status).value)
        with closing(self._conn()) as con:
            cur = con.execute(sql, params)
            return cur.rowcount == 1

    def conditional_transition(
        self,
        job_id: int,
        from_status: JobStatus,
        to_status: JobStatus,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        return self._update(job_id, to_status, fields, from_status=from_status)

    def unconditional_transition(
        self, job_id: int, to_status: JobStatus, fields: dict[str, Any] | None = None
    ) -> bool:
        return self._update(job_id, to_status, fields, from_status=None)

    def record_progress(self, job_id: int, percent: int, label: str) -> None:
        rec = ProgressRecord(job_id=int(job_id), percent=int(percent), label=str(label))
        with self._progress() as db:
            db[str(int(job_id))] = rec.to_dict()

    def get_progress(self, job_id: int) -> ProgressRecord | None:
        with self._progress() as db:
            raw = db.get(str(int(job_id)))
        return ProgressRecord(**raw) if isinstance(raw, dict) else None


def build_job_store(
    backend: str,
    *,
    db_path: Path | None = None,
    table: str = "render_jobs",
    redis_url: str | None = None,
    redis_prefix: str = "lr",
) -> JobStore:
    kind = str(backend or "sqlite").strip().lower()
    if kind == "redis":
        from loop_render.jobs.redis_store import RedisJobStore

        store: JobStore = RedisJobStore(redis_url=str(redis_url or ""), prefix=redis_prefix)
    elif kind == "sqlite":
        if db_path is None:
            raise ValueError("sqlite job store requires db_path")
        store = SqliteJobStore(db_path, table=table)
    else:
        raise ValueError(f"unknown job store backend: {backend!r}")
    logger.info("job_store_ready", backend=kind)
    return store
