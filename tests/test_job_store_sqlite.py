from __future__ import annotations

import multiprocessing as mp
import sqlite3
from pathlib import Path

import pytest

from loop_render.jobs.claimer import JobClaimer
from loop_render.jobs.models import Job, JobStatus
from loop_render.jobs.store import SqliteJobStore, build_job_store


def _job(**kw) -> Job:
    base = dict(
        id=None,
        status=JobStatus.WAITING,
        source_video_ref="https://cdn.example.com/v.mp4",
        source_audio_ref="https://cdn.example.com/a.mp3",
        target_minutes=1,
        channel_ref="chan1",
    )
    base.update(kw)
    return Job(**base)


def _claim_all(db_path: str, out_path: str) -> None:
    claimer = JobClaimer(SqliteJobStore(Path(db_path)))
    won: list[str] = []
    while True:
        job = claimer.claim()
        if job is None:
            if claimer.has_waiting():
                continue
            break
        won.append(str(job.id))
    Path(out_path).write_text("\n".join(won), encoding="utf-8")


def test_put_get_roundtrip(tmp_path: Path) -> None:
    store = SqliteJobStore(tmp_path / "jobs.db")
    job = store.put(_job(callback_ref="https://hooks.example.com/x"))
    assert job.id == 1
    got = store.get(1)
    assert got is not None
    assert got.status is JobStatus.WAITING
    assert got.callback_ref == "https://hooks.example.com/x"
    assert got.render_metadata == {}
    assert store.get(99) is None


def test_candidate_is_lowest_waiting_without_artifact(tmp_path: Path) -> None:
    store = SqliteJobStore(tmp_path / "jobs.db")
    store.put(_job(status=JobStatus.RENDERED, final_artifact_ref="https://x/1.mp4"))
    store.put(_job(final_artifact_ref="https://x/already.mp4"))
    third = store.put(_job())
    store.put(_job())
    cand = store.select_candidate()
    assert cand is not None and cand.id == third.id


def test_conditional_transition_wins_once(tmp_path: Path) -> None:
    store = SqliteJobStore(tmp_path / "jobs.db")
    job = store.put(_job())
    assert store.conditional_transition(job.id, JobStatus.WAITING, JobStatus.CLAIMED) is True
    assert store.conditional_transition(job.id, JobStatus.WAITING, JobStatus.CLAIMED) is False
    assert store.get(job.id).status is JobStatus.CLAIMED  # type: ignore[union-attr]
    assert store.conditional_transition(999, JobStatus.WAITING, JobStatus.CLAIMED) is False


def test_transition_fields(tmp_path: Path) -> None:
    store = SqliteJobStore(tmp_path / "jobs.db")
    job = store.put(_job())
    assert store.unconditional_transition(
        job.id,
        JobStatus.RENDERED,
        {"final_artifact_ref": "https://cdn/x.mp4", "render_metadata": {"fps": 25.0}},
    )
    got = store.get(job.id)
    assert got is not None
    assert got.final_artifact_ref == "https://cdn/x.mp4"
    assert got.render_metadata == {"fps": 25.0}

    with pytest.raises(ValueError):
        store.unconditional_transition(job.id, JobStatus.FAILED, {"status": "rendered"})


def test_list_filters_by_status(tmp_path: Path) -> None:
    store = SqliteJobStore(tmp_path / "jobs.db")
    store.put(_job())
    store.put(_job(status=JobStatus.FAILED))
    assert [j.status for j in store.list()] == [JobStatus.WAITING, JobStatus.FAILED]
    assert len(store.list(status=JobStatus.FAILED)) == 1


def test_rows_from_other_producers_load(tmp_path: Path) -> None:
    db = tmp_path / "jobs.db"
    store = SqliteJobStore(db)
    with sqlite3.connect(str(db)) as con:
        con.execute(
            "INSERT INTO render_jobs (status, source_video_ref, target_minutes) VALUES (?, ?, ?)",
            ("waiting_render", "https://cdn/v.mp4", "3"),
        )
    job = store.select_candidate()
    assert job is not None
    assert job.target_minutes == 3
    assert job.source_audio_ref is None
    assert job.render_metadata == {}


def test_progress_is_kept_per_job(tmp_path: Path) -> None:
    store = SqliteJobStore(tmp_path / "jobs.db")
    job = store.put(_job())
    assert store.get_progress(job.id) is None
    store.record_progress(job.id, 10, "Starting download")
    store.record_progress(job.id, 25, "Media downloaded")
    rec = store.get_progress(job.id)
    assert rec is not None
    assert (rec.percent, rec.label) == (25, "Media downloaded")


def test_invalid_table_name_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        SqliteJobStore(tmp_path / "jobs.db", table="jobs; DROP TABLE x")
    with pytest.raises(ValueError):
        build_job_store("postgres", db_path=tmp_path / "jobs.db")


def test_concurrent_claims_are_exclusive(tmp_path: Path) -> None:
    db_path = tmp_path / "jobs.db"
    store = SqliteJobStore(db_path)
    for _ in range(30):
        store.put(_job())

    ctx = mp.get_context("spawn")
    outs = [tmp_path / f"claims_{i}.txt" for i in range(3)]
    procs = [ctx.Process(target=_claim_all, args=(str(db_path), str(o))) for o in outs]
    for p in procs:
        p.start()
    for p in procs:
        p.join(60)
    assert all(p.exitcode == 0 for p in procs)

    claimed: list[str] = []
    for o in outs:
        text = o.read_text(encoding="utf-8")
        claimed += [x for x in text.splitlines() if x]
    assert len(claimed) == 30
    assert len(set(claimed)) == 30
    assert store.select_candidate() is None
    assert all(j.status is JobStatus.CLAIMED for j in store.list())
