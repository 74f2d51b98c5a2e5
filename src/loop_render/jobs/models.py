from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    # stored values match the queue table shared with the job producers
    WAITING = "waiting_render"
    CLAIMED = "rendering"
    RENDERED = "rendered"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in {JobStatus.RENDERED, JobStatus.FAILED}


def now_utc() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


@dataclass(slots=True)
class Job:
    id: int | None
    status: JobStatus
    source_video_ref: str
    source_audio_ref: str
    target_minutes: int
    channel_ref: str
    callback_ref: str | None = None
    final_artifact_ref: str | None = None
    error: str | None = None
    render_metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=now_utc)
    updated_at: str = field(default_factory=now_utc)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Job:
        dd = dict(d)
        # Rows written by other producers may lack fields; the validator reports them.
        for k in ("source_video_ref", "source_audio_ref", "channel_ref"):
            dd.setdefault(k, None)
        dd.setdefault("target_minutes", None)
        dd.setdefault("callback_ref", None)
        dd.setdefault("final_artifact_ref", None)
        dd.setdefault("error", None)
        dd.setdefault("created_at", now_utc())
        dd.setdefault("updated_at", dd["created_at"])
        meta = dd.get("render_metadata")
        if isinstance(meta, str):
            meta = json.loads(meta) if meta.strip() else {}
        dd["render_metadata"] = dict(meta or {})
        st = dd["status"]
        if isinstance(st, str) and st.startswith("JobStatus."):
            st = JobStatus[st.split(".", 1)[1]]
        dd["status"] = JobStatus(st)
        if dd.get("id") not in (None, ""):
            dd["id"] = int(dd["id"])
        # empty strings come back from stores without NULL (redis hashes)
        for k in ("callback_ref", "final_artifact_ref", "error"):
            if dd.get(k) == "":
                dd[k] = None
        # anything else is left as-is for the validator to reject
        tm = dd.get("target_minutes")
        if isinstance(tm, str) and tm.strip().isdigit():
            dd["target_minutes"] = int(tm.strip())
        allowed = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in dd.items() if k in allowed})


@dataclass(frozen=True, slots=True)
class ProgressRecord:
    job_id: int
    percent: int
    label: str
    updated_at: str = field(default_factory=now_utc)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
