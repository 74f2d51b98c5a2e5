from __future__ import annotations

import json
from typing import Any

from loop_render.jobs.models import Job, JobStatus, ProgressRecord, now_utc
from loop_render.jobs.store import _check_fields
from loop_render.utils.log import logger

# Check-and-set on one job hash, keeping the waiting index in step.
# KEYS[1]=job hash, KEYS[2]=waiting zset
# ARGV[1]=expected status ('' = any), ARGV[2]=new status, ARGV[3]=updated_at,
# ARGV[4]=job id, ARGV[5]=waiting status value, ARGV[6..]=field/value pairs
_TRANSITION_LUA = """
if redis.call('EXISTS', KEYS[1]) == 0 then
  return 0
end
if ARGV[1] ~= '' and redis.call('HGET', KEYS[1], 'status') ~= ARGV[1] then
  return 0
end
redis.call('HSET', KEYS[1], 'status', ARGV[2], 'updated_at', ARGV[3])
for i = 6, #ARGV, 2 do
  redis.call('HSET', KEYS[1], ARGV[i], ARGV[i + 1])
end
if ARGV[2] == ARGV[5] then
  redis.call('ZADD', KEYS[2], tonumber(ARGV[4]), ARGV[4])
else
  redis.call('ZREM', KEYS[2], ARGV[4])
end
return 1
"""


def _encode(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, dict):
        return json.dumps(v, sort_keys=True)
    if isinstance(v, JobStatus):
        return v.value
    return str(v)


class RedisJobStore:
    """
    Job queue in Redis.

    Layout (prefix `lr` by default):
      <prefix>:job:<id>        hash with the job fields
      <prefix>:jobs:waiting    zset of waiting ids scored by id (lowest first)
      <prefix>:jobs:seq        id counter
      <prefix>:job:<id>:progress  latest progress (JSON string)
    """

    def __init__(self, *, redis_url: str, prefix: str = "lr") -> None:
        url = str(redis_url or "").strip()
        if not url:
            raise ValueError("redis job store requires REDIS_URL")
        import redis  # type: ignore

        self._r = redis.Redis.from_url(url, decode_responses=True)
        self.prefix = str(prefix or "lr").strip().strip(":") or "lr"
        self._transition = self._r.register_script(_TRANSITION_LUA)

    def _job_key(self, job_id: int) -> str:
        return f"{self.prefix}:job:{int(job_id)}"

    def _waiting_key(self) -> str:
        return f"{self.prefix}:jobs:waiting"

    def _all_key(self) -> str:
        return f"{self.prefix}:jobs:all"

    def put(self, job: Job) -> Job:
        if job.id is None:
            job.id = int(self._r.incr(f"{self.prefix}:jobs:seq"))
        mapping = {k: _encode(v) for k, v in job.to_dict().items()}
        pipe = self._r.pipeline(transaction=True)
        pipe.hset(self._job_key(job.id), mapping=mapping)
        pipe.zadd(self._all_key(), {str(job.id): int(job.id)})
        if job.status == JobStatus.WAITING:
            pipe.zadd(self._waiting_key(), {str(job.id): int(job.id)})
        else:
            pipe.zrem(self._waiting_key(), str(job.id))
        pipe.execute()
        return job

    def get(self, job_id: int) -> Job | None:
        raw = self._r.hgetall(self._job_key(job_id))
        return Job.from_dict(raw) if raw else None

    def list(self, *, status: JobStatus | None = None, limit: int = 100) -> list[Job]:
        limit = max(1, min(1000, int(limit)))
        out: list[Job] = []
        for jid in self._r.zrange(self._all_key(), 0, -1):
            job = self.get(int(jid))
            if job is None or (status is not None and job.status != JobStatus(status)):
                continue
            out.append(job)
            if len(out) >= limit:
                break
        return out

    def select_candidate(self) -> Job | None:
        # Stale index entries (job deleted or moved on) are pruned as we go.
        for jid in self._r.zrange(self._waiting_key(), 0, 25):
            job = self.get(int(jid))
            if job is not None and job.status == JobStatus.WAITING and not job.final_artifact_ref:
                return job
            self._r.zrem(self._waiting_key(), jid)
            logger.debug("redis_waiting_index_pruned", job_id=str(jid))
        return None

    def _run_transition(
        self,
        job_id: int,
        to_status: JobStatus,
        fields: dict[str, Any] | None,
        *,
        from_status: JobStatus | None,
    ) -> bool:
        values = _check_fields(fields)
        args: list[str] = [
            JobStatus(from_status).value if from_status is not None else "",
            JobStatus(to_status).value,
            now_utc(),
            str(int(job_id)),
            JobStatus.WAITING.value,
        ]
        for k, v in values.items():
            args += [k, _encode(v)]
        res = self._transition(keys=[self._job_key(job_id), self._waiting_key()], args=args)
        return int(res or 0) == 1

    def conditional_transition(
        self,
        job_id: int,
        from_status: JobStatus,
        to_status: JobStatus,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        return self._run_transition(job_id, to_status, fields, from_status=from_status)

    def unconditional_transition(
        self, job_id: int, to_status: JobStatus, fields: dict[str, Any] | None = None
    ) -> bool:
        return self._run_transition(job_id, to_status, fields, from_status=None)

    def record_progress(self, job_id: int, percent: int, label: str) -> None:
        rec = ProgressRecord(job_id=int(job_id), percent=int(percent), label=str(label))
        self._r.set(f"{self._job_key(job_id)}:progress", json.dumps(rec.to_dict()))

    def get_progress(self, job_id: int) -> ProgressRecord | None:
        raw = self._r.get(f"{self._job_key(job_id)}:progress")
        return ProgressRecord(**json.loads(raw)) if raw else None
