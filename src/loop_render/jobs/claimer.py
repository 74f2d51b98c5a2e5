from __future__ import annotations

from typing import Any

from loop_render.jobs.models import Job, JobStatus
from loop_render.jobs.store import JobStore
from loop_render.notify.base import WorkflowNotifier
from loop_render.utils.log import logger


def error_message(error: BaseException | str) -> str:
    if isinstance(error, BaseException):
        msg = str(error).strip()
        return msg or type(error).__name__
    return str(error or "").strip() or "Unknown error"


class JobClaimer:
    """
    Claim protocol over a JobStore.

    waiting -> claimed -> {rendered | failed}. Only the first edge is contested
    and it is won by exactly one conditional write; there is no lock to leak.
    """

    def __init__(self, store: JobStore, *, notifier: WorkflowNotifier | None = None) -> None:
        self.store = store
        self.notifier = notifier

    def claim(self) -> Job | None:
        """
        Take the lowest-id waiting job, or None.

        None means either the queue is empty or another worker won the race
        for the candidate; `has_waiting()` tells the two apart.
        """
        candidate = self.store.select_candidate()
        if candidate is None or candidate.id is None:
            return None
        won = self.store.conditional_transition(
            candidate.id, JobStatus.WAITING, JobStatus.CLAIMED
        )
        if not won:
            logger.info("claim_lost_race", job_id=str(candidate.id))
            return None
        candidate.status = JobStatus.CLAIMED
        logger.info("job_claimed", job_id=str(candidate.id))
        return candidate

    def has_waiting(self) -> bool:
        return self.store.select_candidate() is not None

    def complete(
        self, job_id: int, artifact_ref: str, metadata: dict[str, Any] | None = None
    ) -> bool:
        ok = self.store.unconditional_transition(
            job_id,
            JobStatus.RENDERED,
            {
                "final_artifact_ref": str(artifact_ref),
                "error": None,
                "render_metadata": dict(metadata or {}),
            },
        )
        if not ok:
            logger.error("job_complete_update_failed", job_id=str(job_id))
            return False
        logger.info("job_rendered", job_id=str(job_id), artifact_ref=str(artifact_ref))

        # The transition above is final whatever the webhook does.
        self._notify(
            job_id,
            "notify_completion",
            artifact_ref=str(artifact_ref),
            metadata=metadata,
        )
        return True

    def fail(
        self,
        job_id: int,
        error: BaseException | str,
        *,
        details: dict[str, Any] | None = None,
    ) -> bool:
        msg = error_message(error)
        ok = self.store.unconditional_transition(
            job_id,
            JobStatus.FAILED,
            {"final_artifact_ref": None, "error": msg},
        )
        if not ok:
            logger.error("job_fail_update_failed", job_id=str(job_id), error=msg)
            return False
        logger.warning("job_failed", job_id=str(job_id), error=msg)

        self._notify(job_id, "notify_failure", error_message=msg, details=details)
        return True

    def _notify(self, job_id: int, method: str, **kwargs: Any) -> None:
        """Best effort: nothing raised here reaches the job's stored state."""
        if self.notifier is None:
            return
        try:
            job = self.store.get(job_id)
            # only outcomes are announced
            if job is None or not job.callback_ref or not job.status.terminal:
                return
            getattr(self.notifier, method)(job_id=job_id, callback_url=job.callback_ref, **kwargs)
        except Exception as ex:
            logger.warning(
                "job_notification_failed", job_id=str(job_id), method=method, error=str(ex)
            )

    def report_progress(self, job_id: int, percent: int, label: str) -> None:
        """Advisory: a failure here is logged and never reaches the render."""
        pct = max(0, min(100, int(percent)))
        logger.info("job_progress", job_id=str(job_id), percent=pct, stage=str(label))
        try:
            self.store.record_progress(job_id, pct, str(label))
        except Exception as ex:
            logger.warning("job_progress_write_failed", job_id=str(job_id), error=str(ex))
