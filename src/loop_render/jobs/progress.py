from __future__ import annotations

import time
from enum import Enum
from typing import Any, Protocol

from loop_render.utils.log import logger


class Stage(Enum):
    VALIDATION = (5, "Validating job data")
    DOWNLOAD_START = (10, "Starting download")
    DOWNLOAD_COMPLETE = (25, "Media downloaded, starting processing")
    PROCESSING_START = (30, "Processing media files")
    PROCESSING_COMPLETE = (90, "Processing complete, uploading to storage")
    UPLOAD_COMPLETE = (95, "Upload complete, finalizing")
    COMPLETE = (100, "Job completed successfully")

    @property
    def percent(self) -> int:
        return int(self.value[0])

    @property
    def label(self) -> str:
        return str(self.value[1])


class ProgressSink(Protocol):
    def report_progress(self, job_id: int, percent: int, label: str) -> None: ...


class ProgressTracker:
    """Per-job stage reporting with elapsed time; purely advisory."""

    def __init__(self, sink: ProgressSink, job_id: int) -> None:
        self.sink = sink
        self.job_id = int(job_id)
        self.started = time.monotonic()
        self.last_stage: Stage | None = None

    @property
    def elapsed_s(self) -> float:
        return time.monotonic() - self.started

    def stage(self, stage: Stage, **details: Any) -> None:
        self.last_stage = stage
        logger.debug(
            "job_stage",
            job_id=str(self.job_id),
            stage=stage.name,
            percent=stage.percent,
            elapsed_s=round(self.elapsed_s, 1),
            **details,
        )
        self.sink.report_progress(self.job_id, stage.percent, stage.label)

    def complete(self, **result: Any) -> dict[str, Any]:
        total = round(self.elapsed_s, 2)
        self.stage(Stage.COMPLETE)
        logger.info("job_completed", job_id=str(self.job_id), total_processing_s=total, **result)
        return {"job_id": self.job_id, "total_processing_s": total, **result}

    def fail(self, error: BaseException | str) -> dict[str, Any]:
        info = {
            "error": str(error),
            "failed_after_s": round(self.elapsed_s, 2),
            "failed_stage": self.last_stage.name if self.last_stage else None,
        }
        logger.error("job_attempt_failed", job_id=str(self.job_id), **info)
        return {"job_id": self.job_id, **info}
