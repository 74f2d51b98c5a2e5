from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Protocol

from loop_render.errors import RenderWorkerError
from loop_render.fetch.downloader import FetchedMedia
from loop_render.jobs.claimer import JobClaimer, error_message
from loop_render.jobs.models import Job
from loop_render.jobs.progress import ProgressTracker, Stage
from loop_render.jobs.validator import validate_job
from loop_render.media.pipeline import RenderResult
from loop_render.publish.publisher import PublishResult
from loop_render.utils.io import cleanup_paths
from loop_render.utils.log import logger, set_job_id


class Fetcher(Protocol):
    async def fetch(self, video_url: str, audio_url: str) -> FetchedMedia: ...


class Renderer(Protocol):
    async def render(
        self, video_path: Path, audio_path: Path, minutes: int, *, output_name: str | None = None
    ) -> RenderResult: ...


class Publisher(Protocol):
    def publish(self, local_path: Path, channel_ref: object, job_id: object) -> PublishResult: ...


@dataclass(frozen=True, slots=True)
class JobOutcome:
    job_id: int
    ok: bool
    artifact_ref: str | None = None
    error: str | None = None


@dataclass(slots=True)
class WorkerStats:
    claimed: int = 0
    rendered: int = 0
    failed: int = 0
    lost_races: int = 0
    store_errors: int = 0

    @property
    def processed(self) -> int:
        return self.rendered + self.failed

    def record(self, outcome: JobOutcome) -> None:
        if outcome.ok:
            self.rendered += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class RenderWorker:
    """
    One render in flight; poll -> claim -> fetch -> render -> publish -> complete/fail.

    Every failure of a claimed job ends in `JobClaimer.fail`, including
    unexpected exceptions and shutdown mid-render.
    """

    def __init__(
        self,
        *,
        claimer: JobClaimer,
        fetcher: Fetcher,
        pipeline: Renderer,
        publisher: Publisher,
        poll_interval_s: float = 5.0,
        retain_unpublished: bool = True,
    ) -> None:
        self.claimer = claimer
        self.fetcher = fetcher
        self.pipeline = pipeline
        self.publisher = publisher
        self.poll_interval_s = max(0.0, float(poll_interval_s))
        self.retain_unpublished = bool(retain_unpublished)
        self._stop = asyncio.Event()

    def request_stop(self) -> None:
        """Finish the job in flight, then claim nothing more."""
        if not self._stop.is_set():
            logger.info("worker_stop_requested")
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def _idle(self) -> None:
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval_s)

    async def run(self, *, poll: bool = False, max_jobs: int | None = None) -> WorkerStats:
        """
        poll=False drains the queue and returns; poll=True keeps waiting for work
        until `request_stop()`.
        """
        stats = WorkerStats()
        logger.info("worker_start", mode="poll" if poll else "drain", max_jobs=max_jobs)
        while not self._stop.is_set():
            if max_jobs is not None and stats.processed >= int(max_jobs):
                break
            try:
                job = await asyncio.to_thread(self.claimer.claim)
                more = job is None and await asyncio.to_thread(self.claimer.has_waiting)
            except Exception as ex:
                stats.store_errors += 1
                logger.error("job_claim_failed", error=str(ex))
                if not poll:
                    break
                await self._idle()
                continue
            if job is None:
                if more:
                    # another worker took our candidate; there is more to try
                    stats.lost_races += 1
                    await asyncio.sleep(0)
                    continue
                if not poll:
                    break
                await self._idle()
                continue
            stats.claimed += 1
            stats.record(await self.process_job(job))
        logger.info("worker_done", **stats.to_dict())
        return stats

    async def process_job(self, job: Job) -> JobOutcome:
        if job.id is None:
            raise ValueError("cannot process a job without an id")
        set_job_id(job.id)
        tracker = ProgressTracker(self.claimer, job.id)
        media: FetchedMedia | None = None
        unpublished: Path | None = None
        try:
            await self._stage(tracker, Stage.VALIDATION)
            validate_job(job)

            await self._stage(tracker, Stage.DOWNLOAD_START)
            media = await self.fetcher.fetch(job.source_video_ref, job.source_audio_ref)
            await self._stage(
                tracker,
                Stage.DOWNLOAD_COMPLETE,
                video_bytes=media.video_bytes,
                audio_bytes=media.audio_bytes,
            )

            await self._stage(tracker, Stage.PROCESSING_START)
            result = await self.pipeline.render(
                media.video_path,
                media.audio_path,
                job.target_minutes,
                output_name=f"render_{job.id}",
            )
            unpublished = result.output_path
            await self._stage(tracker, Stage.PROCESSING_COMPLETE)

            published = await asyncio.to_thread(
                self.publisher.publish, result.output_path, job.channel_ref, job.id
            )
            unpublished = None
            await self._stage(tracker, Stage.UPLOAD_COMPLETE)

            metadata: dict[str, Any] = {
                **result.metadata,
                "video_loops": result.video_plan.loop_count,
                "audio_loops": result.audio_plan.loop_count,
                "object_key": published.key,
                "etag": published.etag,
            }
            if not await asyncio.to_thread(
                self.claimer.complete, job.id, published.artifact_ref, metadata
            ):
                return JobOutcome(job_id=job.id, ok=False, error="job store rejected completion")
            await asyncio.to_thread(
                tracker.complete, output_url=published.artifact_ref, file_size=published.byte_size
            )
            return JobOutcome(job_id=job.id, ok=True, artifact_ref=published.artifact_ref)
        except asyncio.CancelledError:
            tracker.fail("worker shut down mid-render")
            self._discard_or_retain(unpublished)
            await self._record_failure(job.id, "worker shut down mid-render")
            raise
        except Exception as ex:
            if not isinstance(ex, RenderWorkerError):
                logger.exception("job_unexpected_error", job_id=str(job.id))
            tracker.fail(ex)
            details = self._discard_or_retain(unpublished)
            await self._record_failure(job.id, ex, details=details)
            return JobOutcome(job_id=job.id, ok=False, error=error_message(ex))
        finally:
            if media is not None:
                cleanup_paths(media.paths())
            set_job_id(None)

    async def _stage(self, tracker: ProgressTracker, stage: Stage, **details: Any) -> None:
        await asyncio.to_thread(tracker.stage, stage, **details)

    async def _record_failure(
        self, job_id: int, error: BaseException | str, *, details: dict[str, Any] | None = None
    ) -> None:
        # the job may stay claimed; the batch goes on
        try:
            await asyncio.to_thread(self.claimer.fail, job_id, error, details=details)
        except Exception as ex:
            logger.error("job_fail_record_failed", job_id=str(job_id), error=str(ex))

    def _discard_or_retain(self, path: Path | None) -> dict[str, Any]:
        if path is None or not path.exists():
            return {}
        if self.retain_unpublished:
            logger.warning("unpublished_artifact_retained", path=str(path))
            return {"retainedArtifact": str(path)}
        cleanup_paths([path])
        return {}
