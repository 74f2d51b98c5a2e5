"""
Wiring: the only place that turns Settings into components.

Everything below this module receives plain values through constructors.
"""

from __future__ import annotations

from pathlib import Path

from loop_render.config import Settings, validate_settings
from loop_render.fetch.downloader import MediaFetcher
from loop_render.jobs.claimer import JobClaimer
from loop_render.jobs.store import JobStore, build_job_store
from loop_render.media.ffmpeg import FFmpegRunner, check_ffmpeg
from loop_render.media.pipeline import RenderPipeline
from loop_render.media.probe import DurationProbe
from loop_render.media.profiles import CompressionProfile, resolve_profile
from loop_render.notify.webhook import WebhookNotifier
from loop_render.publish.object_store import LocalObjectStore, ObjectStore, S3ObjectStore
from loop_render.publish.publisher import ArtifactPublisher
from loop_render.utils.log import logger
from loop_render.worker import RenderWorker


def job_store_from_settings(s: Settings) -> JobStore:
    return build_job_store(
        s.job_store,
        db_path=s.public.jobs_db_path,
        table=s.jobs_table,
        redis_url=s.redis_url,
        redis_prefix=s.redis_queue_prefix,
    )


def object_store_from_settings(s: Settings) -> ObjectStore:
    kind = str(s.object_store or "s3").strip().lower()
    if kind == "local":
        root = s.local_store_dir or (Path(s.output_dir) / "_published")
        return LocalObjectStore(Path(root), public_base_url=s.public_base_url)
    return S3ObjectStore(
        bucket=s.s3_bucket,
        region=s.s3_region,
        endpoint_url=s.s3_endpoint,
        access_key_id=s.secret_value("s3_access_key_id"),
        secret_access_key=s.secret_value("s3_secret_access_key"),
        public_base_url=s.public_base_url,
        part_size=s.upload_part_size,
        concurrency=s.upload_concurrency,
    )


def notifier_from_settings(s: Settings) -> WebhookNotifier:
    return WebhookNotifier(
        timeout_s=s.webhook_timeout_s,
        auth=s.secret_value("webhook_auth") or None,
        user_agent=s.user_agent,
        tls_insecure=s.webhook_tls_insecure,
    )


def pipeline_from_settings(s: Settings, profile: CompressionProfile) -> RenderPipeline:
    runner = FFmpegRunner(
        ffmpeg_bin=s.ffmpeg_bin,
        timeout_s=s.transcode_timeout_s,
        threads=s.ffmpeg_threads,
        log_dir=s.ffmpeg_log_dir,
    )
    probe = DurationProbe(ffprobe_bin=s.ffprobe_bin, timeout_s=s.probe_timeout_s)
    return RenderPipeline(
        profile=profile,
        probe=probe,
        runner=runner,
        scratch_dir=Path(s.scratch_dir),
        output_dir=Path(s.output_dir),
    )


def fetcher_from_settings(s: Settings) -> MediaFetcher:
    return MediaFetcher(
        scratch_dir=Path(s.scratch_dir),
        timeout_s=s.download_timeout_s,
        retries=s.download_retries,
        backoff_base_s=s.download_backoff_base_s,
        backoff_cap_s=s.download_backoff_cap_s,
        user_agent=s.user_agent,
        min_video_bytes=s.min_video_bytes,
        min_audio_bytes=s.min_audio_bytes,
        max_file_bytes=s.max_file_bytes,
    )


def build_worker(
    s: Settings, *, preset: str | None = None, check_binaries: bool = True
) -> RenderWorker:
    """
    Resolve everything the worker needs, failing before any job is claimed.

    Raises ConfigError (UnknownPresetError for a bad preset name).
    """
    validate_settings(s, for_worker=True)
    profile = resolve_profile(preset or s.compression_preset)
    if check_binaries:
        check_ffmpeg(s.ffmpeg_bin, s.ffprobe_bin)

    store = job_store_from_settings(s)
    worker = RenderWorker(
        claimer=JobClaimer(store, notifier=notifier_from_settings(s)),
        fetcher=fetcher_from_settings(s),
        pipeline=pipeline_from_settings(s, profile),
        publisher=ArtifactPublisher(
            object_store_from_settings(s),
            key_pattern=s.artifact_key_pattern,
            content_type=s.upload_content_type,
        ),
        poll_interval_s=s.poll_interval_s,
        retain_unpublished=s.retain_unpublished,
    )
    logger.info(
        "worker_built",
        preset=profile.name,
        crf=profile.crf,
        max_height=profile.max_height,
        job_store=s.job_store,
        object_store=s.object_store,
    )
    return worker
