from __future__ import annotations

import asyncio
import json
import signal
from contextlib import suppress
from dataclasses import asdict
from pathlib import Path

import click

from loop_render import __version__
from loop_render.config import ConfigError, Settings, get_safe_config_report, get_settings
from loop_render.errors import PlanningError, RenderWorkerError, TranscodeError
from loop_render.factory import build_worker, job_store_from_settings
from loop_render.jobs.models import Job, JobStatus
from loop_render.jobs.validator import validate_job
from loop_render.media.planner import MediaKind, audio_loop_args, plan_loop, video_loop_args
from loop_render.media.probe import DurationProbe
from loop_render.media.profiles import DEFAULT_PRESET, PRESETS, resolve_profile
from loop_render.utils.log import configure_logging, set_worker_id
from loop_render.worker import RenderWorker, WorkerStats


def _bootstrap(log_level: str | None = None) -> Settings:
    try:
        s = get_settings()
    except ConfigError as ex:
        raise click.ClickException(str(ex)) from ex
    configure_logging(
        log_dir=Path(s.log_dir),
        level=log_level or s.log_level,
        max_bytes=s.log_max_bytes,
        backup_count=s.log_backup_count,
        secrets=[
            s.secret_value("s3_access_key_id"),
            s.secret_value("s3_secret_access_key"),
            s.secret_value("webhook_auth"),
            str(s.redis_url or ""),
        ],
    )
    return s


async def _run_worker(worker: RenderWorker, *, poll: bool, max_jobs: int | None) -> WorkerStats:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, worker.request_stop)
    return await worker.run(poll=poll, max_jobs=max_jobs)


@click.group(help="Loop a video and a soundtrack to a target length and publish the result.")
@click.version_option(__version__, prog_name="loop-render")
def cli() -> None:
    pass


@cli.command(name="run")
@click.option(
    "--poll/--once",
    default=False,
    show_default=True,
    help="Keep polling for new jobs, or drain the queue once and exit.",
)
@click.option("--max-jobs", type=click.IntRange(min=1), default=None, help="Stop after this many jobs.")
@click.option("--preset", default=None, help="Compression preset (overrides COMPRESSION_PRESET).")
@click.option("--log-level", default=None, help="Override LOG_LEVEL.")
@click.option("--worker-id", default=None, help="Tag every log line with this worker id.")
def run_cmd(
    poll: bool, max_jobs: int | None, preset: str | None, log_level: str | None, worker_id: str | None
) -> None:
    """
    Run the render worker.
    """
    s = _bootstrap(log_level)
    set_worker_id(worker_id)
    try:
        worker = build_worker(s, preset=preset)
    except ConfigError as ex:
        click.echo(f"startup failed: {ex}", err=True)
        raise SystemExit(2) from ex
    stats = asyncio.run(_run_worker(worker, poll=poll, max_jobs=max_jobs))
    click.echo(json.dumps(stats.to_dict(), sort_keys=True))


@cli.command(name="config")
def config_cmd() -> None:
    """Print the effective configuration (secrets shown as SET/UNSET)."""
    try:
        report = get_safe_config_report()
    except ConfigError as ex:
        raise click.ClickException(str(ex)) from ex
    click.echo(json.dumps(report, indent=2, sort_keys=True, default=str))


@cli.command(name="presets")
def presets_cmd() -> None:
    """List compression presets."""
    for name, p in PRESETS.items():
        marker = "*" if name == DEFAULT_PRESET else " "
        height = p.max_height or "original"
        click.echo(
            f"{marker} {name:<14} crf={p.crf:<3} preset={p.speed_preset:<7} "
            f"max_height={height!s:<8} audio={p.audio_bitrate}"
        )


@cli.command(name="plan")
@click.option("--duration", "duration_s", type=float, required=True, help="Source duration (seconds).")
@click.option("--minutes", type=int, required=True, help="Target length (minutes).")
@click.option(
    "--kind",
    type=click.Choice([k.value for k in MediaKind], case_sensitive=False),
    default=MediaKind.VIDEO.value,
    show_default=True,
)
@click.option("--preset", default=DEFAULT_PRESET, show_default=True)
def plan_cmd(duration_s: float, minutes: int, kind: str, preset: str) -> None:
    """Show how a source would be looped (no transcoding)."""
    try:
        profile = resolve_profile(preset)
        plan = plan_loop(Path("input"), duration_s, minutes, kind=MediaKind(kind.lower()))
    except (ConfigError, PlanningError) as ex:
        raise click.ClickException(str(ex)) from ex
    out = Path(f"looped_{plan.kind.value}")
    if plan.kind is MediaKind.VIDEO:
        args = video_loop_args(plan, out.with_suffix(".mp4"), profile)
    else:
        args = audio_loop_args(plan, out.with_suffix(".wav"), profile)
    body = {
        "kind": plan.kind.value,
        "source_seconds": plan.source_seconds,
        "target_seconds": plan.target_seconds,
        "loop_count": plan.loop_count,
        "strategy": plan.strategy.value,
        "preset": profile.summary(),
        "ffmpeg_args": args,
    }
    click.echo(json.dumps(body, indent=2))


@cli.command(name="probe")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--ffprobe", "ffprobe_bin", default="ffprobe", show_default=True)
def probe_cmd(path: Path, ffprobe_bin: str) -> None:
    """Inspect a media file."""
    try:
        info = DurationProbe(ffprobe_bin=ffprobe_bin).inspect(path)
    except TranscodeError as ex:
        raise click.ClickException(str(ex)) from ex
    click.echo(json.dumps(asdict(info), indent=2))


@cli.command(name="enqueue")
@click.option("--video", "video_url", required=True, help="Source video URL.")
@click.option("--audio", "audio_url", required=True, help="Soundtrack URL.")
@click.option("--minutes", type=int, required=True, help="Target length in minutes.")
@click.option("--channel", "channel_ref", required=True, help="Channel id (used in the object key).")
@click.option("--callback", "callback_ref", default=None, help="Webhook URL for the outcome.")
def enqueue_cmd(
    video_url: str, audio_url: str, minutes: int, channel_ref: str, callback_ref: str | None
) -> None:
    """Add a waiting job to the queue."""
    s = _bootstrap()
    job = Job(
        id=None,
        status=JobStatus.WAITING,
        source_video_ref=video_url,
        source_audio_ref=audio_url,
        target_minutes=minutes,
        channel_ref=channel_ref,
        callback_ref=callback_ref,
    )
    try:
        validate_job(job)
    except RenderWorkerError as ex:
        raise click.ClickException(str(ex)) from ex
    job = job_store_from_settings(s).put(job)
    click.echo(f"enqueued job {job.id}")


@cli.command(name="status")
@click.argument("job_id", type=int)
def status_cmd(job_id: int) -> None:
    """Show a job and its latest progress."""
    s = _bootstrap()
    store = job_store_from_settings(s)
    job = store.get(job_id)
    if job is None:
        raise click.ClickException(f"job {job_id} not found")
    body = job.to_dict()
    progress = store.get_progress(job_id)
    body["progress"] = progress.to_dict() if progress is not None else None
    click.echo(json.dumps(body, indent=2, sort_keys=True))


if __name__ == "__main__":  # pragma: no cover
    cli()
