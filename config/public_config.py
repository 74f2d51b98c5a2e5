from __future__ import annotations

import os
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_app_root() -> Path:
    """
    Default application root.

    Historically, this worker assumes:
      - Docker: /app
      - Local/dev: current working directory
    """
    env = os.environ.get("APP_ROOT")
    if env:
        return Path(env).resolve()
    if Path("/app").exists():
        return Path("/app").resolve()
    return Path.cwd().resolve()


class PublicConfig(BaseSettings):
    """
    Non-sensitive config with safe defaults.

    Loaded from (in order):
      - process env
      - optional `.env` file
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # --- core paths ---
    app_root: Path = Field(default_factory=_default_app_root, alias="APP_ROOT")
    scratch_dir: Path = Field(
        default_factory=lambda: (Path.cwd() / "temp").resolve(),
        validation_alias=AliasChoices("SCRATCH_DIR", "TEMP_DIR"),
    )
    output_dir: Path = Field(
        default_factory=lambda: (Path.cwd() / "output").resolve(), alias="OUTPUT_DIR"
    )
    log_dir: Path = Field(default_factory=lambda: (Path.cwd() / "logs").resolve(), alias="LOG_DIR")
    # Runtime-only state directory (job DB). If unset, defaults to "<OUTPUT_DIR>/_state".
    state_dir: Path | None = Field(default=None, alias="STATE_DIR")
    jobs_db_name: str = Field(default="jobs.db", alias="JOBS_DB_NAME")
    jobs_table: str = Field(default="render_jobs", alias="JOBS_TABLE")

    # --- logging ---
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_max_bytes: int = Field(default=5 * 1024 * 1024, alias="LOG_MAX_BYTES")
    log_backup_count: int = Field(default=3, alias="LOG_BACKUP_COUNT")

    # --- tool binaries ---
    ffmpeg_bin: str = Field(
        default="ffmpeg", validation_alias=AliasChoices("FFMPEG_BIN", "FFMPEG_PATH")
    )
    ffprobe_bin: str = Field(
        default="ffprobe", validation_alias=AliasChoices("FFPROBE_BIN", "FFPROBE_PATH")
    )
    ffmpeg_threads: int = Field(default=0, alias="FFMPEG_THREADS")  # 0 = let ffmpeg decide
    # Optional watchdog for a single transcoder invocation (unset = wait forever)
    transcode_timeout_s: float | None = Field(default=None, alias="TRANSCODE_TIMEOUT_S")
    probe_timeout_s: float = Field(default=30.0, alias="PROBE_TIMEOUT_S")
    # Dump argv + stderr of every transcoder call here (debugging aid; off by default)
    ffmpeg_log_dir: Path | None = Field(default=None, alias="FFMPEG_LOG_DIR")

    # --- render ---
    compression_preset: str = Field(default="youtube-1080p", alias="COMPRESSION_PRESET")

    # --- downloads ---
    download_timeout_s: float = Field(default=300.0, alias="DOWNLOAD_TIMEOUT_S")
    download_retries: int = Field(default=3, alias="DOWNLOAD_RETRIES")
    download_backoff_base_s: float = Field(default=1.0, alias="DOWNLOAD_BACKOFF_BASE_S")
    download_backoff_cap_s: float = Field(default=10.0, alias="DOWNLOAD_BACKOFF_CAP_S")
    user_agent: str = Field(default="VideoRenderer/1.0", alias="USER_AGENT")
    min_video_bytes: int = Field(default=10 * 1024, alias="MIN_VIDEO_BYTES")
    min_audio_bytes: int = Field(default=5 * 1024, alias="MIN_AUDIO_BYTES")
    max_file_bytes: int = Field(default=2 * 1024 * 1024 * 1024, alias="MAX_FILE_BYTES")

    # --- job store ---
    job_store: str = Field(default="sqlite", alias="JOB_STORE")  # sqlite|redis
    redis_queue_prefix: str = Field(default="lr", alias="REDIS_QUEUE_PREFIX")

    # --- object store ---
    object_store: str = Field(default="s3", alias="OBJECT_STORE")  # s3|local
    s3_endpoint: str | None = Field(default=None, alias="S3_ENDPOINT")
    s3_region: str = Field(default="us-east-1", alias="S3_REGION")
    s3_bucket: str = Field(default="", alias="S3_BUCKET")
    public_base_url: str = Field(default="", alias="PUBLIC_BASE_URL")
    local_store_dir: Path | None = Field(default=None, alias="LOCAL_STORE_DIR")
    artifact_key_pattern: str = Field(
        default="renders/channel_{channel_id}/finals/rendered_version_{job_id}.mp4",
        alias="ARTIFACT_KEY_PATTERN",
    )
    upload_part_size: int = Field(default=10 * 1024 * 1024, alias="UPLOAD_PART_SIZE")
    upload_concurrency: int = Field(default=4, alias="UPLOAD_CONCURRENCY")
    upload_content_type: str = Field(default="video/mp4", alias="UPLOAD_CONTENT_TYPE")
    # Keep the rendered file on disk when publishing fails (manual recovery)
    retain_unpublished: bool = Field(default=True, alias="RETAIN_UNPUBLISHED")

    # --- webhook ---
    webhook_timeout_s: float = Field(default=10.0, alias="WEBHOOK_TIMEOUT_S")
    webhook_tls_insecure: bool = Field(default=False, alias="WEBHOOK_TLS_INSECURE")

    # --- worker loop ---
    poll_interval_s: float = Field(default=5.0, alias="POLL_INTERVAL_S")

    @property
    def jobs_db_path(self) -> Path:
        base = self.state_dir or (Path(self.output_dir) / "_state")
        return Path(base) / str(self.jobs_db_name)
