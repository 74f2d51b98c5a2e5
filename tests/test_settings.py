from __future__ import annotations

import pytest

from config.settings import get_safe_config_report
from loop_render.config import ConfigError, get_settings, validate_settings
from loop_render.errors import UnknownPresetError
from loop_render.factory import build_worker, object_store_from_settings
from loop_render.publish.object_store import LocalObjectStore, S3ObjectStore


def test_defaults_and_env(monkeypatch: pytest.MonkeyPatch) -> None:
    s = get_settings()
    assert s.compression_preset == "youtube-1080p"
    assert s.download_retries == 3
    assert s.user_agent == "VideoRenderer/1.0"
    assert s.jobs_table == "render_jobs"
    assert s.transcode_timeout_s is None
    assert s.public.jobs_db_path.name == "jobs.db"

    monkeypatch.setenv("TEMP_DIR", "/tmp/legacy-temp")
    monkeypatch.delenv("SCRATCH_DIR")
    monkeypatch.setenv("FFMPEG_PATH", "/opt/ffmpeg/bin/ffmpeg")
    get_settings.cache_clear()
    s = get_settings()
    assert str(s.scratch_dir) == "/tmp/legacy-temp"
    assert s.ffmpeg_bin == "/opt/ffmpeg/bin/ffmpeg"


def test_bad_store_names_fail_fast(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("JOB_STORE", "postgres")
    get_settings.cache_clear()
    with pytest.raises(ConfigError, match="JOB_STORE"):
        get_settings()

    monkeypatch.setenv("JOB_STORE", "redis")
    monkeypatch.delenv("REDIS_URL", raising=False)
    get_settings.cache_clear()
    with pytest.raises(ConfigError, match="REDIS_URL"):
        get_settings()


def test_s3_credentials_only_required_for_worker(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OBJECT_STORE", "s3")
    monkeypatch.setenv("S3_BUCKET", "renders")
    get_settings.cache_clear()
    s = get_settings()
    with pytest.raises(ConfigError, match="S3_ACCESS_KEY_ID"):
        validate_settings(s, for_worker=True)

    monkeypatch.setenv("S3_ACCESS_KEY_ID", "AKIDEXAMPLE")
    monkeypatch.setenv("S3_SECRET_ACCESS_KEY", "example-secret-key")
    get_settings.cache_clear()
    s = get_settings()
    validate_settings(s, for_worker=True)
    assert isinstance(object_store_from_settings(s), S3ObjectStore)


def test_key_pattern_needs_job_id(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ARTIFACT_KEY_PATTERN", "renders/{channel_id}/final.mp4")
    get_settings.cache_clear()
    with pytest.raises(ConfigError, match="ARTIFACT_KEY_PATTERN"):
        get_settings()


def test_unknown_preset_stops_worker_startup(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COMPRESSION_PRESET", "youtube-8k")
    get_settings.cache_clear()
    with pytest.raises(UnknownPresetError):
        build_worker(get_settings(), check_binaries=False)


def test_build_worker_with_local_store() -> None:
    s = get_settings()
    worker = build_worker(s, preset="small", check_binaries=False)
    assert worker.pipeline.profile.name == "small"  # type: ignore[attr-defined]
    assert isinstance(object_store_from_settings(s), LocalObjectStore)


def test_safe_config_report_hides_secrets(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WEBHOOK_AUTH", "token:very-secret-token")
    get_settings.cache_clear()
    report = get_safe_config_report()
    assert report["secrets"]["webhook_auth"] == "SET"
    assert report["secrets"]["s3_access_key_id"] == "UNSET"
    assert "very-secret-token" not in str(report)
