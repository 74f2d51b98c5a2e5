from __future__ import annotations

import pytest

from loop_render.errors import ValidationError
from loop_render.jobs.models import Job, JobStatus
from loop_render.jobs.validator import is_valid_source_url, validate_job


def _job(**kw) -> Job:
    base = dict(
        id=7,
        status=JobStatus.CLAIMED,
        source_video_ref="https://cdn.example.com/v.mp4",
        source_audio_ref="https://cdn.example.com/a.mp3",
        target_minutes=10,
        channel_ref="UC123",
    )
    base.update(kw)
    return Job(**base)


def test_valid_job_passes() -> None:
    validate_job(_job())
    validate_job(_job(source_video_ref="file:///data/v.mp4"))


def test_missing_fields_are_all_reported() -> None:
    with pytest.raises(ValidationError) as ei:
        validate_job(_job(source_audio_ref=None, channel_ref="", target_minutes=None))
    err = ei.value
    assert set(err.missing) == {"source_audio_ref", "channel_ref", "target_minutes"}
    assert "Missing required field: source_audio_ref" in str(err)
    assert err.stage == "validation"


@pytest.mark.parametrize("minutes", [0, -1, 2.5, True, "10"])
def test_target_minutes_must_be_positive_int(minutes) -> None:
    with pytest.raises(ValidationError) as ei:
        validate_job(_job(target_minutes=minutes))
    assert ei.value.invalid == ["target_minutes must be a positive integer"]


def test_blank_channel_and_bad_urls() -> None:
    with pytest.raises(ValidationError) as ei:
        validate_job(_job(channel_ref="   ", source_video_ref="ftp://x/v.mp4"))
    assert "channel_ref must not be blank" in ei.value.invalid
    assert "source_video_ref must be a valid URL" in ei.value.invalid


@pytest.mark.parametrize(
    ("url", "ok"),
    [
        ("https://cdn.example.com/v.mp4", True),
        ("http://10.0.0.1:8080/a.wav", True),
        ("file:///tmp/a.wav", True),
        ("https:///nohost", False),
        ("not a url", False),
        ("", False),
        ("javascript:alert(1)", False),
    ],
)
def test_is_valid_source_url(url: str, ok: bool) -> None:
    assert is_valid_source_url(url) is ok
