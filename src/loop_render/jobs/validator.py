from __future__ import annotations

from urllib.parse import urlparse

from loop_render.errors import ValidationError
from loop_render.jobs.models import Job
from loop_render.utils.log import logger

REQUIRED_FIELDS = ("source_video_ref", "source_audio_ref", "target_minutes", "channel_ref")
_SOURCE_SCHEMES = {"http", "https", "file"}


def is_valid_source_url(url: str) -> bool:
    try:
        u = urlparse(str(url or "").strip())
    except ValueError:
        return False
    if u.scheme not in _SOURCE_SCHEMES:
        return False
    if u.scheme == "file":
        return bool(u.path)
    return bool(u.netloc)


def _is_positive_int(v: object) -> bool:
    return isinstance(v, int) and not isinstance(v, bool) and v > 0


def validate_job(job: Job) -> None:
    """
    Raise ValidationError listing every missing or malformed field.

    Runs before any download, so a bad row costs nothing but a status update.
    """
    missing = [f for f in REQUIRED_FIELDS if getattr(job, f, None) in (None, "")]
    invalid: list[str] = []

    if "target_minutes" not in missing and not _is_positive_int(job.target_minutes):
        invalid.append("target_minutes must be a positive integer")
    if "channel_ref" not in missing and not str(job.channel_ref).strip():
        invalid.append("channel_ref must not be blank")
    if "source_video_ref" not in missing and not is_valid_source_url(job.source_video_ref):
        invalid.append("source_video_ref must be a valid URL")
    if "source_audio_ref" not in missing and not is_valid_source_url(job.source_audio_ref):
        invalid.append("source_audio_ref must be a valid URL")

    if missing or invalid:
        errors = [f"Missing required field: {f}" for f in missing] + invalid
        logger.warning("job_validation_failed", job_id=str(job.id), errors=errors)
        raise ValidationError(
            "Job validation failed: " + "; ".join(errors), missing=missing, invalid=invalid
        )
