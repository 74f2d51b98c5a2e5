from __future__ import annotations

from config.settings import ConfigError


class RenderWorkerError(RuntimeError):
    """Base class for every failure that ends a job attempt."""

    stage = "render"


class ValidationError(RenderWorkerError):
    stage = "validation"

    def __init__(self, message: str, *, missing: list[str] | None = None, invalid: list[str] | None = None):
        super().__init__(message)
        self.missing = list(missing or [])
        self.invalid = list(invalid or [])


class FetchError(RenderWorkerError):
    stage = "download"


class PlanningError(RenderWorkerError):
    stage = "planning"


class TranscodeError(RenderWorkerError):
    stage = "transcode"


class PublishError(RenderWorkerError):
    stage = "publish"


class NotificationError(RenderWorkerError):
    stage = "notify"


class UnknownPresetError(ConfigError):
    def __init__(self, name: str, available: list[str]):
        super().__init__(
            f"Unknown compression preset: {name!r}. Available: {', '.join(sorted(available))}"
        )
        self.name = name
        self.available = sorted(available)


__all__ = [
    "ConfigError",
    "FetchError",
    "NotificationError",
    "PlanningError",
    "PublishError",
    "RenderWorkerError",
    "TranscodeError",
    "UnknownPresetError",
    "ValidationError",
]
