from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class WorkflowEvent:
    job_id: int
    status: str  # rendered|failed
    callback_url: str
    payload: dict[str, Any] = field(default_factory=dict)


class WorkflowNotifier(Protocol):
    """Best-effort outcome delivery. Implementations never raise."""

    def notify_completion(
        self,
        *,
        job_id: int,
        callback_url: str,
        artifact_ref: str,
        metadata: dict[str, Any] | None = None,
    ) -> bool: ...

    def notify_failure(
        self,
        *,
        job_id: int,
        callback_url: str,
        error_message: str,
        details: dict[str, Any] | None = None,
    ) -> bool: ...
