from __future__ import annotations

import base64
import http.client
import json
import ssl
import urllib.error
import urllib.request
from typing import Any

from loop_render.errors import NotificationError
from loop_render.jobs.models import JobStatus, now_utc
from loop_render.utils.log import logger

from .base import WorkflowEvent


def parse_auth(raw: str) -> dict[str, str]:
    """
    Supported formats:
      - "Bearer <token>"
      - "token:<token>"
      - "userpass:<user>:<pass>"
      - "<user>:<pass>"
    Returns headers to apply. Never returns secrets for logging.
    """
    v = (raw or "").strip()
    if not v:
        return {}
    if v.lower().startswith("bearer "):
        return {"Authorization": v}
    if v.lower().startswith("token:"):
        tok = v.split(":", 1)[1].strip()
        return {"Authorization": f"Bearer {tok}"}
    if v.lower().startswith("userpass:"):
        rest = v.split(":", 1)[1]
        parts = rest.split(":", 1)
        if len(parts) != 2:
            return {}
        b64 = base64.b64encode(f"{parts[0]}:{parts[1]}".encode()).decode("ascii")
        return {"Authorization": f"Basic {b64}"}
    if ":" in v and not v.startswith("http"):
        user, pw = v.split(":", 1)
        b64 = base64.b64encode(f"{user}:{pw}".encode()).decode("ascii")
        return {"Authorization": f"Basic {b64}"}
    # Unknown format; treat as bearer token for convenience.
    return {"Authorization": f"Bearer {v}"}


class WebhookNotifier:
    """
    JSON POST to the job's callback URL.

    Single attempt per event: a workflow engine that misses a callback can
    still read the final state from the queue table. Non-2xx answers and
    transport errors are logged, never raised to the caller.
    """

    def __init__(
        self,
        *,
        timeout_s: float = 10.0,
        auth: str | None = None,
        user_agent: str = "VideoRenderer/1.0",
        tls_insecure: bool = False,
    ) -> None:
        self.timeout_s = float(timeout_s)
        self._auth_headers = parse_auth(auth or "") if auth else {}
        self.user_agent = str(user_agent)
        self.tls_insecure = bool(tls_insecure)

    def _post_json(self, url: str, body: dict[str, Any]) -> int:
        data = json.dumps(body, default=str).encode("utf-8")
        req = urllib.request.Request(url, data=data, method="POST")
        req.add_header("Content-Type", "application/json")
        req.add_header("User-Agent", self.user_agent)
        for k, v in self._auth_headers.items():
            req.add_header(k, v)
        ctx = ssl._create_unverified_context() if self.tls_insecure else None
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s, context=ctx) as resp:
                status = int(getattr(resp, "status", 200) or 200)
        except urllib.error.HTTPError as ex:
            raise NotificationError(f"webhook answered HTTP {ex.code}") from ex
        except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as ex:
            raise NotificationError(f"webhook delivery failed: {ex}") from ex
        if not 200 <= status < 300:
            raise NotificationError(f"webhook answered HTTP {status}")
        return status

    def send(self, event: WorkflowEvent) -> bool:
        body = {
            "jobId": event.job_id,
            "status": event.status,
            "timestamp": now_utc(),
            **event.payload,
        }
        try:
            status = self._post_json(event.callback_url, body)
        except NotificationError as ex:
            logger.error(
                "webhook_failed",
                job_id=str(event.job_id),
                outcome=event.status,
                url=event.callback_url,
                error=str(ex),
            )
            return False
        logger.info(
            "webhook_sent",
            job_id=str(event.job_id),
            outcome=event.status,
            url=event.callback_url,
            status=status,
        )
        return True

    def notify_completion(
        self,
        *,
        job_id: int,
        callback_url: str,
        artifact_ref: str,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        ts = now_utc()
        payload = {"final_video_url": artifact_ref, "completed_at": ts, **(metadata or {})}
        return self.send(
            WorkflowEvent(
                job_id=job_id,
                status=JobStatus.RENDERED.value,
                callback_url=callback_url,
                payload=payload,
            )
        )

    def notify_failure(
        self,
        *,
        job_id: int,
        callback_url: str,
        error_message: str,
        details: dict[str, Any] | None = None,
    ) -> bool:
        payload = {
            "error_message": error_message or "Unknown error",
            "failed_at": now_utc(),
            **(details or {}),
        }
        return self.send(
            WorkflowEvent(
                job_id=job_id,
                status=JobStatus.FAILED.value,
                callback_url=callback_url,
                payload=payload,
            )
        )
