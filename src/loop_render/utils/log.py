from __future__ import annotations

import logging
import re
import sys
from collections.abc import Iterable
from contextlib import suppress
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

job_id_var: ContextVar[str | None] = ContextVar("job_id", default=None)
worker_id_var: ContextVar[str | None] = ContextVar("worker_id", default=None)


def set_job_id(job_id: object | None) -> None:
    job_id_var.set(str(job_id) if job_id is not None else None)


def set_worker_id(worker_id: str | None) -> None:
    worker_id_var.set(worker_id)


_BEARER_RE = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9_\-\.=]+)")
_BASIC_RE = re.compile(r"(?i)\bBasic\s+([A-Za-z0-9_\-+/=]+)")
_KV_RE = re.compile(
    r"(?i)\b(s3_secret_access_key|s3_access_key_id|webhook_auth|redis_url|x-amz-signature|x-amz-credential|signature|sig|token|secret|password|api_key)\b\s*=\s*([^\s,;&]+)"
)
_URL_CREDS_RE = re.compile(r"(?i)([a-z][a-z0-9+\-.]*://)([^:@/\s]+):([^@/\s]+)@")

# Exact secret values that must never appear in logs (filled by configure_logging).
_secret_literals: list[str] = []


def register_secrets(values: Iterable[str]) -> None:
    # ignore tiny values to avoid over-redaction
    for v in values:
        v = str(v or "")
        if len(v) >= 8 and v not in _secret_literals:
            _secret_literals.append(v)


def redact_str(s: str) -> str:
    for lit in _secret_literals:
        if lit in s:
            s = s.replace(lit, "***REDACTED***")
    s = _URL_CREDS_RE.sub(r"\1***REDACTED***@", s)
    s = _BEARER_RE.sub("Bearer ***REDACTED***", s)
    s = _BASIC_RE.sub("Basic ***REDACTED***", s)
    s = _KV_RE.sub(lambda m: f"{m.group(1)}=***REDACTED***", s)
    return s


def redact_event(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    for k, v in list(event_dict.items()):
        if isinstance(v, str):
            event_dict[k] = redact_str(v)
    return event_dict


def add_contextvars(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    jid = job_id_var.get()
    wid = worker_id_var.get()
    if jid:
        event_dict.setdefault("job_id", jid)
    if wid:
        event_dict.setdefault("worker_id", wid)
    return event_dict


def rename_event_to_msg(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    if "msg" not in event_dict and "event" in event_dict:
        event_dict["msg"] = event_dict.pop("event")
    return event_dict


def configure_logging(
    *,
    log_dir: Path | None,
    level: str = "INFO",
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    secrets: Iterable[str] = (),
) -> structlog.stdlib.BoundLogger:
    """
    JSON logs to `<log_dir>/app.log` (rotating) and stdout.

    Safe to call more than once; handlers are replaced, never duplicated.
    """
    register_secrets(secrets)
    root = logging.getLogger()
    root.setLevel(str(level).upper())

    foreign_pre_chain = [
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
        structlog.stdlib.add_log_level,
        add_contextvars,
        redact_event,
        structlog.processors.format_exc_info,
        rename_event_to_msg,
    ]
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=foreign_pre_chain,
    )

    handlers: list[logging.Handler] = []
    if log_dir is not None:
        log_path = Path(log_dir) / "app.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=int(max_bytes),
            backupCount=int(backup_count),
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    for h in list(root.handlers):
        root.removeHandler(h)
        with suppress(Exception):
            h.close()
    for h in handlers:
        root.addHandler(h)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.stdlib.add_log_level,
            add_contextvars,
            redact_event,
            structlog.processors.format_exc_info,
            rename_event_to_msg,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger("loop_render")


# Lazy proxy; picks up whatever configuration is active at first use.
logger = structlog.get_logger("loop_render")


