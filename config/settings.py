from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from pydantic import SecretStr

from .public_config import PublicConfig
from .secret_config import SecretConfig


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class Settings:
    """
    Merged settings view (dot-access).

    Precedence:
      - secrets override public when names overlap
    """

    public: PublicConfig
    secret: SecretConfig

    def __getattr__(self, name: str) -> Any:
        if hasattr(self.secret, name):
            return getattr(self.secret, name)
        return getattr(self.public, name)

    def secret_value(self, name: str) -> str:
        return _secret_value(getattr(self.secret, name, None))


def _secret_value(secret: SecretStr | None) -> str:
    try:
        return secret.get_secret_value() if secret else ""
    except Exception:
        return ""


_JOB_STORES = {"sqlite", "redis"}
_OBJECT_STORES = {"s3", "local"}


def validate_settings(s: Settings, *, for_worker: bool = False) -> None:
    """
    Fail fast on combinations the worker cannot run with.

    `get_settings()` runs the cheap checks; the worker factory re-runs with
    `for_worker=True` so object store credentials are only required when
    something is actually going to be published. The render preset itself is
    resolved (and rejected when unknown) by the worker factory.
    """
    problems: list[str] = []

    store = str(s.public.job_store or "").strip().lower()
    if store not in _JOB_STORES:
        problems.append(f"JOB_STORE must be one of {sorted(_JOB_STORES)} (got {store!r})")
    elif store == "redis" and not str(s.secret.redis_url or "").strip():
        problems.append("JOB_STORE=redis requires REDIS_URL")

    obj = str(s.public.object_store or "").strip().lower()
    if obj not in _OBJECT_STORES:
        problems.append(f"OBJECT_STORE must be one of {sorted(_OBJECT_STORES)} (got {obj!r})")
    elif obj == "s3" and for_worker:
        if not str(s.public.s3_bucket or "").strip():
            problems.append("OBJECT_STORE=s3 requires S3_BUCKET")
        if not _secret_value(s.secret.s3_access_key_id) or not _secret_value(
            s.secret.s3_secret_access_key
        ):
            problems.append("OBJECT_STORE=s3 requires S3_ACCESS_KEY_ID and S3_SECRET_ACCESS_KEY")

    if "{job_id}" not in str(s.public.artifact_key_pattern or ""):
        problems.append("ARTIFACT_KEY_PATTERN must contain {job_id}")
    if int(s.public.download_retries) < 0:
        problems.append("DOWNLOAD_RETRIES must be >= 0")
    if s.public.transcode_timeout_s is not None and float(s.public.transcode_timeout_s) <= 0:
        problems.append("TRANSCODE_TIMEOUT_S must be > 0 when set")

    if problems:
        raise ConfigError("Invalid configuration: " + "; ".join(problems))


def get_safe_config_report() -> dict[str, Any]:
    """
    Deterministic, non-sensitive config report.

    - Public values are included (paths are stringified)
    - Secret values are NEVER included; only SET/UNSET markers
    """
    s = get_settings()

    pub = s.public.model_dump()
    pub_s: dict[str, Any] = {}
    for k, v in pub.items():
        pub_s[k] = str(v) if hasattr(v, "__fspath__") else v

    sec: dict[str, str] = {}
    for k in sorted(type(s.secret).model_fields.keys()):
        v = getattr(s.secret, k, None)
        if v is None:
            sec[k] = "UNSET"
        elif isinstance(v, SecretStr):
            sec[k] = "SET" if v.get_secret_value() else "UNSET"
        else:
            sec[k] = "SET" if str(v).strip() else "UNSET"
    return {"public": pub_s, "secrets": sec}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    public = PublicConfig()
    secret = SecretConfig()
    s = Settings(public=public, secret=secret)
    validate_settings(s)
    return s
