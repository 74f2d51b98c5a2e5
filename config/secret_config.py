from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class SecretConfig(BaseSettings):
    """
    Sensitive config.

    This module is safe to commit: it contains *no* secrets, only loading logic.
    Real secret values should come from:
      - environment variables (preferred in production)
      - optional local `.env.secrets` file (developer convenience)
    """

    model_config = SettingsConfigDict(
        env_file=".env.secrets",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # object store credentials (S3 / Backblaze B2 application key)
    s3_access_key_id: SecretStr | None = Field(default=None, alias="S3_ACCESS_KEY_ID")
    s3_secret_access_key: SecretStr | None = Field(default=None, alias="S3_SECRET_ACCESS_KEY")

    # storage / external URLs (treat as sensitive by default)
    redis_url: str | None = Field(default=None, alias="REDIS_URL")

    # Webhook auth (optional)
    # Supported formats (examples):
    # - WEBHOOK_AUTH=token:yourtoken
    # - WEBHOOK_AUTH=Bearer yourtoken
    # - WEBHOOK_AUTH=userpass:username:password
    # - WEBHOOK_AUTH=username:password
    webhook_auth: SecretStr | None = Field(default=None, alias="WEBHOOK_AUTH")
