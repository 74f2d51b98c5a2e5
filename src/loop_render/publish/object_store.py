from __future__ import annotations

import hashlib
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from loop_render.errors import PublishError
from loop_render.utils.io import ensure_dir, file_size
from loop_render.utils.log import logger


@dataclass(frozen=True, slots=True)
class PutResult:
    key: str
    etag: str
    size: int


class ObjectStore(Protocol):
    def put_file(
        self,
        path: Path,
        key: str,
        *,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> PutResult: ...

    def public_url(self, key: str) -> str: ...


def _join_url(base: str, key: str) -> str:
    return f"{base.rstrip('/')}/{key.lstrip('/')}"


class S3ObjectStore:
    """
    S3-compatible bucket (AWS, Backblaze B2, MinIO).

    Small files go up in one PutObject; larger ones through the multipart
    transfer manager. Either way the object is HEAD-checked afterwards and the
    upload only counts once the stored size matches the local file.
    """

    def __init__(
        self,
        *,
        bucket: str,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        public_base_url: str = "",
        part_size: int = 10 * 1024 * 1024,
        concurrency: int = 4,
        client: Any = None,
    ) -> None:
        if not str(bucket or "").strip():
            raise ValueError("S3 bucket is required")
        self.bucket = str(bucket)
        self.region = str(region or "us-east-1")
        self.endpoint_url = endpoint_url or None
        self.public_base_url = str(public_base_url or "")
        self.part_size = max(5 * 1024 * 1024, int(part_size))
        self.concurrency = max(1, int(concurrency))
        self._client = client or boto3.client(
            "s3",
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
            region_name=self.region,
            endpoint_url=self.endpoint_url,
            # B2 and MinIO want path-style addressing
            config=BotoConfig(s3={"addressing_style": "path"}, retries={"max_attempts": 3}),
        )

    def _transfer_config(self) -> TransferConfig:
        return TransferConfig(
            multipart_threshold=self.part_size,
            multipart_chunksize=self.part_size,
            max_concurrency=self.concurrency,
        )

    def put_file(
        self,
        path: Path,
        key: str,
        *,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> PutResult:
        local_size = file_size(Path(path))
        extra: dict[str, Any] = {"ContentType": content_type, "Metadata": dict(metadata or {})}
        try:
            if local_size < self.part_size:
                with Path(path).open("rb") as fh:
                    self._client.put_object(Bucket=self.bucket, Key=key, Body=fh, **extra)
            else:
                self._client.upload_file(
                    str(path), self.bucket, key, ExtraArgs=extra, Config=self._transfer_config()
                )
            head = self._client.head_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as ex:
            raise PublishError(f"upload of s3://{self.bucket}/{key} failed: {ex}") from ex

        stored = int(head.get("ContentLength") or 0)
        if stored != local_size:
            raise PublishError(
                f"upload of s3://{self.bucket}/{key} not verified: stored {stored} bytes, local {local_size}"
            )
        etag = str(head.get("ETag") or "").strip('"')
        logger.info("s3_put_done", bucket=self.bucket, key=key, bytes=stored, etag=etag)
        return PutResult(key=key, etag=etag, size=stored)

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return _join_url(self.public_base_url, key)
        if self.endpoint_url:
            return _join_url(f"{self.endpoint_url.rstrip('/')}/{self.bucket}", key)
        if self.region == "us-east-1":
            return f"https://{self.bucket}.s3.amazonaws.com/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"


class LocalObjectStore:
    """Directory-backed store for development and tests."""

    def __init__(self, root: Path, *, public_base_url: str = "") -> None:
        self.root = Path(root)
        self.public_base_url = str(public_base_url or "")

    def _target(self, key: str) -> Path:
        target = (self.root / key.lstrip("/")).resolve()
        if self.root.resolve() not in target.parents:
            raise PublishError(f"object key escapes the store root: {key!r}")
        return target

    def put_file(
        self,
        path: Path,
        key: str,
        *,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> PutResult:
        target = self._target(key)
        try:
            ensure_dir(target.parent)
            tmp = target.with_name(f".{target.name}.part")
            shutil.copyfile(path, tmp)
            tmp.replace(target)
            h = hashlib.md5()
            with target.open("rb") as f:
                for chunk in iter(lambda: f.read(1024 * 1024), b""):
                    h.update(chunk)
        except OSError as ex:
            raise PublishError(f"local publish of {key} failed: {ex}") from ex
        size = file_size(target)
        if size != file_size(Path(path)):
            raise PublishError(f"local publish of {key} not verified")
        logger.info("local_put_done", key=key, bytes=size, content_type=content_type)
        return PutResult(key=key, etag=h.hexdigest(), size=size)

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return _join_url(self.public_base_url, key)
        return self._target(key).as_uri()
