from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loop_render.errors import PublishError
from loop_render.jobs.models import now_utc
from loop_render.utils.io import cleanup_paths
from loop_render.utils.log import logger

from .object_store import ObjectStore

DEFAULT_KEY_PATTERN = "renders/channel_{channel_id}/finals/rendered_version_{job_id}.mp4"


def artifact_key(channel_ref: object, job_id: object, *, pattern: str = DEFAULT_KEY_PATTERN) -> str:
    """
    Object key for a job's artifact.

    Depends only on (channel, job): a re-published job overwrites its own
    object instead of leaving an orphan next to it.
    """
    channel = str(channel_ref).strip().strip("/")
    jid = str(job_id).strip()
    if not channel or not jid:
        raise PublishError("artifact key needs both a channel and a job id")
    if "/" in channel or ".." in channel:
        raise PublishError(f"invalid channel reference for an object key: {channel_ref!r}")
    return pattern.format(channel_id=channel, job_id=jid)


@dataclass(frozen=True, slots=True)
class PublishResult:
    artifact_ref: str
    key: str
    byte_size: int
    etag: str


class ArtifactPublisher:
    def __init__(
        self,
        store: ObjectStore,
        *,
        key_pattern: str = DEFAULT_KEY_PATTERN,
        content_type: str = "video/mp4",
    ) -> None:
        self.store = store
        self.key_pattern = str(key_pattern)
        self.content_type = str(content_type)

    def publish(self, local_path: Path, channel_ref: object, job_id: object) -> PublishResult:
        """
        Upload the artifact under its deterministic key, then remove the local file.

        The local file is only removed after the store has confirmed the
        upload; on PublishError it is left where it is.
        """
        path = Path(local_path)
        if not path.is_file():
            raise PublishError(f"nothing to publish at {path}")
        key = artifact_key(channel_ref, job_id, pattern=self.key_pattern)
        logger.info("publish_start", key=key, path=str(path))
        put = self.store.put_file(
            path,
            key,
            content_type=self.content_type,
            metadata={
                "channel-id": str(channel_ref),
                "video-id": str(job_id),
                "uploaded-at": now_utc(),
            },
        )
        result = PublishResult(
            artifact_ref=self.store.public_url(key),
            key=key,
            byte_size=int(put.size),
            etag=put.etag,
        )
        cleanup_paths([path])
        logger.info("publish_done", key=key, artifact_ref=result.artifact_ref, bytes=result.byte_size)
        return result
