from __future__ import annotations

from pathlib import Path

import pytest

from loop_render.errors import PublishError
from loop_render.publish.object_store import LocalObjectStore, PutResult
from loop_render.publish.publisher import DEFAULT_KEY_PATTERN, ArtifactPublisher, artifact_key


def test_artifact_key_is_deterministic() -> None:
    k1 = artifact_key("UC42", 17)
    k2 = artifact_key("UC42", "17")
    assert k1 == k2 == "renders/channel_UC42/finals/rendered_version_17.mp4"
    assert artifact_key("UC42", 17, pattern="out/{job_id}.mp4") == "out/17.mp4"
    assert "{channel_id}" in DEFAULT_KEY_PATTERN


@pytest.mark.parametrize("channel", ["", "  ", "a/b", "..", "x..y"])
def test_artifact_key_rejects_unsafe_channels(channel: str) -> None:
    with pytest.raises(PublishError):
        artifact_key(channel, 1)


def test_publish_to_local_store(tmp_path: Path) -> None:
    src = tmp_path / "render_3.mp4"
    src.write_bytes(b"m" * 5000)
    store = LocalObjectStore(tmp_path / "bucket", public_base_url="https://cdn.example.com/media")
    result = ArtifactPublisher(store).publish(src, "chan", 3)

    assert result.key == "renders/channel_chan/finals/rendered_version_3.mp4"
    assert result.artifact_ref == f"https://cdn.example.com/media/{result.key}"
    assert result.byte_size == 5000
    assert len(result.etag) == 32
    assert (tmp_path / "bucket" / result.key).read_bytes() == b"m" * 5000
    # local copy is dropped once the store has it
    assert not src.exists()


def test_republish_overwrites_same_object(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path / "bucket")
    pub = ArtifactPublisher(store)
    for payload in (b"first", b"second"):
        src = tmp_path / "render.mp4"
        src.write_bytes(payload)
        result = pub.publish(src, "chan", 9)
    objects = [p for p in (tmp_path / "bucket").rglob("*") if p.is_file()]
    assert len(objects) == 1
    assert objects[0].read_bytes() == b"second"
    assert result.artifact_ref.startswith("file://")


def test_failed_upload_keeps_local_file(tmp_path: Path) -> None:
    class DownStore:
        def put_file(self, path, key, *, content_type, metadata=None) -> PutResult:
            raise PublishError("bucket unreachable")

        def public_url(self, key: str) -> str:
            return key

    src = tmp_path / "render.mp4"
    src.write_bytes(b"data")
    with pytest.raises(PublishError, match="unreachable"):
        ArtifactPublisher(DownStore()).publish(src, "chan", 1)
    assert src.exists()


def test_missing_file_and_escaping_keys(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path / "bucket")
    with pytest.raises(PublishError, match="nothing to publish"):
        ArtifactPublisher(store).publish(tmp_path / "nope.mp4", "chan", 1)
    src = tmp_path / "x.mp4"
    src.write_bytes(b"x")
    with pytest.raises(PublishError, match="escapes"):
        store.put_file(src, "../../etc/passwd", content_type="video/mp4")
