from __future__ import annotations

import asyncio
import io
import time
import urllib.error
import urllib.request
from pathlib import Path

import pytest

from loop_render.errors import FetchError
from loop_render.fetch.downloader import MediaFetcher


def _fetcher(tmp_path: Path, **kw) -> MediaFetcher:
    opts = dict(
        scratch_dir=tmp_path / "scratch",
        retries=2,
        backoff_base_s=0.01,
        backoff_cap_s=0.02,
        min_video_bytes=1024,
        min_audio_bytes=512,
    )
    opts.update(kw)
    return MediaFetcher(**opts)


def _source(tmp_path: Path, name: str, size: int) -> str:
    p = tmp_path / "src" / name
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(b"\0" * size)
    return p.as_uri()


def test_fetch_downloads_both(tmp_path: Path) -> None:
    f = _fetcher(tmp_path)
    media = asyncio.run(
        f.fetch(_source(tmp_path, "clip.mov", 4096), _source(tmp_path, "track.mp3", 2048))
    )
    assert media.video_bytes == 4096
    assert media.audio_bytes == 2048
    assert media.video_path.suffix == ".mov"
    assert media.audio_path.suffix == ".mp3"
    assert media.video_path.parent == tmp_path / "scratch"


def test_too_small_file_fails_and_cleans_up(tmp_path: Path) -> None:
    f = _fetcher(tmp_path)
    with pytest.raises(FetchError, match="too small"):
        asyncio.run(
            f.fetch(_source(tmp_path, "clip.mp4", 4096), _source(tmp_path, "track.wav", 10))
        )
    assert list((tmp_path / "scratch").iterdir()) == []


def test_size_limit(tmp_path: Path) -> None:
    f = _fetcher(tmp_path, max_file_bytes=2000, chunk_size=512)
    with pytest.raises(FetchError, match="limit"):
        f.download(_source(tmp_path, "big.mp4", 4096), tmp_path / "big.mp4", min_bytes=1)
    assert not (tmp_path / "big.mp4").exists()


def test_transient_errors_are_retried(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(time, "sleep", lambda _: None)
    real_urlopen = urllib.request.urlopen
    calls = {"n": 0}

    def flaky_urlopen(req, timeout=None):
        calls["n"] += 1
        if calls["n"] < 3:
            raise urllib.error.HTTPError(req.full_url, 503, "busy", {}, io.BytesIO())  # type: ignore[arg-type]
        return real_urlopen(req.full_url, timeout=timeout)

    monkeypatch.setattr(urllib.request, "urlopen", flaky_urlopen)
    f = _fetcher(tmp_path, retries=3)
    size = f.download(_source(tmp_path, "clip.mp4", 2048), tmp_path / "out.mp4", min_bytes=1)
    assert size == 2048
    assert calls["n"] == 3


def test_client_errors_are_not_retried(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(time, "sleep", lambda _: None)
    calls = {"n": 0}

    def not_found(req, timeout=None):
        calls["n"] += 1
        raise urllib.error.HTTPError(req.full_url, 404, "not found", {}, io.BytesIO())  # type: ignore[arg-type]

    monkeypatch.setattr(urllib.request, "urlopen", not_found)
    f = _fetcher(tmp_path, retries=3)
    with pytest.raises(FetchError, match="HTTP 404"):
        f.download("https://cdn.example.com/v.mp4", tmp_path / "v.mp4", min_bytes=1)
    assert calls["n"] == 1


def test_exhausted_retries_fail(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(time, "sleep", lambda _: None)
    f = _fetcher(tmp_path, retries=1)
    missing = (tmp_path / "src" / "missing.mp4").as_uri()
    with pytest.raises(FetchError):
        asyncio.run(f.fetch(missing, _source(tmp_path, "track.wav", 2048)))
    assert list((tmp_path / "scratch").iterdir()) == []
