from __future__ import annotations

import asyncio
import http.client
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

from loop_render.errors import FetchError
from loop_render.utils.aio import gather_fail_fast
from loop_render.utils.io import cleanup_paths, file_size, unique_path
from loop_render.utils.log import logger
from loop_render.utils.retry import retry_call

_VIDEO_SUFFIXES = {".mp4", ".mov", ".mkv", ".webm", ".m4v"}
_AUDIO_SUFFIXES = {".wav", ".mp3", ".m4a", ".aac", ".flac", ".ogg", ".opus"}


class _TransientFetchError(FetchError):
    """Worth another attempt (transport error, 5xx, 408/429)."""


@dataclass(frozen=True, slots=True)
class FetchedMedia:
    video_path: Path
    audio_path: Path
    video_bytes: int
    audio_bytes: int

    def paths(self) -> list[Path]:
        return [self.video_path, self.audio_path]


def _suffix_for(url: str, allowed: set[str], default: str) -> str:
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    return suffix if suffix in allowed else default


class MediaFetcher:
    """
    Downloads both sources into scratch storage, concurrently.

    Each download gets bounded exponential backoff; if either one finally
    fails, the other is cancelled and every partial file is removed.
    """

    def __init__(
        self,
        *,
        scratch_dir: Path,
        timeout_s: float = 300.0,
        retries: int = 3,
        backoff_base_s: float = 1.0,
        backoff_cap_s: float = 10.0,
        user_agent: str = "VideoRenderer/1.0",
        min_video_bytes: int = 10 * 1024,
        min_audio_bytes: int = 5 * 1024,
        max_file_bytes: int = 2 * 1024 * 1024 * 1024,
        chunk_size: int = 1024 * 1024,
    ) -> None:
        self.scratch_dir = Path(scratch_dir)
        self.timeout_s = float(timeout_s)
        self.retries = max(0, int(retries))
        self.backoff_base_s = float(backoff_base_s)
        self.backoff_cap_s = float(backoff_cap_s)
        self.user_agent = str(user_agent)
        self.min_video_bytes = int(min_video_bytes)
        self.min_audio_bytes = int(min_audio_bytes)
        self.max_file_bytes = int(max_file_bytes)
        self.chunk_size = int(chunk_size)

    def _download_once(self, url: str, dest: Path, cancel: threading.Event) -> int:
        if cancel.is_set():
            raise FetchError(f"download cancelled: {url}")
        req = urllib.request.Request(url, headers={"User-Agent": self.user_agent})
        total = 0
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp, dest.open("wb") as f:
                declared = resp.headers.get("Content-Length") if resp.headers else None
                if declared and str(declared).isdigit() and int(declared) > self.max_file_bytes:
                    raise FetchError(
                        f"{url} is {int(declared)} bytes, above the {self.max_file_bytes} byte limit"
                    )
                while True:
                    if cancel.is_set():
                        raise FetchError(f"download cancelled: {url}")
                    chunk = resp.read(self.chunk_size)
                    if not chunk:
                        break
                    total += len(chunk)
                    if total > self.max_file_bytes:
                        raise FetchError(f"{url} exceeds the {self.max_file_bytes} byte limit")
                    f.write(chunk)
        except urllib.error.HTTPError as ex:
            if ex.code in {408, 425, 429} or ex.code >= 500:
                raise _TransientFetchError(f"HTTP {ex.code} for {url}") from ex
            raise FetchError(f"HTTP {ex.code} for {url}") from ex
        except (urllib.error.URLError, http.client.HTTPException, OSError) as ex:
            raise _TransientFetchError(f"download failed for {url}: {ex}") from ex
        return total

    def download(
        self, url: str, dest: Path, *, min_bytes: int, cancel: threading.Event | None = None
    ) -> int:
        """Blocking download with retries; the file at `dest` is validated for size."""
        cancel = cancel or threading.Event()

        def _on_retry(attempt: int, delay: float, ex: BaseException) -> None:
            logger.warning(
                "download_retry", url=url, attempt=attempt, delay_s=round(delay, 2), error=str(ex)
            )

        logger.info("download_start", url=url, dest=str(dest))
        try:
            size = retry_call(
                lambda: self._download_once(url, dest, cancel),
                retries=self.retries,
                base=self.backoff_base_s,
                cap=self.backoff_cap_s,
                jitter=False,
                retry_on=(_TransientFetchError,),
                on_retry=_on_retry,
            )
        except FetchError:
            cleanup_paths([dest])
            raise
        if cancel.is_set():
            cleanup_paths([dest])
            raise FetchError(f"download cancelled: {url}")
        size = size or file_size(dest)
        if size < int(min_bytes):
            cleanup_paths([dest])
            raise FetchError(f"{url} is too small: {size} bytes (minimum {int(min_bytes)})")
        logger.info("download_done", url=url, bytes=size)
        return size

    async def fetch(self, video_url: str, audio_url: str) -> FetchedMedia:
        video_dest = unique_path(
            self.scratch_dir, "video", _suffix_for(video_url, _VIDEO_SUFFIXES, ".mp4")
        )
        audio_dest = unique_path(
            self.scratch_dir, "audio", _suffix_for(audio_url, _AUDIO_SUFFIXES, ".wav")
        )
        cancel = threading.Event()
        try:
            video_bytes, audio_bytes = await gather_fail_fast(
                asyncio.to_thread(
                    self.download, video_url, video_dest, min_bytes=self.min_video_bytes, cancel=cancel
                ),
                asyncio.to_thread(
                    self.download, audio_url, audio_dest, min_bytes=self.min_audio_bytes, cancel=cancel
                ),
            )
        except BaseException:
            # stop the sibling thread between chunks, then drop whatever it wrote
            cancel.set()
            cleanup_paths([video_dest, audio_dest])
            raise
        return FetchedMedia(
            video_path=video_dest,
            audio_path=audio_dest,
            video_bytes=int(video_bytes),
            audio_bytes=int(audio_bytes),
        )
