from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from loop_render.media.ffmpeg import ffprobe_json, parse_rational
from loop_render.utils.io import file_size


@dataclass(frozen=True, slots=True)
class MediaInfo:
    path: str
    format_name: str
    duration_s: float
    stream_count: int
    size_bytes: int
    width: int = 0
    height: int = 0
    fps: float = 0.0
    video_codec: str | None = None
    audio_codec: str | None = None

    @property
    def has_video(self) -> bool:
        return self.video_codec is not None

    @property
    def has_audio(self) -> bool:
        return self.audio_codec is not None

    def render_metadata(self) -> dict[str, Any]:
        return {
            "resolution": f"{self.width}x{self.height}" if self.width and self.height else None,
            "codec": self.video_codec,
            "audio_codec": self.audio_codec,
            "duration": round(self.duration_s, 3),
            "fps": round(self.fps, 3),
            "file_size": self.size_bytes,
            "file_size_mb": f"{self.size_bytes / (1024 * 1024):.2f}",
        }


def _float(v: object) -> float:
    try:
        return float(v)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0


def media_info_from_probe(path: Path, data: dict[str, Any]) -> MediaInfo:
    """
    Build MediaInfo from `ffprobe -show_format -show_streams` JSON.

    Duration prefers the container; streams fill in when the container
    does not carry one (raw elementary streams).
    """
    fmt = data.get("format") if isinstance(data.get("format"), dict) else {}
    streams = [s for s in (data.get("streams") or []) if isinstance(s, dict)]

    duration = _float(fmt.get("duration"))
    width = height = 0
    fps = 0.0
    vcodec: str | None = None
    acodec: str | None = None
    for st in streams:
        kind = str(st.get("codec_type") or "")
        if kind == "video" and vcodec is None:
            vcodec = str(st.get("codec_name") or "") or "unknown"
            try:
                width = int(st.get("width") or 0)
                height = int(st.get("height") or 0)
            except (TypeError, ValueError):
                width = height = 0
            fps = parse_rational(st.get("r_frame_rate")) or parse_rational(st.get("avg_frame_rate"))
        elif kind == "audio" and acodec is None:
            acodec = str(st.get("codec_name") or "") or "unknown"
        if duration <= 0:
            duration = max(duration, _float(st.get("duration")))

    size = int(_float(fmt.get("size"))) or file_size(path)
    return MediaInfo(
        path=str(path),
        format_name=str(fmt.get("format_name") or ""),
        duration_s=duration,
        stream_count=len(streams),
        size_bytes=size,
        width=width,
        height=height,
        fps=fps,
        video_codec=vcodec,
        audio_codec=acodec,
    )


class MediaProbe(Protocol):
    def inspect(self, path: Path) -> MediaInfo: ...


class DurationProbe:
    """ffprobe-backed inspection; raises TranscodeError when the probe cannot run."""

    def __init__(self, *, ffprobe_bin: str = "ffprobe", timeout_s: float = 30.0) -> None:
        self.ffprobe_bin = str(ffprobe_bin)
        self.timeout_s = float(timeout_s)

    def inspect(self, path: Path) -> MediaInfo:
        data = ffprobe_json(Path(path), ffprobe_bin=self.ffprobe_bin, timeout_s=self.timeout_s)
        return media_info_from_probe(Path(path), data)

