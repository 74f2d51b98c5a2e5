from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType

from loop_render.errors import UnknownPresetError

DEFAULT_PRESET = "youtube-1080p"


@dataclass(frozen=True, slots=True)
class CompressionProfile:
    name: str
    crf: int
    speed_preset: str
    max_height: int | None
    audio_bitrate: str
    container_profile: str
    level: str
    b_frames: int | None = None
    gop_size: int | None = None
    video_codec: str = "libx264"
    pixel_format: str = "yuv420p"
    audio_codec: str = "aac"
    # PCM intermediate for the looped soundtrack; the merge is the only lossy audio step
    loop_audio_codec: str = "pcm_s16le"
    sample_rate: int = 48000
    channels: int = 2

    def video_codec_args(self) -> list[str]:
        args = [
            "-c:v",
            self.video_codec,
            "-preset",
            self.speed_preset,
            "-crf",
            str(self.crf),
            "-profile:v",
            self.container_profile,
            "-level",
            self.level,
            "-pix_fmt",
            self.pixel_format,
        ]
        if self.b_frames is not None:
            args += ["-bf", str(self.b_frames)]
        if self.gop_size is not None:
            args += ["-g", str(self.gop_size)]
        return args

    def loop_audio_args(self) -> list[str]:
        return [
            "-c:a",
            self.loop_audio_codec,
            "-ar",
            str(self.sample_rate),
            "-ac",
            str(self.channels),
        ]

    def summary(self) -> dict[str, object]:
        return {
            "name": self.name,
            "crf": self.crf,
            "preset": self.speed_preset,
            "max_height": self.max_height,
            "audio_bitrate": self.audio_bitrate,
            "profile": self.container_profile,
            "level": self.level,
        }


def _p(name: str, **kw) -> tuple[str, CompressionProfile]:
    return name, CompressionProfile(name=name, **kw)


# YouTube-oriented presets (https://support.google.com/youtube/answer/1722171)
# plus the older size-tier names kept for existing job producers.
PRESETS = MappingProxyType(
    dict(
        [
            _p("youtube-4k", crf=18, speed_preset="slow", max_height=2160, audio_bitrate="384k",
               container_profile="high", level="5.1", b_frames=2, gop_size=12),
            _p("youtube-2k", crf=20, speed_preset="medium", max_height=1440, audio_bitrate="192k",
               container_profile="high", level="5.0", b_frames=2, gop_size=12),
            _p("youtube-1080p", crf=23, speed_preset="medium", max_height=1080, audio_bitrate="128k",
               container_profile="high", level="4.2", b_frames=2, gop_size=12),
            _p("youtube-720p", crf=26, speed_preset="medium", max_height=720, audio_bitrate="96k",
               container_profile="high", level="3.1", b_frames=2, gop_size=12),
            _p("ultra", crf=18, speed_preset="slow", max_height=None, audio_bitrate="192k",
               container_profile="high", level="5.1"),
            _p("high", crf=21, speed_preset="medium", max_height=1440, audio_bitrate="128k",
               container_profile="high", level="4.2"),
            _p("medium", crf=23, speed_preset="medium", max_height=1080, audio_bitrate="96k",
               container_profile="high", level="4.0"),
            _p("small", crf=28, speed_preset="fast", max_height=720, audio_bitrate="64k",
               container_profile="main", level="3.1"),
            _p("tiny", crf=32, speed_preset="fast", max_height=480, audio_bitrate="48k",
               container_profile="main", level="3.0"),
        ]
    )
)


def resolve_profile(name: str | None) -> CompressionProfile:
    """Unknown names are a startup error; there is no silent fallback."""
    key = str(name or "").strip().lower()
    try:
        return PRESETS[key]
    except KeyError:
        raise UnknownPresetError(str(name), list(PRESETS)) from None
