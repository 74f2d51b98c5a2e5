from __future__ import annotations

import pytest

from loop_render.errors import ConfigError, UnknownPresetError
from loop_render.media.ffmpeg import parse_rational
from loop_render.media.profiles import DEFAULT_PRESET, PRESETS, resolve_profile


def test_preset_table() -> None:
    assert DEFAULT_PRESET == "youtube-1080p"
    assert set(PRESETS) == {
        "youtube-4k",
        "youtube-2k",
        "youtube-1080p",
        "youtube-720p",
        "ultra",
        "high",
        "medium",
        "small",
        "tiny",
    }
    p = resolve_profile("youtube-1080p")
    assert (p.crf, p.speed_preset, p.max_height, p.audio_bitrate) == (23, "medium", 1080, "128k")
    assert resolve_profile("ultra").max_height is None
    assert resolve_profile("tiny").audio_bitrate == "48k"
    # case-insensitive lookup
    assert resolve_profile(" YouTube-720p ").name == "youtube-720p"


def test_unknown_preset_is_a_config_error() -> None:
    with pytest.raises(UnknownPresetError) as ei:
        resolve_profile("youtube-8k")
    assert isinstance(ei.value, ConfigError)
    assert "youtube-1080p" in ei.value.available
    assert "youtube-8k" in str(ei.value)


def test_codec_args() -> None:
    p = resolve_profile("youtube-2k")
    args = p.video_codec_args()
    assert args[:2] == ["-c:v", "libx264"]
    assert args[args.index("-level") + 1] == "5.0"
    assert args[args.index("-bf") + 1] == "2"
    assert args[args.index("-g") + 1] == "12"
    assert "-bf" not in resolve_profile("small").video_codec_args()
    assert resolve_profile("small").summary()["profile"] == "main"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("30000/1001", 30000 / 1001),
        ("25/1", 25.0),
        ("25", 25.0),
        ("0/0", 0.0),
        ("", 0.0),
        (None, 0.0),
        ("__import__('os')", 0.0),
        ("1/0", 0.0),
    ],
)
def test_parse_rational(raw, expected) -> None:
    assert parse_rational(raw) == pytest.approx(expected)
