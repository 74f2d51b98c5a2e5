from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from loop_render.errors import PlanningError
from loop_render.media.profiles import CompressionProfile

# Above this many loops one looped input beats N demuxers for the concat filter.
REPEAT_THRESHOLD = 10


class LoopStrategy(str, Enum):
    REPEAT = "repeat"
    CONCATENATE = "concatenate"


class MediaKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


@dataclass(frozen=True, slots=True)
class RenderPlan:
    input_path: Path
    kind: MediaKind
    source_seconds: float
    target_seconds: float
    loop_count: int
    strategy: LoopStrategy


def target_seconds(minutes: object) -> float:
    if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
        raise PlanningError(f"target minutes must be a positive integer (got {minutes!r})")
    return float(60 * minutes)


def plan_loop(
    input_path: Path, source_seconds: float | None, minutes: int, *, kind: MediaKind
) -> RenderPlan:
    """
    loops = ceil(60*minutes / duration); >10 loops -> repeat, else concatenate.

    Either way the output is trimmed to exactly the target length afterwards.
    """
    target = target_seconds(minutes)
    try:
        d = float(source_seconds)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise PlanningError(f"unreadable {kind.value} duration for {input_path}") from None
    if not math.isfinite(d) or d <= 0:
        raise PlanningError(f"{kind.value} duration must be > 0 (got {source_seconds!r}) for {input_path}")

    loops = max(1, math.ceil(target / d))
    strategy = LoopStrategy.REPEAT if loops > REPEAT_THRESHOLD else LoopStrategy.CONCATENATE
    return RenderPlan(
        input_path=Path(input_path),
        kind=kind,
        source_seconds=d,
        target_seconds=target,
        loop_count=loops,
        strategy=strategy,
    )


def scale_dimensions(width: int, height: int, max_height: int | None) -> tuple[int, int] | None:
    """
    Downscale target keeping aspect ratio, both sides even; None = leave as is.

    Only sources taller than `max_height` are touched; nothing is upscaled.
    """
    if not max_height or width <= 0 or height <= 0 or height <= max_height:
        return None
    new_h = int(max_height) - (int(max_height) % 2)
    new_w = int(round(width * new_h / height))
    new_w -= new_w % 2
    return max(2, new_w), max(2, new_h)


def _fmt_seconds(s: float) -> str:
    return f"{s:.3f}".rstrip("0").rstrip(".")


def _inputs(plan: RenderPlan) -> list[str]:
    if plan.strategy is LoopStrategy.REPEAT:
        return ["-stream_loop", str(plan.loop_count - 1), "-i", str(plan.input_path)]
    args: list[str] = []
    for _ in range(plan.loop_count):
        args += ["-i", str(plan.input_path)]
    return args


def video_loop_args(
    plan: RenderPlan,
    output_path: Path,
    profile: CompressionProfile,
    *,
    scale: tuple[int, int] | None = None,
) -> list[str]:
    """ffmpeg arguments (without the binary) that loop, scale and encode the video track."""
    args = _inputs(plan)
    scale_filter = f"scale={scale[0]}:{scale[1]}" if scale else None
    if plan.strategy is LoopStrategy.CONCATENATE:
        joined = "".join(f"[{i}:v:0]" for i in range(plan.loop_count))
        graph = f"{joined}concat=n={plan.loop_count}:v=1:a=0"
        graph += f"[cat];[cat]{scale_filter}[outv]" if scale_filter else "[outv]"
        args += ["-filter_complex", graph, "-map", "[outv]"]
    else:
        args += ["-map", "0:v:0"]
        if scale_filter:
            args += ["-vf", scale_filter]
    args += ["-an"]
    args += profile.video_codec_args()
    args += ["-movflags", "+faststart", "-t", _fmt_seconds(plan.target_seconds), str(output_path)]
    return args


def audio_loop_args(plan: RenderPlan, output_path: Path, profile: CompressionProfile) -> list[str]:
    """ffmpeg arguments (without the binary) that loop the soundtrack into PCM."""
    args = _inputs(plan)
    if plan.strategy is LoopStrategy.CONCATENATE:
        joined = "".join(f"[{i}:a:0]" for i in range(plan.loop_count))
        args += ["-filter_complex", f"{joined}concat=n={plan.loop_count}:v=0:a=1[outa]", "-map", "[outa]"]
    else:
        args += ["-map", "0:a:0"]
    args += ["-vn"]
    args += profile.loop_audio_args()
    args += ["-t", _fmt_seconds(plan.target_seconds), str(output_path)]
    return args


def merge_args(
    video_path: Path, audio_path: Path, output_path: Path, profile: CompressionProfile
) -> list[str]:
    """Video stream copied untouched; audio encoded once; stop at the shorter track."""
    return [
        "-i",
        str(video_path),
        "-i",
        str(audio_path),
        "-map",
        "0:v:0",
        "-map",
        "1:a:0",
        "-c:v",
        "copy",
        "-c:a",
        profile.audio_codec,
        "-b:a",
        profile.audio_bitrate,
        "-shortest",
        "-movflags",
        "+faststart",
        str(output_path),
    ]
