from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loop_render.errors import PlanningError, TranscodeError
from loop_render.media.ffmpeg import FFmpegRunner, TranscodeRunner
from loop_render.media.planner import (
    MediaKind,
    RenderPlan,
    audio_loop_args,
    merge_args,
    plan_loop,
    scale_dimensions,
    video_loop_args,
)
from loop_render.media.probe import MediaInfo, MediaProbe
from loop_render.media.profiles import CompressionProfile
from loop_render.utils.aio import gather_fail_fast
from loop_render.utils.io import cleanup_paths, ensure_dir, file_size, unique_path
from loop_render.utils.log import logger


@dataclass(frozen=True, slots=True)
class RenderResult:
    output_path: Path
    video_plan: RenderPlan
    audio_plan: RenderPlan
    metadata: dict[str, Any] = field(default_factory=dict)


class RenderPipeline:
    """
    Probe -> plan -> loop video || loop audio -> merge -> probe output.

    Intermediates get per-render unique names and are removed on every exit
    path; a partial merged file is removed when the render fails.
    """

    def __init__(
        self,
        *,
        profile: CompressionProfile,
        probe: MediaProbe,
        runner: TranscodeRunner | None = None,
        scratch_dir: Path,
        output_dir: Path,
    ) -> None:
        self.profile = profile
        self.probe = probe
        self.runner: TranscodeRunner = runner or FFmpegRunner()
        self.scratch_dir = Path(scratch_dir)
        self.output_dir = Path(output_dir)

    async def _inspect(self, path: Path) -> MediaInfo:
        return await asyncio.to_thread(self.probe.inspect, path)

    async def loop_video(self, plan: RenderPlan, info: MediaInfo, output_path: Path) -> Path:
        scale = scale_dimensions(info.width, info.height, self.profile.max_height)
        if scale:
            logger.info(
                "video_scale",
                source=f"{info.width}x{info.height}",
                target=f"{scale[0]}x{scale[1]}",
            )
        args = video_loop_args(plan, output_path, self.profile, scale=scale)
        await self.runner.run(self.runner.command(args), label="loop_video")
        return output_path

    async def loop_audio(self, plan: RenderPlan, output_path: Path) -> Path:
        args = audio_loop_args(plan, output_path, self.profile)
        await self.runner.run(self.runner.command(args), label="loop_audio")
        return output_path

    async def merge(self, video_path: Path, audio_path: Path, output_path: Path) -> Path:
        args = merge_args(video_path, audio_path, output_path, self.profile)
        await self.runner.run(self.runner.command(args), label="merge")
        return output_path

    async def describe_output(self, path: Path) -> dict[str, Any]:
        try:
            info = await self._inspect(path)
        except TranscodeError as ex:
            # the render itself succeeded; ship what we know
            logger.warning("output_probe_failed", path=str(path), error=str(ex))
            size = file_size(path)
            return {
                "file_size": size,
                "file_size_mb": f"{size / (1024 * 1024):.2f}",
                "error": str(ex),
            }
        return info.render_metadata()

    async def render(
        self,
        video_path: Path,
        audio_path: Path,
        minutes: int,
        *,
        output_name: str | None = None,
    ) -> RenderResult:
        try:
            video_info, audio_info = await gather_fail_fast(
                self._inspect(Path(video_path)), self._inspect(Path(audio_path))
            )
        except TranscodeError as ex:
            raise PlanningError(f"cannot read source media: {ex}") from ex
        if not video_info.has_video:
            raise PlanningError(f"no video stream in {video_path}")
        if not audio_info.has_audio:
            raise PlanningError(f"no audio stream in {audio_path}")
        video_plan = plan_loop(Path(video_path), video_info.duration_s, minutes, kind=MediaKind.VIDEO)
        audio_plan = plan_loop(Path(audio_path), audio_info.duration_s, minutes, kind=MediaKind.AUDIO)
        logger.info(
            "render_plan",
            preset=self.profile.name,
            target_s=video_plan.target_seconds,
            video_loops=video_plan.loop_count,
            video_strategy=video_plan.strategy.value,
            audio_loops=audio_plan.loop_count,
            audio_strategy=audio_plan.strategy.value,
        )

        looped_video = unique_path(self.scratch_dir, "looped_video", ".mp4")
        looped_audio = unique_path(self.scratch_dir, "looped_audio", ".wav")
        ensure_dir(self.output_dir)
        name = output_name or f"render_{uuid.uuid4().hex}"
        output_path = self.output_dir / f"{name}.mp4"

        ok = False
        try:
            await gather_fail_fast(
                self.loop_video(video_plan, video_info, looped_video),
                self.loop_audio(audio_plan, looped_audio),
            )
            await self.merge(looped_video, looped_audio, output_path)
            metadata = await self.describe_output(output_path)
            ok = True
        finally:
            cleanup_paths([looped_video, looped_audio])
            if not ok:
                cleanup_paths([output_path])

        logger.info("render_done", output=str(output_path), size=metadata.get("file_size"))
        return RenderResult(
            output_path=output_path,
            video_plan=video_plan,
            audio_plan=audio_plan,
            metadata=metadata,
        )
