from __future__ import annotations

import asyncio
import hashlib
import json
import math
import subprocess
from contextlib import suppress
from fractions import Fraction
from pathlib import Path
from typing import Any, Protocol

from loop_render.errors import ConfigError, TranscodeError
from loop_render.utils.io import atomic_write_text, ensure_dir
from loop_render.utils.log import logger

_FORBIDDEN_FLAGS = {
    "-filter_script",
    "-filter_script:v",
    "-filter_script:a",
    "-filter_complex_script",
    "-stats_file",
}


def _validate_args(argv: list[str]) -> None:
    for a in argv:
        if a in _FORBIDDEN_FLAGS:
            raise TranscodeError(f"Forbidden ffmpeg/ffprobe flag: {a}")


def _tail(s: str, n: int = 4000) -> str:
    s = str(s or "")
    if len(s) <= n:
        return s
    return s[-n:]


def parse_rational(value: object) -> float:
    """
    "30000/1001" -> 29.97..., "25" -> 25.0, "0/0" or junk -> 0.0.

    ffprobe reports frame rates as rationals; they are parsed, never evaluated.
    """
    raw = str(value or "").strip()
    if not raw:
        return 0.0
    num, sep, den = raw.partition("/")
    try:
        if sep:
            d = Fraction(den.strip())
            if d == 0:
                return 0.0
            out = float(Fraction(num.strip()) / d)
        else:
            out = float(Fraction(num.strip()))
    except (ValueError, ZeroDivisionError, OverflowError):
        return 0.0
    return out if math.isfinite(out) else 0.0


class TranscodeRunner(Protocol):
    def command(self, args: list[str]) -> list[str]: ...

    async def run(self, argv: list[str], *, label: str = "ffmpeg") -> str: ...


class FFmpegRunner:
    """
    Runs one transcoder invocation as a child process (argv only, no shell).

    Cancelling the awaiting task kills the child; with `timeout_s` set a hung
    child is killed and the stage fails with TranscodeError.
    """

    def __init__(
        self,
        *,
        ffmpeg_bin: str = "ffmpeg",
        timeout_s: float | None = None,
        threads: int = 0,
        log_dir: Path | None = None,
    ) -> None:
        self.ffmpeg_bin = str(ffmpeg_bin)
        self.timeout_s = float(timeout_s) if timeout_s else None
        self.threads = int(threads or 0)
        self.log_dir = Path(log_dir) if log_dir else None

    def command(self, args: list[str]) -> list[str]:
        argv = [self.ffmpeg_bin, "-hide_banner", "-nostdin", "-y"]
        if self.threads > 0:
            argv += ["-threads", str(self.threads)]
        return argv + list(args)

    def _write_logs(self, argv: list[str], stderr: str) -> None:
        if self.log_dir is None:
            return
        ensure_dir(self.log_dir)
        key = hashlib.sha256(" ".join(argv).encode("utf-8", errors="replace")).hexdigest()[:16]
        atomic_write_text(self.log_dir / f"{key}.cmd.txt", " ".join(argv) + "\n")
        atomic_write_text(self.log_dir / f"{key}.stderr.log", stderr)

    async def run(self, argv: list[str], *, label: str = "ffmpeg") -> str:
        _validate_args(argv)
        logger.debug("ffmpeg_start", stage=label, argv=" ".join(argv))
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as ex:
            raise TranscodeError(f"{label}: cannot start {argv[0]}: {ex}") from ex

        try:
            if self.timeout_s is not None:
                _, err = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_s)
            else:
                _, err = await proc.communicate()
        except asyncio.TimeoutError as ex:
            await _kill(proc)
            logger.error("ffmpeg_timeout", stage=label, timeout_s=self.timeout_s)
            raise TranscodeError(f"{label}: ffmpeg timed out after {self.timeout_s}s") from ex
        except asyncio.CancelledError:
            await _kill(proc)
            logger.info("ffmpeg_cancelled", stage=label)
            raise

        stderr = (err or b"").decode("utf-8", errors="replace")
        with suppress(OSError):
            self._write_logs(argv, stderr)
        if proc.returncode != 0:
            raise TranscodeError(
                f"{label}: ffmpeg failed (exit={proc.returncode})\n"
                f"argv={argv}\n"
                f"stderr_tail={_tail(stderr)}"
            )
        logger.debug("ffmpeg_done", stage=label)
        return stderr


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    with suppress(ProcessLookupError):
        proc.kill()
    with suppress(Exception):
        await proc.wait()


def ffprobe_json(path: Path, *, ffprobe_bin: str = "ffprobe", timeout_s: float = 30.0) -> dict[str, Any]:
    argv = [
        str(ffprobe_bin),
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]
    _validate_args(argv)
    try:
        out = subprocess.check_output(argv, stderr=subprocess.PIPE, timeout=timeout_s).decode(
            "utf-8", errors="replace"
        )
    except subprocess.TimeoutExpired as ex:
        raise TranscodeError(f"ffprobe timed out on {path}") from ex
    except subprocess.CalledProcessError as ex:
        stderr = (ex.stderr or b"").decode("utf-8", errors="replace")
        raise TranscodeError(f"ffprobe failed on {path}: {_tail(stderr, 1000)}") from ex
    except OSError as ex:
        raise TranscodeError(f"ffprobe failed: {ex}") from ex

    try:
        data = json.loads(out) if out else {}
    except ValueError as ex:
        raise TranscodeError(f"ffprobe returned invalid JSON: {ex}") from ex
    return data if isinstance(data, dict) else {}


def check_ffmpeg(ffmpeg_bin: str = "ffmpeg", ffprobe_bin: str = "ffprobe") -> str:
    """Startup check: both binaries must run. Returns the ffmpeg version line."""
    version = ""
    for binary in (ffmpeg_bin, ffprobe_bin):
        try:
            out = subprocess.run(
                [str(binary), "-version"],
                check=True,
                capture_output=True,
                text=True,
                timeout=20,
            )
        except (OSError, subprocess.SubprocessError) as ex:
            raise ConfigError(f"{binary} is not available: {ex}") from ex
        if binary == ffmpeg_bin:
            version = (out.stdout or "").splitlines()[0] if out.stdout else ""
    logger.info("ffmpeg_available", version=version)
    return version
