from __future__ import annotations

import os
import tempfile
import uuid
from collections.abc import Iterable
from pathlib import Path

from .log import logger


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def atomic_write_text(path: Path, text: str, *, encoding: str = "utf-8") -> None:
    ensure_dir(path.parent)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def unique_path(directory: Path, prefix: str, suffix: str) -> Path:
    """Scratch file name that no other job (or retry) will ever collide with."""
    ensure_dir(directory)
    return directory / f"{prefix}_{uuid.uuid4().hex}{suffix}"


def file_size(path: Path) -> int:
    try:
        return int(path.stat().st_size)
    except OSError:
        return 0


def cleanup_paths(paths: Iterable[Path | str | None]) -> int:
    """
    Remove files; idempotent.

    Paths that are None or already gone are skipped. Removal errors are logged,
    never raised, so this is safe on every exit path.
    Returns the number of files actually removed.
    """
    removed = 0
    for p in paths:
        if p is None:
            continue
        path = Path(p)
        try:
            path.unlink()
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as ex:
            logger.warning("cleanup_failed", path=str(path), error=str(ex))
    if removed:
        logger.debug("cleanup_done", removed=removed)
    return removed
