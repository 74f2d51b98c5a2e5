from __future__ import annotations

import asyncio
import time
from pathlib import Path

import pytest

from loop_render.utils.aio import gather_fail_fast
from loop_render.utils.io import atomic_write_text, cleanup_paths, unique_path
from loop_render.utils.retry import backoff_delay, retry_call


def test_cleanup_is_idempotent(tmp_path: Path) -> None:
    a = tmp_path / "a.mp4"
    b = tmp_path / "b.wav"
    a.write_bytes(b"x")
    b.write_bytes(b"y")
    assert cleanup_paths([a, None, b, tmp_path / "missing"]) == 2
    assert not a.exists() and not b.exists()
    assert cleanup_paths([a, b]) == 0


def test_unique_path_never_repeats(tmp_path: Path) -> None:
    paths = {unique_path(tmp_path / "scratch", "looped_video", ".mp4") for _ in range(50)}
    assert len(paths) == 50
    assert all(p.parent.is_dir() and p.suffix == ".mp4" for p in paths)


def test_atomic_write_text(tmp_path: Path) -> None:
    p = tmp_path / "sub" / "cmd.txt"
    atomic_write_text(p, "hello\n")
    assert p.read_text(encoding="utf-8") == "hello\n"
    assert [x.name for x in p.parent.iterdir()] == ["cmd.txt"]


def test_backoff_is_capped() -> None:
    assert backoff_delay(0, base=1, cap=10, jitter=False) == 1
    assert backoff_delay(2, base=1, cap=10, jitter=False) == 4
    assert backoff_delay(8, base=1, cap=10, jitter=False) == 10
    assert 0.5 <= backoff_delay(0, base=1, cap=10, jitter=True) <= 1.5


def test_retry_call_retries(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {"n": 0}
    slept: list[float] = []

    def fn():
        calls["n"] += 1
        if calls["n"] < 3:
            raise ConnectionError("flaky")
        return "ok"

    # don't actually sleep in tests
    monkeypatch.setattr(time, "sleep", lambda s: slept.append(s))
    assert retry_call(fn, retries=5, base=1, cap=10, jitter=False) == "ok"
    assert calls["n"] == 3
    assert slept == [1, 2]


def test_retry_call_gives_up_and_skips_other_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(time, "sleep", lambda _: None)
    calls = {"n": 0}

    def flaky():
        calls["n"] += 1
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        retry_call(flaky, retries=2, jitter=False, retry_on=(ConnectionError,))
    assert calls["n"] == 3

    calls["n"] = 0

    def broken():
        calls["n"] += 1
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        retry_call(broken, retries=5, retry_on=(ConnectionError,))
    assert calls["n"] == 1


def test_gather_fail_fast_cancels_sibling() -> None:
    state = {"cancelled": False}

    async def slow() -> str:
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            state["cancelled"] = True
            raise
        return "slow"

    async def boom() -> str:
        await asyncio.sleep(0.01)
        raise RuntimeError("boom")

    async def main() -> None:
        with pytest.raises(RuntimeError, match="boom"):
            await gather_fail_fast(slow(), boom())

    asyncio.run(main())
    assert state["cancelled"] is True


def test_gather_fail_fast_keeps_order() -> None:
    async def val(x: int, delay: float) -> int:
        await asyncio.sleep(delay)
        return x

    assert asyncio.run(gather_fail_fast(val(1, 0.02), val(2, 0.0))) == [1, 2]
