from __future__ import annotations

import pytest

from loop_render.config import get_settings


@pytest.fixture(autouse=True)
def _test_env(
    tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch
) -> None:
    root = tmp_path_factory.mktemp("lr_test")
    for name in ("temp", "output", "logs", "_state", "published"):
        (root / name).mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("APP_ROOT", str(root))
    monkeypatch.setenv("SCRATCH_DIR", str(root / "temp"))
    monkeypatch.setenv("OUTPUT_DIR", str(root / "output"))
    monkeypatch.setenv("LOG_DIR", str(root / "logs"))
    monkeypatch.setenv("STATE_DIR", str(root / "_state"))
    monkeypatch.setenv("JOB_STORE", "sqlite")
    monkeypatch.setenv("OBJECT_STORE", "local")
    monkeypatch.setenv("LOCAL_STORE_DIR", str(root / "published"))
    for name in ("S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "WEBHOOK_AUTH", "COMPRESSION_PRESET"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
