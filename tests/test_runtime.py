import json
import logging
import os

import pytest
from conftest import FakeSlskdClient

from db.pending_selections import PendingSelectionStore
from engine import paths
from engine.runtime import CONFIG_ENV_VAR, start_engine
from scheduler.jobs.selection_expiry import SELECTION_EXPIRY_JOB_ID


@pytest.fixture
def engine_dirs(tmp_path, monkeypatch):
    monkeypatch.setattr(paths, "DB_PATH", tmp_path / "database" / "acquisition.sqlite")
    monkeypatch.setattr(paths, "LOG_DIR", tmp_path / "logs")
    monkeypatch.setattr(paths, "CONFIG_DIR", tmp_path / "config")
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    root = logging.getLogger("")
    before = list(root.handlers)
    level = root.level
    yield tmp_path
    for handler in root.handlers[:]:
        if handler not in before:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def _write_config(directory, name="config.json", **selection):
    os.makedirs(directory, exist_ok=True)
    raw = {"slskd": {"host": "http://slskd:5030", "selection": {"mode": "manual", **selection}}}
    with open(os.path.join(directory, name), "w", encoding="utf-8") as f:
        json.dump(raw, f)


def test_start_engine_wires_service_from_config(engine_dirs) -> None:
    _write_config(engine_dirs / "config", timeout_minutes=5)

    runtime = start_engine(client=FakeSlskdClient())
    try:
        assert runtime.config_path == os.path.join(engine_dirs / "config", "config.json")
        assert runtime.config.selection.mode == "manual"
        assert isinstance(runtime.service.cache.store, PendingSelectionStore)
        assert runtime.service.cache.timeout_seconds == 300
        assert runtime.service.reputation.store.db_path == str(engine_dirs / "database" / "acquisition.sqlite")
        assert (engine_dirs / "database" / "acquisition.sqlite").is_file()
        assert (engine_dirs / "logs" / "acquisition.log").is_file()
        assert runtime.scheduler.get_job(SELECTION_EXPIRY_JOB_ID) is not None
    finally:
        runtime.shutdown()
    assert runtime.scheduler is None


def test_start_engine_ignores_override_outside_config_dir(engine_dirs, monkeypatch) -> None:
    _write_config(engine_dirs / "config")
    monkeypatch.setenv(CONFIG_ENV_VAR, "../elsewhere.json")

    runtime = start_engine(client=FakeSlskdClient(), start_scheduler=False)

    assert runtime.config_path == os.path.join(engine_dirs / "config", "config.json")
    assert runtime.scheduler is None


def test_start_engine_uses_named_config(engine_dirs) -> None:
    _write_config(engine_dirs / "config", name="alt.json", mode="auto")

    runtime = start_engine("alt.json", client=FakeSlskdClient(), start_scheduler=False)

    assert runtime.config.selection.mode == "auto"


def test_start_engine_rejects_invalid_config(engine_dirs) -> None:
    os.makedirs(engine_dirs / "config")
    with open(engine_dirs / "config" / "config.json", "w", encoding="utf-8") as f:
        json.dump({"slskd": {"host": "slskd:5030"}}, f)

    with pytest.raises(ValueError, match="slskd.host must be an http"):
        start_engine(client=FakeSlskdClient(), start_scheduler=False)
