# tests/unit/test_paths.py
import sys
import types

import pytest


def _import_paths_module():
    """
    Import (or re-import) config.paths so we can reset its singleton between tests.
    """
    import importlib
    if "config.paths" in sys.modules:
        return importlib.reload(sys.modules["config.paths"])
    return importlib.import_module("config.paths")


@pytest.fixture(autouse=True)
def _fresh_sdk_config():
    """
    SDK_CONFIG reads the AUDIOINSPECTOR_* vars when sdk.config is imported, so drop
    the cached module (or a fake one from a previous test) around every test.
    """
    saved = {k: v for k, v in sys.modules.items() if k == "sdk.config"}
    sys.modules.pop("sdk.config", None)
    yield
    sys.modules.pop("sdk.config", None)
    sys.modules.update(saved)


def test_env_overrides_take_precedence(monkeypatch, tmp_path):
    data = tmp_path / "data_root"
    logs = tmp_path / "logs_root"

    monkeypatch.setenv("AUDIOINSPECTOR_DATA_ROOT", str(data))
    monkeypatch.setenv("AUDIOINSPECTOR_LOGS_ROOT", str(logs))

    paths_mod = _import_paths_module()
    p = paths_mod.get_paths(force_refresh=True)

    assert p.data_root == data
    assert p.logs_root == logs

    # ensure_all() is called inside get_paths(), so the sessions dir should exist
    assert p.sessions_root.is_dir()
    assert p.session_dir("dev_smoke") == data / "raw" / "sessions" / "dev_smoke"
    assert p.session_events_path("dev_smoke").name == "events.jsonl"
    assert p.logs_area("ui") == logs / "ui"
    assert p.capability_table.name == "capabilities.json"


def test_sdk_integration_when_available(tmp_path):
    """
    Simulate a customised SDK config and ensure paths are derived from SDK_CONFIG.paths.
    """
    fake_data = tmp_path / "sdk_data"
    fake_logs = tmp_path / "sdk_logs"

    fake_config_module = types.ModuleType("sdk.config")

    class _PathsObj:
        data_root = str(fake_data)
        logs_root = str(fake_logs)

    class _SDKConfig:
        paths = _PathsObj()

    fake_config_module.SDK_CONFIG = _SDKConfig()
    sys.modules["sdk.config"] = fake_config_module

    paths_mod = _import_paths_module()
    p = paths_mod.get_paths(force_refresh=True)

    assert p.data_root == fake_data
    assert p.logs_root == fake_logs
    assert p.sessions_root.exists()
    assert fake_logs.is_dir()


def test_invalid_data_root_raises_on_ensure(monkeypatch, tmp_path):
    """
    If AUDIOINSPECTOR_DATA_ROOT points to a *file* instead of a directory,
    directory creation should fail during get_paths(force_refresh=True).
    """
    bad_data_file = tmp_path / "not_a_dir.txt"
    bad_data_file.write_text("hi", encoding="utf-8")

    monkeypatch.setenv("AUDIOINSPECTOR_DATA_ROOT", str(bad_data_file))
    monkeypatch.setenv("AUDIOINSPECTOR_LOGS_ROOT", str(tmp_path / "logs"))

    paths_mod = _import_paths_module()

    with pytest.raises(OSError):
        paths_mod.get_paths(force_refresh=True)


def test_verify_writeable_and_session_io(monkeypatch, tmp_path):
    monkeypatch.setenv("AUDIOINSPECTOR_DATA_ROOT", str(tmp_path / "data"))
    monkeypatch.setenv("AUDIOINSPECTOR_LOGS_ROOT", str(tmp_path / "logs"))

    paths_mod = _import_paths_module()
    p = paths_mod.get_paths(force_refresh=True)
    # Should not raise
    p.verify_writeable()

    events = paths_mod.ensure_session_io("demo")
    assert events.parent.is_dir()
    assert events == p.session_events_path("demo")
