import json

import pytest

from conftest import run
from core.instance_registry import InstanceRegistry
from hooks.capabilities import CapabilityTableError, load_capability_table
from hooks.extractors import EXTRACTORS
from hooks.installer import HookInstaller
from sdk.config import SDK_CONFIG, AppConfig
from sdk.runtime import build_inspector


def write_table(tmp_path, data):
    path = tmp_path / "caps.json"
    path.write_text(json.dumps(data) if not isinstance(data, str) else data, encoding="utf-8")
    return path


def test_bundled_table_is_consistent(table):
    table.validate_extractors(EXTRACTORS)
    assert table.version == "2025.1"
    assert table.constructor_for("audio_context").target == "AudioContext"
    assert table.constructor_for("nothing") is None

    worklet = next(c for c in table.capabilities if c.target == "AudioWorkletNode")
    assert worklet.routed_family == "audio_context"
    assert worklet.owner_mode == "arg:0"
    assert next(c for c in table.capabilities if c.target == "Worker.postMessage").owner_mode == "self"


def test_missing_or_malformed_table(tmp_path):
    with pytest.raises(CapabilityTableError):
        load_capability_table(tmp_path / "absent.json")
    with pytest.raises(CapabilityTableError):
        load_capability_table(write_table(tmp_path, "{broken"))
    with pytest.raises(CapabilityTableError):
        load_capability_table(write_table(tmp_path, {"capabilities": []}))


def test_unknown_extractor_fails_before_hooking(tmp_path):
    path = write_table(
        tmp_path,
        {
            "version": "t",
            "families": {"audio_context": {"id_prefix": "ctx"}},
            "capabilities": [{"target": "AudioContext", "kind": "constructor", "family": "audio_context",
                              "extractor": "nope"}],
        },
    )
    with pytest.raises(CapabilityTableError, match="nope"):
        HookInstaller(InstanceRegistry(), load_capability_table(path))


def test_undeclared_family_is_rejected(tmp_path):
    table = load_capability_table(
        write_table(
            tmp_path,
            {"version": "t", "capabilities": [{"target": "Worker", "kind": "constructor", "family": "worker",
                                               "extractor": "worker"}]},
        )
    )
    with pytest.raises(CapabilityTableError, match="worker"):
        table.validate_extractors(EXTRACTORS)


def test_new_row_needs_no_code(tmp_path, host, events):
    data = json.loads(SDK_CONFIG.capability_table.read_text(encoding="utf-8"))
    data["capabilities"].append(
        {"target": "AudioContext.suspend", "kind": "async_method", "family": "audio_context",
         "extractor": "context_state"}
    )
    config = AppConfig(capability_table=write_table(tmp_path, data))

    async def suspend(self):
        self.state = "suspended"

    host.AudioContext.suspend = suspend
    inspector = build_inspector(host, events.append, config)
    inspector.enable()
    ctx = host.AudioContext()
    run(ctx.suspend())

    assert inspector.contexts()[0].state == "suspended"
