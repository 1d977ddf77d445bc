import json

from typer.testing import CliRunner

from apps.inspector_cli import app

runner = CliRunner()


def test_tree_command(tmp_path):
    graph = tmp_path / "graph.json"
    graph.write_text(
        json.dumps(
            {
                "connections": [
                    {"source_id": "src", "dest_id": "f", "source_type": "MediaStreamAudioSource", "dest_type": "BiquadFilter"},
                    {"source_id": "f", "dest_id": "out", "source_type": "BiquadFilter", "dest_type": "AudioDestination"},
                ],
                "processors": [
                    {"type": "mediaStreamSource", "node_id": "src"},
                    {"type": "biquadFilter", "node_id": "f"},
                ],
            }
        )
    )

    result = runner.invoke(app, ["tree", str(graph), "--no-pretty"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["flattened"] == ["f"]
    assert payload["summary"]["effects"] == ["Filter"]
    assert payload["tree"]["kind"] == "source"


def test_tree_command_rejects_unreadable_json(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{nope")
    result = runner.invoke(app, ["tree", str(broken)])
    assert result.exit_code == 2


def test_fuse_command(tmp_path):
    signals = tmp_path / "signals.json"
    signals.write_text(
        json.dumps(
            [
                {"detection_method": "audio-blob", "codec": "opus", "measured_size": 4000, "measured_duration": 1.0},
                {"detection_method": "direct", "codec": "opus", "bitrate": 32000},
            ]
        )
    )

    result = runner.invoke(app, ["fuse", str(signals)])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["changes"] == 2
    assert payload["current"]["detection_method"] == "direct"
    assert payload["current"]["measured_bitrate"] == 32000


def test_fuse_command_requires_a_list(tmp_path):
    signals = tmp_path / "signals.json"
    signals.write_text(json.dumps({"codec": "opus"}))
    assert runner.invoke(app, ["fuse", str(signals)]).exit_code == 2


def test_capabilities_command_lists_families():
    result = runner.invoke(app, ["capabilities"])
    assert result.exit_code == 0, result.output
    assert result.stdout.startswith("capability table 2025.1")
    assert "audio_context: AudioContext, webkitAudioContext" in result.stdout


def test_capabilities_command_reports_bad_table(tmp_path):
    table = tmp_path / "caps.json"
    table.write_text(json.dumps({"version": "x", "capabilities": [{"target": "A", "kind": "method", "family": "f",
                                                                  "extractor": "no_such"}]}))
    result = runner.invoke(app, ["--log-level", "WARNING", "capabilities", "--table", str(table)])
    assert result.exit_code == 1
