import json

import pytest
from fastapi.testclient import TestClient

from apps.ui_api import main as ui
from conftest import run


@pytest.fixture
def client():
    yield TestClient(ui.app)
    ui._State.inspector = None
    ui._State.tail = ui.EventTail()


def test_requires_bound_inspector(client):
    assert client.post("/inspector/enable").status_code == 503
    assert client.get("/inspector/snapshot").status_code == 503


def test_control_surface_and_snapshots(client, host, inspector, events):
    tail = ui.bind_inspector(inspector, tail_size=50)

    assert client.post("/inspector/enable").json() == {"enabled": True}
    ctx = host.AudioContext()
    source = ctx.createMediaStreamSource(run(host.mediaDevices.getUserMedia({"audio": True})))
    source.connect(ctx.destination)
    host.Worker("opus-encoder-worker.js").postMessage({"command": "init", "encoderSampleRate": 48000})

    snap = client.get("/inspector/snapshot").json()
    assert snap["enabled"] and snap["session_id"] == "sess-1"
    assert snap["contexts"][0]["context_id"] == "ctx_1"
    assert client.get("/inspector/encoder").json()["encoder"]["detection_method"] == "direct"

    topo = client.get("/inspector/contexts/ctx_1/topology").json()
    assert topo["tree"]["kind"] == "source"
    assert client.get("/inspector/contexts/ctx_9/topology").status_code == 404

    # events still reach the original sink
    assert tail.seq == len(events)
    polled = client.get("/inspector/events", params={"since": tail.seq - 2}).json()
    assert len(polled["events"]) == 2
    assert polled["seq"] == tail.seq


def test_reset_and_disable(client, host, inspector):
    ui.bind_inspector(inspector)
    client.post("/inspector/enable")

    assert client.post("/inspector/reset", json={"kind": "hard", "session_id": "sess-9"}).json() == {
        "reset": "hard",
        "session_id": "sess-9",
    }
    assert client.post("/inspector/reset", json={"kind": "bogus"}).status_code == 400
    assert client.post("/inspector/disable").json() == {"enabled": False}


def test_recorded_sessions(client, monkeypatch, tmp_path):
    monkeypatch.setattr(ui, "sessions_dir", lambda: tmp_path / "sessions")
    session = tmp_path / "sessions" / "demo"
    session.mkdir(parents=True)
    (session / "events.jsonl").write_text(
        "\n".join(json.dumps({"kind": "meta", "n": n}) for n in range(3)) + "\n", encoding="utf-8"
    )

    listed = client.get("/sessions").json()["sessions"]
    assert [s["name"] for s in listed] == ["demo"]
    assert client.get("/sessions/demo/events", params={"limit": 2}).json()["events"] == [
        {"kind": "meta", "n": 1},
        {"kind": "meta", "n": 2},
    ]
    assert client.get("/sessions/missing/events").status_code == 404


def test_session_name_cannot_leave_the_sessions_root(monkeypatch, tmp_path):
    monkeypatch.setattr(ui, "sessions_dir", lambda: tmp_path / "sessions")
    (tmp_path / "sessions").mkdir()
    (tmp_path / "events.jsonl").write_text(json.dumps({"kind": "secret"}) + "\n", encoding="utf-8")

    for name in ("..", ".", "demo/../.."):
        response = ui.get_events(name)
        assert response.status_code == 400


def test_server_shim_exports_the_ui_app(monkeypatch):
    from sdk import server

    assert server.app is ui.app
    with pytest.raises(RuntimeError):
        server.load_app("apps.ui_api.nowhere")

    started = {}
    monkeypatch.setattr("uvicorn.run", lambda app, **kw: started.update(app=app, **kw))
    server.serve(port=9000)
    assert started["app"] is ui.app and started["port"] == 9000
