from __future__ import annotations
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from collections import deque
from pathlib import Path
from threading import Lock
from typing import Any, Deque, Dict, List, Optional, Tuple
import asyncio, json

from config.paths import get_paths
from core.events import BaseEvent, event_dump
from inspection.session_manager import PipelineInspector

app = FastAPI(title="Audio Inspector UI API")


class EventTail:
    """Ring buffer of recent events, numbered so pollers can ask for what they missed."""
    def __init__(self, maxlen: int = 500):
        self._items: Deque[Tuple[int, Dict[str, Any]]] = deque(maxlen=maxlen)
        self._seq = 0
        self._lock = Lock()

    def __call__(self, event: BaseEvent) -> None:
        with self._lock:
            self._seq += 1
            self._items.append((self._seq, event_dump(event)))

    @property
    def seq(self) -> int:
        return self._seq

    def since(self, seq: int) -> List[Tuple[int, Dict[str, Any]]]:
        with self._lock:
            return [(n, e) for n, e in self._items if n > seq]


class _State:
    inspector: Optional[PipelineInspector] = None
    tail: EventTail = EventTail()


def bind_inspector(inspector: PipelineInspector, tail_size: int = 500) -> EventTail:
    """Serve ``inspector`` and tee its events into an in-memory tail."""
    tail = EventTail(tail_size)
    downstream = inspector.sink
    if downstream is None:
        inspector.sink = tail
    else:
        def _tee(event: BaseEvent) -> None:
            tail(event)
            downstream(event)
        inspector.sink = _tee
    _State.inspector = inspector
    _State.tail = tail
    return tail


def _inspector() -> PipelineInspector:
    if _State.inspector is None:
        raise HTTPException(status_code=503, detail="no inspector bound")
    return _State.inspector


class ResetRequest(BaseModel):
    kind: str = "soft"
    session_id: Optional[str] = None


# ---------- control surface ----------

@app.post("/inspector/enable")
def enable():
    insp = _inspector()
    insp.enable()
    return {"enabled": insp.enabled}

@app.post("/inspector/disable")
def disable():
    insp = _inspector()
    insp.disable()
    return {"enabled": insp.enabled}

@app.post("/inspector/reset")
def reset(req: ResetRequest):
    insp = _inspector()
    if not insp.reset_session(req.kind, req.session_id):
        return JSONResponse(status_code=400, content={"error": f"unknown reset kind '{req.kind}'"})
    return {"reset": req.kind, "session_id": insp.session_id}


# ---------- read-only snapshots ----------

@app.get("/inspector/snapshot")
def snapshot():
    return _inspector().snapshot()

@app.get("/inspector/encoder")
def encoder():
    current = _inspector().current_encoder
    return {"encoder": current.model_dump(mode="json") if current else None}

@app.get("/inspector/contexts/{context_id}/topology")
def topology(context_id: str):
    insp = _inspector()
    if insp.audio_context.context(context_id) is None:
        return JSONResponse(status_code=404, content={"error": "not found"})
    tree = insp.topology(context_id)
    summary = insp.processing_summary(context_id)
    return {
        "tree": tree.to_dict() if tree is not None else None,
        "summary": summary.model_dump() if summary is not None else None,
    }

@app.get("/inspector/events")
def recent_events(since: int = 0, limit: int = 200):
    items = _State.tail.since(since)[-limit:]
    return {"seq": _State.tail.seq, "events": [e for _, e in items]}

@app.websocket("/ws/inspector/events")
async def ws_inspector_events(ws: WebSocket):
    await ws.accept()
    last = _State.tail.seq
    try:
        while True:
            await asyncio.sleep(0.25)
            for n, event in _State.tail.since(last):
                await ws.send_text(json.dumps(event))
                last = n
    except WebSocketDisconnect:
        return


# ---------- recorded sessions ----------

def sessions_dir() -> Path:
    return get_paths().sessions_root

@app.get("/sessions")
def list_sessions():
    root = sessions_dir()
    root.mkdir(parents=True, exist_ok=True)
    items = []
    for p in sorted(root.iterdir(), key=lambda x: x.stat().st_mtime, reverse=True):
        if p.is_dir():
            items.append({"name": p.name, "path": str(p)})
    return {"sessions": items}

@app.get("/sessions/{name}/events")
def get_events(name: str, limit: int = 200):
    root = sessions_dir().resolve()
    session = (root / name).resolve()
    if root not in session.parents:
        return JSONResponse(status_code=400, content={"error": "invalid session name"})
    f = session / "events.jsonl"
    if not f.exists():
        return JSONResponse(status_code=404, content={"error": "not found"})
    lines: List[str] = f.read_text(encoding="utf-8").splitlines()[-limit:]
    events = [json.loads(x) for x in lines if x.strip()]
    return {"events": events}
