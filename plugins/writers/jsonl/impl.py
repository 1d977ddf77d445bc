from __future__ import annotations
from pathlib import Path
from typing import Optional

from core.events import BaseEvent
from inspection.event_writer import JsonlWriter


class JsonlEventWriter:
    """``writer.events`` plugin: one JSON line per inspector event."""
    def __init__(self, flush_every: int = 1):
        self.flush_every = flush_every
        self._w: Optional[JsonlWriter] = None
    def open(self, path: Path) -> None:
        self.close()
        self._w = JsonlWriter(Path(path), flush_every=self.flush_every)
    def write(self, event: BaseEvent) -> None:
        if self._w is None:
            raise RuntimeError("JsonlEventWriter.write() called before open()")
        self._w(event)
    __call__ = write
    def close(self) -> None:
        if self._w: self._w.close(); self._w = None
