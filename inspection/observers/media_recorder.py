"""MediaRecorder lifecycle plus post-hoc sizing of the audio it produces.

Recorded blobs are summed into a running byte total. Some hosts hand out
each chunk separately, others hand out the whole recording so far every
time; the second blob of a session decides which, and the total is kept
accordingly. Dividing that total by the time spent recording yields a
measured bitrate the fusion engine attaches to whatever encoder it
already believes in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.codecs import parse_mime_type
from core.events import BaseEvent, MediaRecorderEvent
from core.instance_registry import RegistryEntry
from core.models import EncoderSignal, RecorderInfo
from core.timing.session_timer import SessionTimer
from inspection.encoder_patterns import POST_HOC_TAG

from .base import BaseObserver, TrackedItem

_logger = logging.getLogger(__name__)

CUMULATIVE_GROWTH = 1.7


@dataclass
class BlobTally:
    total_bytes: int = 0
    last_size: int = 0
    chunks: int = 0
    mode: str = "unknown"

    def add(self, size: int) -> int:
        if self.mode == "unknown" and self.chunks:
            self.mode = "cumulative" if size > self.last_size * CUMULATIVE_GROWTH else "chunked"
        if self.mode == "cumulative":
            self.total_bytes = size
        else:
            self.total_bytes += size
        self.last_size = size
        self.chunks += 1
        return self.total_bytes


class MediaRecorderObserver(BaseObserver):
    name = "media_recorder"
    construct_families = ("media_recorder", "blob")
    call_families = ("media_recorder",)

    def __init__(self, registry, sink, **kwargs: Any) -> None:
        super().__init__(registry, sink, **kwargs)
        self.tally = BlobTally()
        self.timer = SessionTimer()
        self._recording_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Observer hooks
    # ------------------------------------------------------------------
    def _build_item(self, entry: RegistryEntry) -> Optional[RecorderInfo]:
        if entry.family != "media_recorder":
            return None
        md = entry.metadata
        mime = parse_mime_type(md.get("mime_type"))
        return RecorderInfo(
            recorder_id=entry.entry_id,
            state=md.get("state") or "inactive",
            mime_type=md.get("mime_type"),
            codec=mime["codec"],
            container=mime["container"],
            audio_bits_per_second=md.get("audio_bits_per_second"),
        )

    def _item_event(self, item: TrackedItem) -> BaseEvent:
        return MediaRecorderEvent(payload=item.model.model_copy(deep=True))

    def _after_track(self, item: TrackedItem) -> None:
        info: RecorderInfo = item.model  # type: ignore[assignment]
        if info.codec is None and info.container is None:
            return
        self._offer_encoder(
            EncoderSignal(
                codec=info.codec or "unknown",
                container=info.container,
                bitrate=info.audio_bits_per_second or 0,
                encoder="MediaRecorder",
                detection_method="media-recorder",
                source="media-recorder",
                mime_type=info.mime_type,
                status="initialized",
            )
        )

    def _on_construct(self, entry: RegistryEntry) -> None:
        if entry.family == "blob":
            self._on_blob(entry)
        else:
            super()._on_construct(entry)

    def _on_call(self, entry: Optional[RegistryEntry], record: Dict[str, Any]) -> None:
        if entry is None or record.get("type") != "recorder_state":
            _logger.debug("media recorder ignoring %s record", record.get("type"))
            return
        item = self._item_for(entry)
        if item is None:
            return
        info: RecorderInfo = item.model  # type: ignore[assignment]
        info.state = record.get("state") or info.state

        if record.get("method") == "start":
            self.tally = BlobTally()
            self.timer = SessionTimer()
            self.timer.start()
            self._recording_id = item.item_id
            info.total_bytes, info.chunks, info.duration_ms = 0, 0, 0.0
            if self.encoder is not None and self.encoder.mark_encoding():
                self._emit_encoder()
        elif record.get("method") == "stop" and self._recording_id == item.item_id:
            info.duration_ms = self.timer.stop()
        self._announce(item)

    def reset_session(self, kind: str) -> None:
        if kind not in ("hard", "soft"):
            return
        recording = self.timer.running
        self.tally = BlobTally()
        self.timer = SessionTimer()
        if recording:
            self.timer.start()
        if kind == "hard":
            for item in self._items.values():
                info: RecorderInfo = item.model  # type: ignore[assignment]
                info.total_bytes, info.chunks, info.duration_ms = 0, 0, 0.0

    # ------------------------------------------------------------------
    # Blob sizing
    # ------------------------------------------------------------------
    def _on_blob(self, entry: RegistryEntry) -> None:
        md = entry.metadata
        size = int(md.get("size") or 0)
        if size <= 0:
            return
        at_ns = md.get("monotonic_ns")
        if not self.timer.started:
            self.timer.start(at_ns)
        total = self.tally.add(size)
        elapsed_ms = self.timer.elapsed_ms_at(at_ns) if at_ns is not None else self.timer.elapsed_ms
        duration = elapsed_ms / 1000.0 if elapsed_ms > 0 else None

        mime = parse_mime_type(md.get("mime_type"))
        self._offer_encoder(
            EncoderSignal(
                codec=mime["codec"] or "unknown",
                container=mime["container"],
                detection_method=POST_HOC_TAG,
                source="blob",
                mime_type=md.get("mime_type"),
                measured_size=total,
                measured_duration=duration,
            )
        )

        item = self._items.get(self._recording_id or "")
        if item is not None:
            info: RecorderInfo = item.model  # type: ignore[assignment]
            info.total_bytes = total
            info.chunks = self.tally.chunks
            info.duration_ms = elapsed_ms
            self._announce(item)


__all__ = ["BlobTally", "CUMULATIVE_GROWTH", "MediaRecorderObserver"]
