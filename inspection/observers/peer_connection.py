"""RTC peer connections: the codec their handshake settles on and live ``getStats`` figures."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, NamedTuple, Optional

from core.events import BaseEvent, PeerConnectionEvent
from core.instance_registry import RegistryEntry
from core.models import EncoderSignal, PeerConnectionInfo, RtpAudioStats
from hooks.extractors import attr

from .base import BaseObserver, TrackedItem

_logger = logging.getLogger(__name__)


class _ByteMark(NamedTuple):
    sent: int
    received: int
    timestamp: int


def bitrate_kbps(bytes_delta: int, elapsed_ms: float) -> Optional[int]:
    if elapsed_ms <= 0:
        return None
    return round(bytes_delta * 8 / (elapsed_ms / 1000) / 1000)


class PeerConnectionObserver(BaseObserver):
    """Tracks peer connections.

    The SDP given to ``setRemoteDescription`` yields the negotiated codec
    and an ``rtc-handshake`` encoder signal. ``getStats`` reports, whether
    the page asked for them or :meth:`poll` did, fill in per-direction
    codec, bitrate, jitter and packet loss. Bitrates are byte deltas
    between two consecutive reports of the same connection.
    """

    name = "peer_connection"
    construct_families = ("peer_connection",)
    call_families = ("peer_connection",)

    def __init__(self, registry, sink, *, poll_interval_ms: int = 1000, **kwargs: Any) -> None:
        super().__init__(registry, sink, **kwargs)
        self.poll_interval_ms = poll_interval_ms
        self._marks: Dict[str, _ByteMark] = {}

    def _build_item(self, entry: RegistryEntry) -> PeerConnectionInfo:
        return PeerConnectionInfo(connection_id=entry.entry_id, state=entry.metadata.get("state"))

    def _item_event(self, item: TrackedItem) -> BaseEvent:
        return PeerConnectionEvent(payload=item.model.model_copy(deep=True))

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------
    async def poll(self) -> int:
        """Ask every live connection for a stats report; returns how many were asked."""

        if not self.active:
            return 0
        polled = 0
        for item in list(self._items.values()):
            pc = item.instance
            if pc is None or self.registry.is_terminal(item.entry):
                continue
            get_stats = getattr(pc, "getStats", None)
            if get_stats is None:
                continue
            try:
                await get_stats()
            except Exception:
                _logger.exception("getStats failed for %s", item.item_id)
                continue
            polled += 1
        return polled

    async def poll_forever(self) -> None:
        """Poll every ``poll_interval_ms`` for as long as the observer stays active."""

        interval = max(self.poll_interval_ms, 1) / 1000
        while self.active:
            await self.poll()
            await asyncio.sleep(interval)

    def stop(self) -> None:
        super().stop()
        self._marks.clear()

    def reset_session(self, kind: str) -> None:
        if kind == "hard":
            self._marks.clear()

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------
    def _on_call(self, entry: Optional[RegistryEntry], record: Dict[str, Any]) -> None:
        kind = record.get("type")
        if kind not in ("rtc_codec", "rtc_stats"):
            _logger.debug("peer connection observer ignoring %s record", kind)
            return
        if entry is None:
            self._orphan(self.name, "no-owner", record)
            return
        item = self._item_for(entry)
        if item is None:
            return

        info: PeerConnectionInfo = item.model  # type: ignore[assignment]
        info.state = attr(item.instance, "connectionState", default=info.state)
        if kind == "rtc_stats":
            self._apply_stats(item, info, record)
            self._announce(item)
            return

        info.audio_codec = record.get("codec")
        self._announce(item)
        self._offer_encoder(
            EncoderSignal(
                codec=record.get("codec") or "unknown",
                bitrate=record.get("bitrate") or 0,
                channels=record.get("channels"),
                sample_rate=record.get("sample_rate"),
                encoder="webrtc",
                detection_method="rtc-handshake",
                source="rtc-sdp",
                status="initialized",
            )
        )

    def _apply_stats(self, item: TrackedItem, info: PeerConnectionInfo, record: Dict[str, Any]) -> None:
        now = int(record.get("timestamp") or 0)
        prev = self._marks.get(item.item_id)
        send, recv = record.get("send"), record.get("recv")

        info.send = self._direction(send, prev.sent if prev else None, prev, now)
        info.recv = self._direction(recv, prev.received if prev else None, prev, now)
        info.rtt = record.get("rtt")
        info.ice_state = record.get("ice_state") or info.ice_state
        info.state = record.get("connection_state") or info.state
        info.stats_timestamp = now
        if info.audio_codec is None:
            mime = (info.send or info.recv or RtpAudioStats()).codec
            info.audio_codec = mime.rsplit("/", 1)[-1].lower() if mime else None

        # a missing direction keeps its last byte count so the next delta does not spike
        self._marks[item.item_id] = _ByteMark(
            sent=send["bytes"] if send else (prev.sent if prev else 0),
            received=recv["bytes"] if recv else (prev.received if prev else 0),
            timestamp=now,
        )

    @staticmethod
    def _direction(
        raw: Optional[Dict[str, Any]], prev_bytes: Optional[int], prev: Optional[_ByteMark], now: int
    ) -> Optional[RtpAudioStats]:
        if not raw:
            return None
        stats = RtpAudioStats(**raw)
        if prev is not None and prev_bytes is not None:
            stats.bitrate_kbps = bitrate_kbps(stats.bytes - prev_bytes, now - prev.timestamp)
        return stats


__all__ = ["PeerConnectionObserver", "bitrate_kbps"]
