"""Feed worker and worklet-port encoder messages into the fusion engine."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from core.instance_registry import RegistryEntry
from inspection.encoder_patterns import signal_from_message

from .base import BaseObserver

_logger = logging.getLogger(__name__)


class EncoderObserver(BaseObserver):
    """Turns ``encoder_signal`` records into fused encoder beliefs.

    The observer tracks no items of its own; its snapshot is the fusion
    engine's current belief.
    """

    name = "encoder"
    call_families = ("worker", "audio_worklet_node")

    def _on_call(self, entry: Optional[RegistryEntry], record: Dict[str, Any]) -> None:
        kind = record.get("type")
        if kind == "encode_command":
            if self.encoder is not None and self.encoder.mark_encoding():
                self._emit_encoder()
            return
        if kind != "encoder_signal":
            _logger.debug("encoder observer ignoring %s record", kind)
            return

        worker_url = entry.metadata.get("url") if entry is not None and entry.family == "worker" else None
        signal = signal_from_message(record, worker_url=worker_url)
        if signal is not None:
            self._offer_encoder(signal)

    def _announce_all(self) -> int:
        if self.encoder is None or self.encoder.current is None:
            return 0
        self._emit_encoder()
        return 1


__all__ = ["EncoderObserver"]
