"""Merge independent encoder detections into one ranked belief."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from core.models import EncoderSignal

from .encoder_patterns import POST_HOC_TAG, priority_of

_logger = logging.getLogger(__name__)

IDENTITY_FIELDS = ("codec", "container", "bitrate", "channels", "sample_rate", "encoder")
ENRICH_FIELDS = IDENTITY_FIELDS + (
    "application",
    "frame_size",
    "processor_name",
    "worker_url",
    "mime_type",
)
MEASURED_FIELDS = ("measured_size", "measured_duration")


def is_unset(name: str, value: Any) -> bool:
    if value is None:
        return True
    if name in ("codec", "container") and value == "unknown":
        return True
    if name == "bitrate" and not value:
        return True
    return False


def measured_bitrate(size: Optional[int], duration: Optional[float]) -> Optional[int]:
    if not size or not duration or duration <= 0:
        return None
    return int(round(size * 8 / duration))


class EncoderFusionEngine:
    """Holds the current encoder belief and applies the priority-merge rules.

    A new signal whose priority is at least the retained one replaces it
    wholesale, unless it is the post-hoc tag. Lower-priority signals and every
    post-hoc signal only fill fields the retained signal left unset. Post-hoc
    measurement fields are refreshed on every post-hoc update, so the
    throughput-derived bitrate keeps improving as output accumulates.
    """

    def __init__(self) -> None:
        self._current: Optional[EncoderSignal] = None

    @property
    def current(self) -> Optional[EncoderSignal]:
        return self._current

    def offer(self, signal: EncoderSignal) -> bool:
        """Apply ``signal``; return ``True`` when the current belief changed."""

        signal = self._ranked(signal)
        retained = self._current

        if retained is None:
            merged = signal
        elif signal.detection_method != POST_HOC_TAG and signal.priority >= retained.priority:
            merged = signal
            if retained.detection_method == POST_HOC_TAG or retained.measured_size is not None:
                merged = merged.model_copy(update=self._measurements(retained))
        else:
            merged = self._enrich(retained, signal)

        if merged == retained:
            return False
        self._current = merged
        _logger.debug(
            "encoder belief %s/%s via %s (p%d)",
            merged.codec,
            merged.bitrate,
            merged.detection_method,
            merged.priority,
        )
        return True

    def mark_encoding(self) -> bool:
        current = self._current
        if current is None or current.status == "encoding":
            return False
        self._current = current.model_copy(update={"status": "encoding"})
        return True

    def clear(self) -> None:
        self._current = None

    # ------------------------------------------------------------------
    # Merge helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _ranked(signal: EncoderSignal) -> EncoderSignal:
        rank = priority_of(signal.detection_method)
        if signal.detection_method == POST_HOC_TAG:
            rate = measured_bitrate(signal.measured_size, signal.measured_duration)
            return signal.model_copy(update={"priority": rank, "measured_bitrate": rate})
        return signal.model_copy(update={"priority": rank})

    @staticmethod
    def _measurements(source: EncoderSignal) -> Dict[str, Any]:
        return {
            "measured_size": source.measured_size,
            "measured_duration": source.measured_duration,
            "measured_bitrate": source.measured_bitrate,
        }

    def _enrich(self, retained: EncoderSignal, signal: EncoderSignal) -> EncoderSignal:
        update: Dict[str, Any] = {}
        for name in ENRICH_FIELDS:
            if is_unset(name, getattr(retained, name)) and not is_unset(name, getattr(signal, name)):
                update[name] = getattr(signal, name)
        if signal.detection_method == POST_HOC_TAG:
            update.update(self._measurements(signal))
        if not update:
            return retained
        return retained.model_copy(update=update)


__all__ = ["EncoderFusionEngine", "IDENTITY_FIELDS", "is_unset", "measured_bitrate"]
