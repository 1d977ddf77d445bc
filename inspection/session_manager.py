"""Orchestrate the observers behind a three-verb control surface."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from core.events import BaseEvent, EventSink, MetaEvent
from core.instance_registry import InstanceRegistry
from core.models import Context, EncoderSignal, ProcessingSummary
from hooks.installer import HOOK_LOCK, HookInstaller
from sdk.config import SDK_CONFIG, AppConfig

from .encoder_fusion import EncoderFusionEngine
from .graph import ProcessorTreeNode, derive_processor_tree, extract_processing_info, flatten_processor_tree
from .observers.audio_context import AudioContextObserver
from .observers.base import BaseObserver
from .observers.encoder import EncoderObserver
from .observers.media_recorder import MediaRecorderObserver
from .observers.peer_connection import PeerConnectionObserver
from .observers.user_media import UserMediaObserver

_logger = logging.getLogger(__name__)

RESET_KINDS = ("hard", "soft")


class PipelineInspector:
    """Own every observer and fan their events out to one sink.

    ``enable``/``disable``/``reset_session`` are the only verbs that change
    state. Everything else is a read-only query over what the observers
    have accumulated.
    """

    def __init__(
        self,
        registry: InstanceRegistry,
        sink: Optional[EventSink] = None,
        *,
        config: Optional[AppConfig] = None,
        installer: Optional[HookInstaller] = None,
        session_id: Optional[str] = None,
    ) -> None:
        cfg = config or SDK_CONFIG
        self.registry = registry
        self.installer = installer
        self.session_id = session_id
        self.sink = sink
        self.enabled = False
        self.encoder = EncoderFusionEngine()

        shared: Dict[str, Any] = {"encoder": self.encoder, "buffer_size": cfg.signal_buffer_size}
        self.user_media = UserMediaObserver(registry, self._dispatch, **shared)
        self.audio_context = AudioContextObserver(
            registry,
            self._dispatch,
            deferred_max_items=cfg.deferred_max_items,
            deferred_ttl_ms=cfg.deferred_ttl_ms,
            **shared,
        )
        self.encoder_observer = EncoderObserver(registry, self._dispatch, **shared)
        self.media_recorder = MediaRecorderObserver(registry, self._dispatch, **shared)
        self.peer_connection = PeerConnectionObserver(
            registry, self._dispatch, poll_interval_ms=cfg.stats_poll_interval_ms, **shared
        )

        # user media first so stream sources can be classified as microphones on replay
        self.observers: List[BaseObserver] = [
            self.user_media,
            self.audio_context,
            self.encoder_observer,
            self.media_recorder,
            self.peer_connection,
        ]
        for observer in self.observers:
            observer.install()

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------
    def enable(self) -> None:
        with HOOK_LOCK:
            if self.enabled:
                _logger.debug("enable() while enabled; re-emitting snapshots")
                for observer in self.observers:
                    observer.re_emit()
                return
            self.enabled = True
            for observer in self.observers:
                observer.start()
        _logger.info("inspector enabled (session=%s)", self.session_id)

    def disable(self) -> None:
        with HOOK_LOCK:
            if not self.enabled:
                return
            for observer in self.observers:
                observer.stop()
            self.encoder.clear()
            self.enabled = False
        _logger.info("inspector disabled")

    def reset_session(self, kind: str, session_id: Optional[str] = None) -> bool:
        if kind not in RESET_KINDS:
            _logger.warning("ignoring unknown reset kind %r", kind)
            return False

        with HOOK_LOCK:
            self.encoder.clear()
            for observer in self.observers:
                observer.reset_session(kind)
            if session_id is not None:
                self.session_id = session_id
        _logger.info("%s session reset (session=%s)", kind, self.session_id)
        if self.enabled:
            self._dispatch(MetaEvent(payload={"reset": kind, "session_id": self.session_id}))
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def current_encoder(self) -> Optional[EncoderSignal]:
        return self.encoder.current

    def contexts(self) -> List[Context]:
        return [ctx.model_copy(deep=True) for ctx in self.audio_context.contexts()]

    def topology(self, context_id: str) -> Optional[ProcessorTreeNode]:
        ctx = self.audio_context.context(context_id)
        if ctx is None:
            return None
        return derive_processor_tree(self.audio_context.connections_for(context_id), ctx.pipeline.processors)

    def processing_summary(self, context_id: str) -> Optional[ProcessingSummary]:
        ctx = self.audio_context.context(context_id)
        if ctx is None:
            return None
        tree = self.topology(context_id)
        records = flatten_processor_tree(tree) if tree is not None else ctx.pipeline.processors
        return extract_processing_info(records)

    async def poll_stats(self) -> int:
        """Run one ``getStats`` pass over the live peer connections."""
        return await self.peer_connection.poll()

    def snapshot(self) -> Dict[str, Any]:
        encoder = self.encoder.current
        return {
            "enabled": self.enabled,
            "session_id": self.session_id,
            "contexts": [ctx.model_dump(mode="json") for ctx in self.contexts()],
            "encoder": encoder.model_dump(mode="json") if encoder is not None else None,
            "recorders": [m.model_dump(mode="json") for m in self.media_recorder.snapshot()],
            "streams": [m.model_dump(mode="json") for m in self.user_media.snapshot()],
            "peers": [m.model_dump(mode="json") for m in self.peer_connection.snapshot()],
            "deferred": len(self.audio_context.deferred),
        }

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    def _dispatch(self, event: BaseEvent) -> None:
        if event.session_id is None:
            event.session_id = self.session_id
        if self.sink is None:
            return
        try:
            self.sink(event)
        except Exception:
            _logger.exception("event sink failed for %s event", getattr(event, "kind", "?"))


__all__ = ["PipelineInspector", "RESET_KINDS"]
