"""Track audio contexts, their processors, connections and worklet modules."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from core.events import BaseEvent, ConnectionEvent, ContextEvent
from core.instance_registry import RegistryEntry
from core.models import Connection, Context, PipelineState, ProcessorRecord
from inspection.deferred import DeferredMatchingQueue
from inspection.graph import NODE_DISPLAY

from .base import BaseObserver, TrackedItem

_logger = logging.getLogger(__name__)

ProcessorHandler = Callable[["AudioContextObserver", Context, ProcessorRecord], None]


def _upsert(observer: "AudioContextObserver", ctx: Context, record: ProcessorRecord) -> None:
    existing = ctx.processor(record.node_id) if record.node_id else None
    if existing is None:
        ctx.pipeline.processors.append(record)
        return
    existing.params.update(record.params)
    existing.timestamp = record.timestamp


def _media_stream_source(observer: "AudioContextObserver", ctx: Context, record: ProcessorRecord) -> None:
    _upsert(observer, ctx, record)
    ctx.pipeline.input_source = observer.classify_input(record.params.get("streamId"))


def _media_stream_destination(observer: "AudioContextObserver", ctx: Context, record: ProcessorRecord) -> None:
    _upsert(observer, ctx, record)
    ctx.pipeline.destination_type = "MediaStreamDestination"


def _analyser(observer: "AudioContextObserver", ctx: Context, record: ProcessorRecord) -> None:
    _upsert(observer, ctx, record)
    ctx.pipeline.has_analyser = True


PROCESSOR_HANDLERS: Dict[str, ProcessorHandler] = {name: _upsert for name in NODE_DISPLAY}
PROCESSOR_HANDLERS.update(
    {
        "mediaStreamSource": _media_stream_source,
        "mediaStreamDestination": _media_stream_destination,
        "analyser": _analyser,
    }
)

_PROCESSOR_FIELDS = ("type", "node_id", "timestamp", "params")


class AudioContextObserver(BaseObserver):
    """Builds a :class:`~core.models.Context` per audio context.

    Calls that arrive without a resolvable context are either matched
    against the contexts already known, held in the deferred queue until a
    matching context shows up, or emitted as orphans.
    """

    name = "audio_context"
    construct_families = ("audio_context",)
    call_families = ("audio_context",)

    def __init__(
        self, registry, sink, *, deferred_max_items: int = 256, deferred_ttl_ms: Optional[int] = None, **kwargs: Any
    ) -> None:
        super().__init__(registry, sink, **kwargs)
        self.deferred = DeferredMatchingQueue(max_items=deferred_max_items, ttl_ms=deferred_ttl_ms)
        self.connections: List[Connection] = []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def context(self, context_id: str) -> Optional[Context]:
        item = self._items.get(context_id)
        return item.model if item is not None else None  # type: ignore[return-value]

    def contexts(self) -> List[Context]:
        return [item.model for item in self._items.values()]  # type: ignore[misc]

    def connections_for(self, context_id: str) -> List[Connection]:
        return [c for c in self.connections if c.context_id == context_id]

    def classify_input(self, stream_id: Optional[str]) -> str:
        if stream_id is not None:
            found = self.registry.find_by("user_media", lambda e: e.metadata.get("stream_id") == stream_id)
            if found is not None:
                return "microphone"
        return "stream"

    # ------------------------------------------------------------------
    # Observer hooks
    # ------------------------------------------------------------------
    def _build_item(self, entry: RegistryEntry) -> Context:
        md = entry.metadata
        return Context(
            context_id=entry.entry_id,
            created_ms=entry.created_ms,
            sample_rate=md.get("sample_rate"),
            channel_count=md.get("channel_count"),
            base_latency=md.get("base_latency"),
            output_latency=md.get("output_latency"),
            state=md.get("state"),
            late_discovered=entry.late,
        )

    def _item_event(self, item: TrackedItem) -> BaseEvent:
        return ContextEvent(context_id=item.item_id, payload=item.model.model_copy(deep=True))

    def _announce_all(self) -> int:
        count = super()._announce_all()
        for conn in self.connections:
            if conn.context_id in self._items:
                self._emit(ConnectionEvent(context_id=conn.context_id, payload=conn))
        return count

    def _after_track(self, item: TrackedItem) -> None:
        self._resolve_deferred(item)

    def _on_call(self, entry: Optional[RegistryEntry], record: Dict[str, Any]) -> None:
        if entry is None:
            self._unowned(record)
            return
        item = self._item_for(entry)
        if item is None:
            _logger.debug("dropping %s call on closed context %s", record.get("type"), entry.entry_id)
            return
        self._apply(item, record)

    def reset_session(self, kind: str) -> None:
        if kind != "hard":
            return
        for item in self._items.values():
            item.model.pipeline = PipelineState()  # type: ignore[attr-defined]
        self.connections.clear()
        self.deferred.clear()
        for entry in self.registry.get_all(self.name):
            self.registry.drain(entry)
        self.registry.drain_orphans(self.name)

    # ------------------------------------------------------------------
    # Merge handlers
    # ------------------------------------------------------------------
    def _apply(self, item: TrackedItem, record: Dict[str, Any]) -> None:
        ctx: Context = item.model  # type: ignore[assignment]
        kind = record.get("type")

        if kind == "connection":
            self._add_connection(item, record)
        elif kind == "worklet_module":
            url = record.get("url")
            if url and url not in ctx.pipeline.worklet_modules:
                ctx.pipeline.worklet_modules.append(url)
            self._announce(item)
        elif kind == "context_state":
            ctx.state = record.get("state")
            self._announce(item)
            if self.registry.is_terminal(item.entry):
                self._items.pop(item.item_id, None)
        elif kind in PROCESSOR_HANDLERS:
            processor = ProcessorRecord(**{k: record[k] for k in _PROCESSOR_FIELDS if k in record})
            PROCESSOR_HANDLERS[kind](self, ctx, processor)
            self._announce(item)
            self._resolve_deferred(item)
        else:
            _logger.debug("no merge handler for %s record", kind)

    def _add_connection(self, item: TrackedItem, record: Dict[str, Any]) -> None:
        fields = {k: v for k, v in record.items() if k in Connection.model_fields}
        conn = Connection(**{**fields, "context_id": item.item_id})
        self.connections.append(conn)
        self._emit(ConnectionEvent(context_id=item.item_id, payload=conn))

    # ------------------------------------------------------------------
    # Unowned calls
    # ------------------------------------------------------------------
    def _unowned(self, record: Dict[str, Any]) -> None:
        kind = record.get("type")
        if kind == "connection":
            source_id, dest_id = record.get("source_id"), record.get("dest_id")
            for item in list(self._items.values()):
                ctx: Context = item.model  # type: ignore[assignment]
                if ctx.has_node(source_id) or ctx.has_node(dest_id):
                    self._apply(item, record)
                    return
            self.deferred.defer(
                record,
                lambda c, _inst: c.has_node(source_id) or c.has_node(dest_id),
                reason="connection-context-unknown",
            )
            self._orphan(self.name, "connection-context-unknown", record, pending=True)
            return

        hint = record.get("owner_hint")
        if kind == "worklet_module" and hint is not None:
            self.deferred.defer(
                record,
                lambda _c, inst: inst is not None and getattr(inst, "audioWorklet", None) is hint,
                reason="worklet-context-unknown",
            )
            self._orphan(self.name, "worklet-context-unknown", record, pending=True)
            return

        self._orphan(self.name, "no-owner", record)

    def _resolve_deferred(self, item: TrackedItem) -> None:
        self.deferred.expire()
        if not len(self.deferred):
            return
        for record in self.deferred.resolve(item.model, item.instance):  # type: ignore[arg-type]
            _logger.debug("resolved deferred %s into %s", record.get("type"), item.item_id)
            self._apply(item, record)


__all__ = ["AudioContextObserver", "PROCESSOR_HANDLERS"]
