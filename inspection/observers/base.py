"""Lifecycle shared by every capability observer.

An observer owns the active items of one or more registry families. It
installs persistent construct handlers once, claims the call handlers
while active, and turns registry entries and call records into outbound
events. Emission is gated on the ``ACTIVE`` state: anything that happens
while inactive is either recoverable from the registry on the next
``start()`` or, for untracked constructs, held in a small ring buffer.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple

from pydantic import BaseModel

from core.events import BaseEvent, EncoderEvent, EventSink, MetaEvent, OrphanEvent
from core.instance_registry import CALL, CONSTRUCT, InstanceRegistry, RegistryEntry
from core.models import EncoderSignal, OrphanRecord
from inspection.encoder_fusion import EncoderFusionEngine

_logger = logging.getLogger(__name__)


class ObserverState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass
class TrackedItem:
    item_id: str
    entry: RegistryEntry
    model: BaseModel

    @property
    def family(self) -> str:
        return self.entry.family

    @property
    def instance(self) -> Any:
        return self.entry.instance


def plain_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Drop host object references from a call record before it leaves the process."""

    return {k: v for k, v in record.items() if k != "owner_hint"}


class BaseObserver:
    """Base class for per-family observers.

    Subclasses declare ``construct_families`` and ``call_families`` and
    implement :meth:`_build_item`, :meth:`_item_event` and :meth:`_on_call`.
    """

    name = "observer"
    construct_families: Tuple[str, ...] = ()
    call_families: Tuple[str, ...] = ()

    def __init__(
        self,
        registry: InstanceRegistry,
        sink: EventSink,
        *,
        encoder: Optional[EncoderFusionEngine] = None,
        buffer_size: int = 16,
    ) -> None:
        self.registry = registry
        self.encoder = encoder
        self._sink = sink
        self.state = ObserverState.UNINITIALIZED
        self.id_counter = 0

        self._items: Dict[str, TrackedItem] = {}
        self._buffer: Deque[RegistryEntry] = deque(maxlen=max(1, buffer_size))

        self._status_lock = threading.Lock()
        self._status_messages: List[str] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def install(self) -> None:
        """Register construct handlers. Never emits."""

        if self.state is not ObserverState.UNINITIALIZED:
            return
        for family in self.construct_families:
            self.registry.set_handler(family, CONSTRUCT, self._handle_construct)
        self.state = ObserverState.INITIALIZED

    def start(self) -> None:
        if self.state is ObserverState.UNINITIALIZED:
            self.install()
        if self.state is ObserverState.ACTIVE:
            self._record_status("start() called while observer already active")
            self.re_emit()
            return

        self.state = ObserverState.ACTIVE
        self._sync_counter()
        self._reset_replay_state()
        for family in self.call_families:
            self.registry.set_handler(family, CALL, self._on_call)

        announced = self._replay_registry()
        drained = self._drain_pending()
        buffered = self._replay_buffer()
        if drained or buffered:
            self._record_status(f"replayed {announced} items, {drained} pending calls, {buffered} buffered signals")
        self._emit_meta("started")

    def stop(self) -> None:
        if self.state is not ObserverState.ACTIVE:
            return

        self._emit_meta("stopped")
        for family in self.call_families:
            self.registry.clear_handler(family, CALL)
        self.state = ObserverState.INACTIVE

        dropped = self._drop_terminal_items()
        self._prune_registry()
        if dropped:
            _logger.debug("%s dropped %d terminal items on stop", self.name, dropped)

    def re_emit(self) -> int:
        """Replay the current snapshot without touching state."""

        if self.state is not ObserverState.ACTIVE:
            return 0
        return self._announce_all()

    def reset_session(self, kind: str) -> None:
        """Clear per-session state; ``kind`` is ``"hard"`` or ``"soft"``."""

    @property
    def active(self) -> bool:
        return self.state is ObserverState.ACTIVE

    def snapshot(self) -> List[BaseModel]:
        return [item.model.model_copy(deep=True) for item in self._items.values()]

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------
    def _build_item(self, entry: RegistryEntry) -> Optional[BaseModel]:
        return None

    def _item_event(self, item: TrackedItem) -> BaseEvent:
        raise NotImplementedError

    def _after_track(self, item: TrackedItem) -> None:
        pass

    def _on_call(self, entry: Optional[RegistryEntry], record: Dict[str, Any]) -> None:
        _logger.debug("%s ignoring %s record", self.name, record.get("type"))

    def _reset_replay_state(self) -> None:
        # an item may have gone terminal while nobody was listening
        self._drop_terminal_items()

    # ------------------------------------------------------------------
    # Item tracking
    # ------------------------------------------------------------------
    def _handle_construct(self, entry: RegistryEntry) -> None:
        if self.state is not ObserverState.ACTIVE:
            # tracked entries are replayed from the registry; untracked ones only live here
            if self.registry.find(entry.family, entry.instance) is None:
                self._buffer.append(entry)
            return
        self._on_construct(entry)

    def _on_construct(self, entry: RegistryEntry) -> None:
        self._item_for(entry)

    def _track(self, entry: RegistryEntry) -> Tuple[Optional[TrackedItem], bool]:
        existing = self._items.get(entry.entry_id)
        if existing is not None:
            return existing, False
        model = self._build_item(entry)
        if model is None:
            return None, False
        item = TrackedItem(item_id=entry.entry_id, entry=entry, model=model)
        self._items[item.item_id] = item
        self._sync_counter()
        return item, True

    def _item_for(self, entry: RegistryEntry) -> Optional[TrackedItem]:
        """Return the tracked item for ``entry``, tracking and announcing it if new."""

        existing = self._items.get(entry.entry_id)
        if existing is not None:
            return existing
        if self.registry.is_terminal(entry):
            return None
        item, created = self._track(entry)
        if item is not None and created:
            self._announce(item)
            self._after_track(item)
        return item

    def _drop_terminal_items(self) -> int:
        dropped = 0
        for item_id, item in list(self._items.items()):
            if self.registry.is_terminal(item.entry):
                del self._items[item_id]
                dropped += 1
        return dropped

    def _prune_registry(self) -> int:
        families = dict.fromkeys(self.construct_families + self.call_families)
        return sum(self.registry.clear_closed(family) for family in families)

    def _sync_counter(self) -> None:
        identity = self.registry.identity
        for family in self.construct_families:
            mark = identity.high_water_mark(self.registry.family(family).id_prefix)
            self.id_counter = max(self.id_counter, mark)

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------
    def _replay_registry(self) -> int:
        fresh: List[TrackedItem] = []
        for family in self.construct_families:
            for entry in self.registry.get_all(family):
                if self.registry.is_terminal(entry):
                    continue
                item, created = self._track(entry)
                if item is not None and created:
                    fresh.append(item)
        announced = self._announce_all()
        for item in fresh:
            self._after_track(item)
        return announced

    def _drain_pending(self) -> int:
        drained = 0
        for family in self.call_families:
            for entry in self.registry.get_all(family):
                records = self.registry.drain(entry)
                if self.registry.is_terminal(entry):
                    if records:
                        _logger.debug("discarding %d calls of closed %s", len(records), entry.entry_id)
                    continue
                for record in records:
                    self._on_call(entry, record)
                    drained += 1
            for record in self.registry.drain_orphans(family):
                self._on_call(None, record)
                drained += 1
        return drained

    def _replay_buffer(self) -> int:
        replayed = 0
        while self._buffer:
            self._on_construct(self._buffer.popleft())
            replayed += 1
        return replayed

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------
    def _emit(self, event: BaseEvent) -> bool:
        if self.state is not ObserverState.ACTIVE:
            return False
        self._sink(event)
        return True

    def _announce(self, item: TrackedItem) -> None:
        self._emit(self._item_event(item))

    def _announce_all(self) -> int:
        items = list(self._items.values())
        for item in items:
            self._announce(item)
        return len(items)

    def _offer_encoder(self, signal: EncoderSignal, context_id: Optional[str] = None) -> bool:
        if self.encoder is None:
            return False
        changed = self.encoder.offer(signal)
        if changed:
            self._emit_encoder(context_id)
        return changed

    def _emit_encoder(self, context_id: Optional[str] = None) -> None:
        current = self.encoder.current if self.encoder is not None else None
        if current is not None:
            self._emit(EncoderEvent(context_id=context_id, payload=current))

    def _orphan(self, family: str, reason: str, record: Dict[str, Any], *, pending: bool = False) -> None:
        payload = OrphanRecord(family=family, reason=reason, record=plain_record(record), pending=pending)
        self._emit(OrphanEvent(payload=payload))

    def _emit_meta(self, state: str) -> None:
        meta: Dict[str, Any] = {
            "observer": self.name,
            "state": state,
            "items": len(self._items),
            "id_counter": self.id_counter,
        }
        statuses = self._consume_statuses()
        if statuses:
            meta["status"] = statuses
        self._emit(MetaEvent(payload=meta))

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------
    def _record_status(self, message: str) -> None:
        with self._status_lock:
            self._status_messages.append(message)

    def _consume_statuses(self) -> List[str]:
        with self._status_lock:
            if not self._status_messages:
                return []
            messages = list(self._status_messages)
            self._status_messages.clear()
            return messages


__all__ = ["BaseObserver", "ObserverState", "TrackedItem", "plain_record"]
