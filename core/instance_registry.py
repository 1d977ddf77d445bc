"""Process-wide store of intercepted host instances.

The registry outlives every observer's start/stop cycle so that a consumer
arriving late can still discover instances created before it existed.
Mutation is append-only or single-key overwrite; callers iterate over
snapshots returned by :meth:`InstanceRegistry.get_all`.
"""

from __future__ import annotations

import logging
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sdk.ids import now_ms

_logger = logging.getLogger(__name__)

CONSTRUCT = "construct"
CALL = "call"

ConstructHandler = Callable[["RegistryEntry"], None]
CallHandler = Callable[[Optional["RegistryEntry"], Dict[str, Any]], None]


class IdentityMap:
    """Weak, persistent ``instance -> id`` mapping.

    Ids are ``<prefix>_<n>`` where ``n`` comes from a per-prefix counter that
    only ever grows. An instance keeps its id for as long as it is alive, even
    after it has been dropped from every observer's active set.
    """

    def __init__(self) -> None:
        self._ids: Dict[int, Tuple[Any, str]] = {}
        self._counters: Dict[str, int] = {}

    def id_for(self, obj: Any, prefix: str = "node") -> str:
        key = id(obj)
        hit = self._ids.get(key)
        if hit is not None and _deref(hit[0]) is obj:
            return hit[1]

        n = self._counters.get(prefix, 0) + 1
        self._counters[prefix] = n
        assigned = f"{prefix}_{n}"
        self._ids[key] = (self._ref(obj, key), assigned)
        return assigned

    def peek(self, obj: Any) -> Optional[str]:
        hit = self._ids.get(id(obj))
        if hit is not None and _deref(hit[0]) is obj:
            return hit[1]
        return None

    def high_water_mark(self, prefix: str) -> int:
        return self._counters.get(prefix, 0)

    def _ref(self, obj: Any, key: int) -> Any:
        def _forget(_ref: Any, key: int = key) -> None:
            self._ids.pop(key, None)

        try:
            return weakref.ref(obj, _forget)
        except TypeError:
            # builtins and __slots__ classes: hold strongly so id() is never reused
            return obj

    def __len__(self) -> int:
        return len(self._ids)


def _deref(ref: Any) -> Any:
    return ref() if isinstance(ref, weakref.ref) else ref


@dataclass
class FamilySpec:
    """Per-family configuration taken from the capability table."""

    name: str
    id_prefix: str
    terminal_attr: Optional[str] = None
    terminal_values: Sequence[Any] = ()


@dataclass
class RegistryEntry:
    family: str
    entry_id: str
    instance_ref: Any
    created_ms: int = field(default_factory=now_ms)
    metadata: Dict[str, Any] = field(default_factory=dict)
    pending: List[Dict[str, Any]] = field(default_factory=list)
    late: bool = False

    @property
    def instance(self) -> Any:
        return _deref(self.instance_ref)


class InstanceRegistry:
    """Per-family entries, pending call records and handler slots."""

    def __init__(self, families: Sequence[FamilySpec] = ()) -> None:
        self.identity = IdentityMap()
        self._families: Dict[str, FamilySpec] = {}
        self._entries: Dict[str, List[RegistryEntry]] = {}
        self._orphans: Dict[str, List[Dict[str, Any]]] = {}
        self._handlers: Dict[Tuple[str, str], Callable[..., None]] = {}
        for spec in families:
            self.configure_family(spec)

    # ------------------------------------------------------------------
    # Families
    # ------------------------------------------------------------------
    def configure_family(self, spec: FamilySpec) -> None:
        self._families[spec.name] = spec
        self._entries.setdefault(spec.name, [])

    def family(self, name: str) -> FamilySpec:
        spec = self._families.get(name)
        if spec is None:
            spec = FamilySpec(name=name, id_prefix=name)
            self.configure_family(spec)
        return spec

    @property
    def families(self) -> List[str]:
        return list(self._families)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------
    def register(
        self,
        family: str,
        instance: Any,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        late: bool = False,
    ) -> Tuple[RegistryEntry, bool]:
        """Return ``(entry, created)``; registering a known instance only merges metadata."""

        existing = self.find(family, instance)
        if existing is not None:
            if metadata:
                existing.metadata.update(metadata)
            return existing, False

        self._prune_dead(family)
        entry = self.transient_entry(family, instance, metadata)
        entry.late = late
        self._entries.setdefault(family, []).append(entry)
        _logger.debug("registered %s in %s (late=%s)", entry.entry_id, family, late)
        return entry, True

    def transient_entry(
        self, family: str, instance: Any, metadata: Optional[Dict[str, Any]] = None
    ) -> RegistryEntry:
        """Build an entry with a stable id without storing it."""

        spec = self.family(family)
        entry_id = self.identity.id_for(instance, spec.id_prefix)
        try:
            ref: Any = weakref.ref(instance)
        except TypeError:
            ref = instance
        return RegistryEntry(family=family, entry_id=entry_id, instance_ref=ref, metadata=dict(metadata or {}))

    def get_all(self, family: str) -> List[RegistryEntry]:
        return list(self._entries.get(family, ()))

    def find(self, family: str, instance: Any) -> Optional[RegistryEntry]:
        if instance is None:
            return None
        for entry in self._entries.get(family, ()):
            if entry.instance is instance:
                return entry
        return None

    def find_by(self, family: str, predicate: Callable[[RegistryEntry], bool]) -> Optional[RegistryEntry]:
        for entry in self.get_all(family):
            if predicate(entry):
                return entry
        return None

    def is_terminal(self, entry: RegistryEntry) -> bool:
        return self.is_terminal_instance(entry.family, entry.instance)

    def is_terminal_instance(self, family: str, instance: Any) -> bool:
        if instance is None:
            return True
        spec = self.family(family)
        if not spec.terminal_attr:
            return False
        return getattr(instance, spec.terminal_attr, None) in spec.terminal_values

    def clear_closed(self, family: str) -> int:
        """Drop entries whose instance is gone or reports a terminal state."""

        keep = [e for e in self._entries.get(family, ()) if not self.is_terminal(e)]
        dropped = len(self._entries.get(family, ())) - len(keep)
        self._entries[family] = keep
        if dropped:
            _logger.debug("cleared %d closed entries from %s", dropped, family)
        return dropped

    def _prune_dead(self, family: str) -> None:
        # collected instances with nothing left to drain carry no information
        entries = self._entries.get(family)
        if entries and any(e.instance is None and not e.pending for e in entries):
            self._entries[family] = [e for e in entries if e.instance is not None or e.pending]

    def clear_all(self, family: str) -> None:
        self._entries[family] = []
        self._orphans.pop(family, None)

    # ------------------------------------------------------------------
    # Pending calls
    # ------------------------------------------------------------------
    def append_pending(self, entry: RegistryEntry, record: Dict[str, Any]) -> None:
        entry.pending.append(record)

    def drain(self, entry: RegistryEntry) -> List[Dict[str, Any]]:
        records = list(entry.pending)
        del entry.pending[: len(records)]
        return records

    def append_orphan(self, family: str, record: Dict[str, Any]) -> None:
        self._orphans.setdefault(family, []).append(record)

    def drain_orphans(self, family: str) -> List[Dict[str, Any]]:
        return self._orphans.pop(family, [])

    # ------------------------------------------------------------------
    # Handler slots
    # ------------------------------------------------------------------
    def set_handler(self, family: str, channel: str, handler: Callable[..., None]) -> None:
        self._handlers[(family, channel)] = handler

    def clear_handler(self, family: str, channel: str) -> None:
        self._handlers.pop((family, channel), None)

    def handler(self, family: str, channel: str) -> Optional[Callable[..., None]]:
        return self._handlers.get((family, channel))


__all__ = [
    "CALL",
    "CONSTRUCT",
    "FamilySpec",
    "IdentityMap",
    "InstanceRegistry",
    "RegistryEntry",
]
