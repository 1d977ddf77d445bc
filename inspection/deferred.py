"""Hold events whose owning context is not known yet."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from core.models import Context
from sdk.ids import now_ms

_logger = logging.getLogger(__name__)

Matcher = Callable[[Context, Any], bool]


@dataclass
class DeferredItem:
    record: Dict[str, Any]
    matcher: Matcher
    reason: str
    enqueued_ms: int = field(default_factory=now_ms)


class DeferredMatchingQueue:
    """FIFO of unmatched records, resolved once a candidate context shows up.

    ``resolve`` is called every time a context becomes known or gains a
    processor; it hands back the records whose matcher accepts that context,
    in arrival order, and forgets them.
    """

    def __init__(self, max_items: int = 256, ttl_ms: Optional[int] = None) -> None:
        self.max_items = max(1, max_items)
        self.ttl_ms = ttl_ms
        self._items: Deque[DeferredItem] = deque()

    def defer(self, record: Dict[str, Any], matcher: Matcher, reason: str) -> DeferredItem:
        item = DeferredItem(record=record, matcher=matcher, reason=reason)
        if len(self._items) >= self.max_items:
            dropped = self._items.popleft()
            _logger.debug("deferred queue full; evicting %s record (%s)", dropped.record.get("type"), dropped.reason)
        self._items.append(item)
        return item

    def resolve(self, context: Context, instance: Any = None) -> List[Dict[str, Any]]:
        matched: List[Dict[str, Any]] = []
        remaining: Deque[DeferredItem] = deque()
        for item in list(self._items):
            if item.matcher(context, instance):
                matched.append(item.record)
            else:
                remaining.append(item)
        self._items = remaining
        return matched

    def expire(self, now: Optional[int] = None) -> int:
        if self.ttl_ms is None:
            return 0
        cutoff = (now if now is not None else now_ms()) - self.ttl_ms
        before = len(self._items)
        self._items = deque(i for i in self._items if i.enqueued_ms >= cutoff)
        expired = before - len(self._items)
        if expired:
            _logger.debug("expired %d deferred records", expired)
        return expired

    def pending(self) -> List[DeferredItem]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


__all__ = ["DeferredItem", "DeferredMatchingQueue", "Matcher"]
