"""Microphone streams obtained through ``getUserMedia``."""

from __future__ import annotations

from core.events import BaseEvent, UserMediaEvent
from core.instance_registry import RegistryEntry
from core.models import TrackSettings, UserMediaInfo

from .base import BaseObserver, TrackedItem


class UserMediaObserver(BaseObserver):
    name = "user_media"
    construct_families = ("user_media",)

    def _build_item(self, entry: RegistryEntry) -> UserMediaInfo:
        md = entry.metadata
        return UserMediaInfo(
            stream_id=md.get("stream_id") or entry.entry_id,
            audio=bool(md.get("audio", True)),
            active=not self.registry.is_terminal(entry),
            constraints=md.get("constraints") or {},
            settings=TrackSettings(**md["settings"]) if md.get("settings") else None,
        )

    def _item_event(self, item: TrackedItem) -> BaseEvent:
        return UserMediaEvent(payload=item.model.model_copy(deep=True))


__all__ = ["UserMediaObserver"]
