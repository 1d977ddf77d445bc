"""Outbound event models emitted by observers to the configured sink."""

from __future__ import annotations

from typing import Annotated, Any, Callable, Dict, Literal, Optional, Union

import ulid
from pydantic import BaseModel, ConfigDict, Field

from sdk.ids import now_ms

from .models import (
    Connection,
    Context,
    EncoderSignal,
    OrphanRecord,
    PeerConnectionInfo,
    RecorderInfo,
    UserMediaInfo,
)


def now_ts_ms() -> int:
    """Return the current timestamp in milliseconds."""

    return now_ms()


def new_event_id() -> str:
    """Generate a ULID based identifier for events."""

    return str(ulid.new())


class BaseEvent(BaseModel):
    """Envelope shared by every outbound event: ``{kind, timestamp, context_id?, payload}``."""

    model_config = ConfigDict(extra="allow")

    v: Literal["v1"] = "v1"
    event_id: str = Field(default_factory=new_event_id)
    timestamp: int = Field(default_factory=now_ts_ms)
    context_id: Optional[str] = None
    session_id: Optional[str] = None


class ContextEvent(BaseEvent):
    kind: Literal["context"] = "context"
    payload: Context


class ConnectionEvent(BaseEvent):
    kind: Literal["connection"] = "connection"
    payload: Connection


class EncoderEvent(BaseEvent):
    kind: Literal["encoder"] = "encoder"
    payload: EncoderSignal


class OrphanEvent(BaseEvent):
    kind: Literal["orphan"] = "orphan"
    payload: OrphanRecord


class MediaRecorderEvent(BaseEvent):
    kind: Literal["media_recorder"] = "media_recorder"
    payload: RecorderInfo


class UserMediaEvent(BaseEvent):
    kind: Literal["user_media"] = "user_media"
    payload: UserMediaInfo


class PeerConnectionEvent(BaseEvent):
    kind: Literal["peer_connection"] = "peer_connection"
    payload: PeerConnectionInfo


class MetaEvent(BaseEvent):
    kind: Literal["meta"] = "meta"
    payload: Dict[str, Any] = Field(default_factory=dict)


InspectorEvent = Annotated[
    Union[
        ContextEvent,
        ConnectionEvent,
        EncoderEvent,
        OrphanEvent,
        MediaRecorderEvent,
        UserMediaEvent,
        PeerConnectionEvent,
        MetaEvent,
    ],
    Field(discriminator="kind"),
]

EventSink = Callable[[BaseEvent], None]


def event_dump(event: BaseEvent) -> Dict[str, Any]:
    """Return a JSON-ready ``dict`` for ``event``."""

    return event.model_dump(mode="json")


__all__ = [
    "BaseEvent",
    "ConnectionEvent",
    "ContextEvent",
    "EncoderEvent",
    "EventSink",
    "InspectorEvent",
    "MediaRecorderEvent",
    "MetaEvent",
    "OrphanEvent",
    "PeerConnectionEvent",
    "UserMediaEvent",
    "event_dump",
    "new_event_id",
    "now_ts_ms",
]
