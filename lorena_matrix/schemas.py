# SPDX-License-Identifier: MIT
# lorena_matrix/schemas.py
"""
Pydantic models for the pieces of the Matrix client-server API this package
reads, plus the flat records it hands back to callers.

Sync sections the server omits, sends empty, or sends in an unexpected shape
all deserialize to empty mappings/lists, so the classifier never has to
inspect raw payload shapes.
"""
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

EventKind = Literal["incoming-invite", "membership-update", "message"]
MessageType = Literal["text", "action"]


def _mapping_or_empty(value: Any) -> Any:
    return value if isinstance(value, dict) else {}


def _list_or_empty(value: Any) -> Any:
    # Non-object entries are dropped rather than rejected.
    return [v for v in value if isinstance(v, dict)] if isinstance(value, list) else []


class RawEvent(BaseModel):
    """A single client event or stripped state event as sent by the server."""

    model_config = ConfigDict(extra="allow")

    type: str = ""
    sender: Optional[str] = None
    state_key: Optional[str] = None
    content: Annotated[Dict[str, Any], BeforeValidator(_mapping_or_empty)] = Field(
        default_factory=dict
    )
    event_id: Optional[str] = None
    origin_server_ts: Optional[int] = None


class EventList(BaseModel):
    model_config = ConfigDict(extra="allow")

    events: Annotated[List[RawEvent], BeforeValidator(_list_or_empty)] = Field(
        default_factory=list
    )


class InvitedRoom(BaseModel):
    model_config = ConfigDict(extra="allow")

    invite_state: Annotated[EventList, BeforeValidator(_mapping_or_empty)] = Field(
        default_factory=EventList
    )


class JoinedRoom(BaseModel):
    model_config = ConfigDict(extra="allow")

    timeline: Annotated[EventList, BeforeValidator(_mapping_or_empty)] = Field(
        default_factory=EventList
    )


_InvitedRoomValue = Annotated[InvitedRoom, BeforeValidator(_mapping_or_empty)]
_JoinedRoomValue = Annotated[JoinedRoom, BeforeValidator(_mapping_or_empty)]


class Rooms(BaseModel):
    model_config = ConfigDict(extra="allow")

    invite: Annotated[Dict[str, _InvitedRoomValue], BeforeValidator(_mapping_or_empty)] = Field(
        default_factory=dict
    )
    join: Annotated[Dict[str, _JoinedRoomValue], BeforeValidator(_mapping_or_empty)] = Field(
        default_factory=dict
    )
    leave: Annotated[Dict[str, Any], BeforeValidator(_mapping_or_empty)] = Field(
        default_factory=dict
    )


class SyncResponse(BaseModel):
    """
    Subset of ``GET /sync`` used for classification.

    ``next_batch`` is required: without it the next call would restart the
    sync from the beginning.
    """

    model_config = ConfigDict(extra="allow")

    next_batch: str
    rooms: Annotated[Rooms, BeforeValidator(_mapping_or_empty)] = Field(
        default_factory=Rooms
    )


class RoomEvent(BaseModel):
    """Flat, typed record produced by the event classifier."""

    kind: EventKind
    room_id: str
    sender: Optional[str] = None
    payload: Any = None
    msg_type: Optional[MessageType] = None


class SyncResult(BaseModel):
    """Result of one ``events()`` call."""

    model_config = ConfigDict(populate_by_name=True)

    next_batch: str = Field(alias="nextBatch")
    events: List[RoomEvent] = Field(default_factory=list)
