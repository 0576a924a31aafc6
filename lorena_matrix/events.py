# SPDX-License-Identifier: MIT
# lorena_matrix/events.py
"""
Event classifier: turns the room sections of a ``/sync`` response into a flat
list of RoomEvent records.

Output order is invites, then membership updates, then messages. Within each
group rooms keep the server's order and events keep timeline order. Events
sent by the session's own user are dropped.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from .schemas import InvitedRoom, JoinedRoom, RoomEvent, SyncResponse

__all__ = [
    "ACTION_MSGTYPES",
    "classify_sync",
    "incoming_invitations",
    "membership_updates",
    "room_messages",
]

ACTION_MSGTYPES = frozenset({"m.action", "m.emote"})
_MEMBERSHIP_CHANGES = ("join", "leave")


def incoming_invitations(
    rooms: Mapping[str, InvitedRoom], own_user_id: Optional[str]
) -> List[RoomEvent]:
    """One ``incoming-invite`` per invited room not invited by ourselves."""
    out: List[RoomEvent] = []
    for room_id, room in rooms.items():
        # Each stripped state event contributes a different field.
        invitation: Dict[str, Any] = {}
        for ev in room.invite_state.events:
            if ev.type == "m.room.join_rules":
                invitation["sender"] = ev.sender
                invitation["join_rule"] = ev.content.get("join_rule")
            elif ev.type == "m.room.member":
                if ev.state_key == ev.sender:
                    invitation["membership"] = ev.content.get("membership")
                else:
                    invitation["origin_server_ts"] = ev.origin_server_ts
                    invitation["event_id"] = ev.event_id

        sender = invitation.pop("sender", None)
        if sender is not None and sender == own_user_id:
            continue
        out.append(
            RoomEvent(
                kind="incoming-invite",
                room_id=room_id,
                sender=sender,
                payload=invitation,
            )
        )
    return out


def membership_updates(
    rooms: Mapping[str, JoinedRoom], own_user_id: Optional[str]
) -> List[RoomEvent]:
    """One ``membership-update`` per foreign join/leave in joined timelines."""
    out: List[RoomEvent] = []
    for room_id, room in rooms.items():
        for ev in room.timeline.events:
            if ev.type != "m.room.member" or ev.sender == own_user_id:
                continue
            membership = ev.content.get("membership")
            if membership in _MEMBERSHIP_CHANGES:
                out.append(
                    RoomEvent(
                        kind="membership-update",
                        room_id=room_id,
                        sender=ev.sender,
                        payload=membership,
                    )
                )
    return out


def room_messages(
    rooms: Mapping[str, JoinedRoom], own_user_id: Optional[str]
) -> List[RoomEvent]:
    """One ``message`` per foreign ``m.room.message`` in joined timelines."""
    out: List[RoomEvent] = []
    for room_id, room in rooms.items():
        for ev in room.timeline.events:
            if ev.type != "m.room.message" or ev.sender == own_user_id:
                continue
            msgtype = ev.content.get("msgtype")
            out.append(
                RoomEvent(
                    kind="message",
                    room_id=room_id,
                    sender=ev.sender,
                    payload=ev.content,
                    msg_type="action" if msgtype in ACTION_MSGTYPES else "text",
                )
            )
    return out


def classify_sync(sync: SyncResponse, own_user_id: Optional[str]) -> List[RoomEvent]:
    rooms = sync.rooms
    return (
        incoming_invitations(rooms.invite, own_user_id)
        + membership_updates(rooms.join, own_user_id)
        + room_messages(rooms.join, own_user_id)
    )
