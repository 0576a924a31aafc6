# -*- coding: utf-8 -*-
"""
lorena_matrix

Async Python client for the Matrix client-server API, as used by Lorena
contacts: account login/registration, 1:1 "connection" rooms, messaging,
media transfer and a classified long-poll event feed.

Exports:
    - MatrixSession : Session client; one instance per logged-in user.
    - MatrixError   : Exception carrying HTTP status + Matrix errcode.
    - RoomEvent     : Classified event record returned by ``events()``.
    - SyncResult    : ``events()`` result (next batch token + events).
    - DidParts      : Result of ``extract_did``.
"""

from .client import MatrixError, MatrixSession
from .ids import DidParts, extract_did, parse_mxc
from .schemas import RoomEvent, SyncResult

__all__ = [
    "DidParts",
    "MatrixError",
    "MatrixSession",
    "RoomEvent",
    "SyncResult",
    "extract_did",
    "parse_mxc",
]
