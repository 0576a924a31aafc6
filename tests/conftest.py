# tests/conftest.py
# Loads .env/.env.local (if present) and provides an in-process fake home server.
from __future__ import annotations

import json
import os
import re
import uuid
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from urllib.parse import unquote

import httpx
import pytest

from lorena_matrix import MatrixSession


# ---- minimal .env loader (no extra deps) ------------------------------------
def _load_env_file(path: str) -> None:
    if not os.path.exists(path):
        return
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            s = line.strip()
            if not s or s.startswith("#") or "=" not in s:
                continue
            k, v = s.split("=", 1)
            k = k.strip()
            v = v.strip().strip('"').strip("'")
            # Do not override pre-set env (e.g., in CI)
            os.environ.setdefault(k, v)


# Load in priority order: .env.local then .env
_load_env_file(".env.local")
_load_env_file(".env")


# ---- pytest markers ----------------------------------------------------------
def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "live: test that hits a real Matrix home server")


# ---- fake home server --------------------------------------------------------
HOME = "https://matrix.example.org"
SERVER_NAME = "matrix.example.org"


def _json(status: int, body: Any) -> httpx.Response:
    return httpx.Response(status, json=body)


def _error(status: int, errcode: str, message: str) -> httpx.Response:
    return _json(status, {"errcode": errcode, "error": message})


class FakeHomeServer:
    """
    Just enough of the r0 client/media API to exercise MatrixSession.

    Tokens are ``syt_<username>_<hex>``; rooms are ``!room<N>:<server>``.
    ``sync_payload`` is returned verbatim from ``/sync``.
    """

    def __init__(self) -> None:
        self.users: Dict[str, str] = {}
        self.tokens: Dict[str, str] = {}
        self.rooms: Dict[str, Set[str]] = {}
        self.forgotten: Set[Tuple[str, str]] = set()
        self.media: Dict[str, bytes] = {}
        self.media_types: Dict[str, str] = {}
        self.sent: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        self.sync_payload: Dict[str, Any] = {"next_batch": "s1_0", "rooms": {}}
        self.fail_invites = False
        self.rate_limit_next = 0
        self._counter = 0

    # -- helpers
    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}{self._counter}"

    def issue_token(self, user: str) -> str:
        token = f"syt_{user}_{uuid.uuid4().hex}"
        self.tokens[token] = user
        return token

    def _user_for(self, request: httpx.Request) -> Optional[str]:
        user = self.tokens.get(request.url.params.get("access_token") or "")
        return f"@{user}:{SERVER_NAME}" if user else None

    # -- transport entrypoint
    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.rate_limit_next > 0:
            self.rate_limit_next -= 1
            return _error(429, "M_LIMIT_EXCEEDED", "Too Many Requests")

        path = unquote(request.url.raw_path.decode("ascii").split("?", 1)[0])
        if path.startswith("/_matrix/media/r0/"):
            return self._media(request, path[len("/_matrix/media/r0/"):])
        if path.startswith("/_matrix/client/r0/"):
            return self._client(request, path[len("/_matrix/client/r0/"):])
        return _error(404, "M_UNRECOGNIZED", "Unrecognized request")

    def _client(self, request: httpx.Request, path: str) -> httpx.Response:
        method = request.method
        body = json.loads(request.content) if request.content else {}

        if path == "login" and method == "GET":
            return _json(200, {"flows": [{"type": "m.login.password"}]})
        if path == "login" and method == "POST":
            user = body.get("user")
            if user in self.users and self.users[user] == body.get("password"):
                return _json(200, {
                    "access_token": self.issue_token(user),
                    "user_id": f"@{user}:{SERVER_NAME}",
                    "device_id": "DEVICE",
                })
            return _error(403, "M_FORBIDDEN", "Invalid password")
        if path == "register" and method == "POST":
            username = body.get("username")
            if username in self.users:
                return _error(400, "M_USER_IN_USE", "User ID already taken.")
            self.users[username] = body.get("password")
            return _json(200, {"user_id": f"@{username}:{SERVER_NAME}"})
        if path == "register/available":
            if request.url.params.get("username") in self.users:
                return _error(400, "M_USER_IN_USE", "User ID already taken.")
            return _json(200, {"available": True})

        user = self._user_for(request)
        if user is None:
            return _error(401, "M_MISSING_TOKEN", "Missing access token")

        if path == "sync":
            return _json(200, self.sync_payload)
        if path == "joined_rooms":
            return _json(200, {"joined_rooms": [r for r, m in self.rooms.items() if user in m]})
        if path == "createRoom":
            room_id = self._next_id("!room") + f":{SERVER_NAME}"
            self.rooms[room_id] = {user}
            return _json(200, {"room_id": room_id})

        m = re.fullmatch(r"rooms/([^/]*)/(invite|join|leave|forget)", path)
        if m:
            room_id, action = m.groups()
            members = self.rooms.get(room_id)
            if members is None:
                return _error(404, "M_NOT_FOUND", "Unknown room")
            if action == "invite":
                if self.fail_invites:
                    return _error(403, "M_FORBIDDEN", "Invite refused")
                return _json(200, {})
            if action == "join":
                members.add(user)
                return _json(200, {"room_id": room_id})
            if action == "leave":
                if user not in members:
                    return _error(403, "M_FORBIDDEN", "User not in room")
                members.discard(user)
                return _json(200, {})
            if user in members or (user, room_id) in self.forgotten:
                return _error(400, "M_UNKNOWN", "User is in room or already forgot it")
            self.forgotten.add((user, room_id))
            return _json(200, {})

        m = re.fullmatch(r"rooms/([^/]*)/send/m\.room\.message/([^/]+)", path)
        if m and method == "PUT":
            room_id, txn = m.groups()
            if user not in self.rooms.get(room_id, set()):
                return _error(404, "M_NOT_FOUND", "Unknown room")
            event_id = self._next_id("$event")
            self.sent.append({"room_id": room_id, "txn_id": txn, "content": body})
            return _json(200, {"event_id": event_id})

        return _error(404, "M_UNRECOGNIZED", "Unrecognized request")

    def _media(self, request: httpx.Request, path: str) -> httpx.Response:
        if path == "upload" and request.method == "POST":
            if self._user_for(request) is None:
                return _error(401, "M_MISSING_TOKEN", "Missing access token")
            media_id = self._next_id("media")
            self.media[media_id] = request.content
            self.media_types[media_id] = request.headers.get("content-type", "")
            return _json(200, {"content_uri": f"mxc://{SERVER_NAME}/{media_id}"})
        m = re.fullmatch(r"download/([^/]+)/([^/]+)/[^/]+", path)
        if m and request.method == "GET":
            server, media_id = m.groups()
            if server != SERVER_NAME or media_id not in self.media:
                return _error(404, "M_NOT_FOUND", "Not found")
            return httpx.Response(
                200,
                content=self.media[media_id],
                headers={"content-type": self.media_types[media_id]},
            )
        return _error(404, "M_UNRECOGNIZED", "Unrecognized request")


# ---- fixtures ----------------------------------------------------------------
@pytest.fixture
def mock_transport_factory() -> (
    Callable[[Callable[[httpx.Request], httpx.Response]], httpx.MockTransport]
):
    """
    Factory returning an httpx.MockTransport from a handler function.

    Usage:
        def handler(request: httpx.Request) -> httpx.Response: ...
        session = MatrixSession(HOME, transport=mock_transport_factory(handler))
    """

    def _factory(
        handler: Callable[[httpx.Request], httpx.Response],
    ) -> httpx.MockTransport:
        return httpx.MockTransport(handler)

    return _factory


@pytest.fixture
def fake_server() -> FakeHomeServer:
    return FakeHomeServer()


@pytest.fixture
def session(fake_server: FakeHomeServer, mock_transport_factory) -> MatrixSession:
    """Session wired to the fake home server, with instant retries."""
    return MatrixSession(
        HOME,
        transport=mock_transport_factory(fake_server.handler),
        base_delay=0.0,
        jitter=0.0,
    )


@pytest.fixture
def live_credentials() -> Dict[str, str]:
    """
    Credentials for live tests; skips unless LORENA_MATRIX_SERVER,
    LORENA_MATRIX_USER and LORENA_MATRIX_PASSWORD are all set.
    """
    keys = ("LORENA_MATRIX_SERVER", "LORENA_MATRIX_USER", "LORENA_MATRIX_PASSWORD")
    values = {k: os.getenv(k) or "" for k in keys}
    if not all(values.values()):
        pytest.skip("live Matrix credentials not configured")
    return {
        "server": values["LORENA_MATRIX_SERVER"],
        "user": values["LORENA_MATRIX_USER"],
        "password": values["LORENA_MATRIX_PASSWORD"],
    }
