# SPDX-License-Identifier: MIT
"""
lorena_matrix.client

Async session client for the Matrix client-server API (r0).

Each public coroutine performs one remote operation and returns its reshaped
result:
- connect(...)            → GET + POST /login
- register(...)           → POST /register (m.login.dummy)
- available(...)          → GET /register/available
- events(...)             → GET /sync (long poll, classified)
- joined_rooms()          → GET /joined_rooms
- create_connection(...)  → POST /createRoom, POST /rooms/{id}/invite
- send_message(...)       → PUT /rooms/{id}/send/m.room.message/{txnId}
- accept_connection(...)  → POST /rooms/{id}/join
- leave_room(...)         → POST /rooms/{id}/leave, POST /rooms/{id}/forget
- upload_file(...)        → POST media /upload
- download_file(...)      → GET media /download/{server}/{mediaId}/{filename}

The access token always travels as the ``access_token`` query parameter.
Non-2xx responses and transport failures raise MatrixError; HTTP 429 is
retried with exponential backoff first.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote, urlsplit

import httpx
from pydantic import ValidationError

from .backoff import with_backoff
from .events import classify_sync
from .ids import DidParts, extract_did, parse_mxc
from .schemas import SyncResponse, SyncResult

__all__ = [
    "MatrixError",
    "MatrixSession",
    "SessionState",
    "SYNC_TIMEOUT_MS",
]

# --------------------------------------------------------------------------------------
# Logging (library-safe): use module logger; only attach a handler if LORENA_MATRIX_DEBUG=1
# --------------------------------------------------------------------------------------
logger = logging.getLogger("lorena_matrix.client")


def _maybe_configure_logging() -> None:
    dbg = (os.getenv("LORENA_MATRIX_DEBUG") or "").strip().lower()
    if dbg in ("1", "true", "yes", "on"):
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter("[lorena-matrix][client] %(levelname)s: %(message)s")
            )
            logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)


_maybe_configure_logging()

SYNC_TIMEOUT_MS = 20000
CLIENT_API_PATH = "/_matrix/client/r0/"
MEDIA_API_PATH = "/_matrix/media/r0/"


class MatrixError(RuntimeError):
    """
    Structured error for any failed remote call.

    Attributes:
        status (int): HTTP status code (0 for network errors).
        errcode (str|None): Matrix error code, e.g. ``M_USER_IN_USE``.
        detail (str|None): Short human-friendly explanation.
        body (Any): Parsed error payload (dict/text) returned by the server.
    """

    def __init__(
        self,
        status: int,
        detail: Optional[str] = None,
        *,
        errcode: Optional[str] = None,
        body: Any = None,
    ) -> None:
        self.status = status
        self.detail = detail
        self.errcode = errcode
        self.body = body
        super().__init__(detail or f"HTTP {status}")

    @property
    def is_conflict(self) -> bool:
        return self.errcode == "M_USER_IN_USE" or self.status == 409

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429 or self.errcode == "M_LIMIT_EXCEEDED"


def _is_rate_limited(exc: BaseException) -> bool:
    return isinstance(exc, MatrixError) and exc.is_rate_limited


def _seg(value: str) -> str:
    """Percent-encode one path segment (room ids contain ``!`` and ``:``)."""
    return quote(value, safe="")


@dataclass
class SessionState:
    """Connection state owned by a single MatrixSession."""
    home_server_url: str
    server_name: str
    api_base_url: str
    media_base_url: str
    access_token: Optional[str] = None
    current_user_id: Optional[str] = None
    connection: Dict[str, Any] = field(default_factory=dict)
    txn_id: int = 1

    @classmethod
    def for_home_server(cls, home_server: str) -> "SessionState":
        home = home_server.rstrip("/")
        parts = urlsplit(home)
        server_name = parts.netloc or home.split("//")[-1]
        return cls(
            home_server_url=home,
            server_name=server_name,
            api_base_url=home + CLIENT_API_PATH,
            media_base_url=home + MEDIA_API_PATH,
        )


class MatrixSession:
    """
    One authenticated (or not yet authenticated) user session on a home server.

    Not safe for unsynchronized use from several tasks except for
    ``send_message``, which serializes transaction id allocation.

    Example:
        from lorena_matrix import MatrixSession
        s = MatrixSession("https://matrix.example.org")
        token = await s.connect("alice", "secret")
        batch = await s.events("")
    """

    # ---------------------------- construction ---------------------------- #

    def __init__(
        self,
        home_server: Optional[str] = None,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 0.5,
        jitter: float = 0.1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        home = home_server or os.getenv("SERVER_MATRIX")
        if not home:
            raise ValueError("home_server is required (or set SERVER_MATRIX)")
        self.state = SessionState.for_home_server(home)
        self.timeout = timeout
        self._transport = transport
        self._headers: Dict[str, str] = {
            "Accept": "application/json",
            "User-Agent": user_agent or "lorena-matrix/0.1 (+python-httpx)",
        }
        self._txn_lock = asyncio.Lock()
        self._request = with_backoff(
            max_retries=max_retries,
            base_delay=base_delay,
            jitter=jitter,
            retry_if=_is_rate_limited,
        )(self._request_once)

    # ------------------------------ state -------------------------------- #

    @property
    def server_name(self) -> str:
        return self.state.server_name

    @property
    def access_token(self) -> Optional[str]:
        return self.state.access_token

    @property
    def current_user_id(self) -> Optional[str]:
        return self.state.current_user_id

    @property
    def txn_id(self) -> int:
        return self.state.txn_id

    @property
    def is_connected(self) -> bool:
        return bool(self.state.access_token)

    # ------------------------------- account ----------------------------- #

    async def connect(self, username: str, password: str) -> str:
        """
        Log in with a password and keep the resulting access token.

        Returns the access token. The session user id becomes
        ``@username:server_name``.
        """
        try:
            # Flow discovery first, as the server expects.
            await self._request("GET", self._api("login"))
            resp = await self._request(
                "POST",
                self._api("login"),
                json_body={"type": "m.login.password", "user": username, "password": password},
            )
        except MatrixError as e:
            raise MatrixError(
                e.status,
                f"Could not connect to Matrix: {e.detail}",
                errcode=e.errcode,
                body=e.body,
            ) from e

        data = self._safe_json(resp)
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise MatrixError(resp.status_code, "login response carried no access_token", body=data)

        self.state.connection = data
        self.state.access_token = token
        self.state.current_user_id = f"@{username}:{self.state.server_name}"
        logger.info("connected as %s", self.state.current_user_id)
        return token

    def disconnect(self) -> None:
        """Forget the token locally. The transaction counter is kept."""
        self.state.access_token = None
        self.state.current_user_id = None
        self.state.connection = {}

    async def register(self, username: str, password: str) -> str:
        """
        Create an account with the dummy (no-auth) registration flow.

        A taken username raises MatrixError with ``is_conflict`` set.
        """
        await self._request(
            "POST",
            self._api("register"),
            json_body={
                "auth": {"type": "m.login.dummy"},
                "username": username,
                "password": password,
            },
        )
        logger.info("registered %s", username)
        return username

    async def available(self, username: str) -> bool:
        """
        True when ``username`` can still be registered.

        Every error response counts as "not available", so a server error
        is indistinguishable from a taken name.
        """
        try:
            await self._request(
                "GET", self._api("register/available"), params={"username": username}
            )
        except MatrixError as e:
            logger.debug("availability check for %s failed: %s", username, e)
            return False
        return True

    # -------------------------------- sync ------------------------------- #

    async def events(
        self, next_batch: str = "", filter: Optional[Dict[str, Any]] = None
    ) -> SyncResult:
        """
        Long-poll ``/sync`` and classify what arrived.

        ``next_batch=""`` syncs from the beginning. Returns a SyncResult with
        the token for the next call and the classified RoomEvent list.
        """
        params: Dict[str, Any] = {
            "timeout": SYNC_TIMEOUT_MS,
            "filter": json.dumps(filter or {}, separators=(",", ":")),
        }
        params.update(self._auth())
        if next_batch:
            params["since"] = next_batch

        resp = await self._request(
            "GET",
            self._api("sync"),
            params=params,
            timeout=self.timeout + SYNC_TIMEOUT_MS / 1000,
        )
        data = self._safe_json(resp)
        try:
            sync = SyncResponse.model_validate(data)
        except ValidationError as e:
            # never hand back an empty batch token
            raise MatrixError(resp.status_code, f"malformed sync response: {e}", body=data) from e
        events = classify_sync(sync, self.state.current_user_id)
        logger.debug("sync %r -> %r: %d events", next_batch, sync.next_batch, len(events))
        return SyncResult(next_batch=sync.next_batch, events=events)

    # -------------------------------- rooms ------------------------------ #

    async def joined_rooms(self) -> List[str]:
        resp = await self._request("GET", self._api("joined_rooms"), params=self._auth())
        data = self._safe_json(resp)
        rooms = data.get("joined_rooms") if isinstance(data, dict) else None
        if not isinstance(rooms, list):
            raise MatrixError(resp.status_code, "joined_rooms response carried no room list", body=data)
        return [str(r) for r in rooms]

    async def create_connection(self, room_name: str, target_user_id: str) -> str:
        """
        Create a private room and invite ``target_user_id`` into it.

        Returns the new room id. If the invite fails the room is not
        removed; the error propagates and the orphan room id is logged.
        """
        resp = await self._request(
            "POST",
            self._api("createRoom"),
            params=self._auth(),
            json_body={"name": room_name, "visibility": "private"},
        )
        data = self._safe_json(resp)
        room_id = data.get("room_id") if isinstance(data, dict) else None
        if not room_id:
            raise MatrixError(resp.status_code, "createRoom response carried no room_id", body=data)

        try:
            await self._request(
                "POST",
                self._api(f"rooms/{_seg(room_id)}/invite"),
                params=self._auth(),
                json_body={"user_id": target_user_id},
            )
        except MatrixError:
            logger.warning(
                "invite of %s failed; room %s stays without invitee", target_user_id, room_id
            )
            raise
        logger.info("created room %s for %s", room_id, target_user_id)
        return room_id

    async def send_message(
        self,
        room_id: str,
        msg_type: str,
        body: str,
        token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send an ``m.room.message`` (e.g. ``m.text``, ``m.action``).

        ``token`` overrides the session's access token for this call. The
        transaction counter advances only when the server accepts the send.
        """
        async with self._txn_lock:
            txn_id = self.state.txn_id
            resp = await self._request(
                "PUT",
                self._api(f"rooms/{_seg(room_id)}/send/m.room.message/{txn_id}"),
                params=self._auth(token),
                json_body={"msgtype": msg_type, "body": body},
            )
            self.state.txn_id = txn_id + 1
        return self._safe_json(resp)

    async def accept_connection(self, room_id: str) -> Dict[str, Any]:
        resp = await self._request(
            "POST",
            self._api(f"rooms/{_seg(room_id)}/join"),
            params=self._auth(),
            json_body={},
        )
        return self._safe_json(resp)

    async def leave_room(self, room_id: str) -> Dict[str, Any]:
        """Leave, then forget, a room. Forget is not attempted if leave fails."""
        await self._request(
            "POST",
            self._api(f"rooms/{_seg(room_id)}/leave"),
            params=self._auth(),
            json_body={},
        )
        resp = await self._request(
            "POST",
            self._api(f"rooms/{_seg(room_id)}/forget"),
            params=self._auth(),
            json_body={},
        )
        logger.info("left and forgot %s", room_id)
        return self._safe_json(resp)

    # -------------------------------- media ------------------------------ #

    async def upload_file(
        self,
        content: Union[bytes, str],
        filename: str,
        mime_type: str = "application/text",
    ) -> Dict[str, Any]:
        """Upload raw content; the response carries its ``content_uri``."""
        params: Dict[str, Any] = {"filename": filename}
        params.update(self._auth())
        resp = await self._request(
            "POST",
            self._media("upload"),
            params=params,
            content=content,
            headers={"Content-Type": mime_type},
        )
        return self._safe_json(resp)

    async def download_file(
        self, media_id: str, filename: str, server_name: Optional[str] = None
    ) -> bytes:
        """Download media by id; ``server_name`` defaults to this home server."""
        origin = server_name or self.state.server_name
        resp = await self._request(
            "GET",
            self._media(f"download/{_seg(origin)}/{_seg(media_id)}/{_seg(filename)}"),
        )
        return resp.content

    async def download_mxc(self, uri: str, filename: str) -> bytes:
        """Download the media an ``mxc://server/media`` URI points to."""
        server_name, media_id = parse_mxc(uri)
        return await self.download_file(media_id, filename, server_name)

    # ------------------------------ identifiers -------------------------- #

    @staticmethod
    def extract_did(sender: str) -> DidParts:
        return extract_did(sender)

    # ------------------------------ internals ------------------------------ #

    def _api(self, path: str) -> str:
        return self.state.api_base_url + path

    def _media(self, path: str) -> str:
        return self.state.media_base_url + path

    def _auth(self, token: Optional[str] = None) -> Dict[str, str]:
        tok = token or self.state.access_token
        return {"access_token": tok} if tok else {}

    async def _request_once(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        content: Optional[Union[bytes, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """
        Single-request wrapper with consistent error handling.
        """
        hdrs = dict(self._headers)
        if headers:
            hdrs.update(headers)
        logger.debug("%s %s", method, url)

        try:
            async with httpx.AsyncClient(
                timeout=timeout or self.timeout,
                headers=hdrs,
                transport=self._transport,
            ) as client:
                resp = await client.request(
                    method, url, params=params, json=json_body, content=content
                )
        except httpx.RequestError as e:
            # surfacing transport errors (DNS, timeouts, TLS, etc.)
            logger.warning("%s %s transport error: %s", method, url, e)
            raise MatrixError(0, str(e)) from e

        if not resp.is_success:
            body: Any
            try:
                body = resp.json()
            except ValueError:
                # JSONDecodeError or UnicodeDecodeError
                body = resp.text

            errcode: Optional[str] = None
            detail: Optional[str] = None
            if isinstance(body, dict):
                # Matrix error shape: {"errcode": "M_...", "error": "..."}
                errcode = body.get("errcode")
                detail = body.get("error")
            if not detail:
                detail = f"{method} {urlsplit(url).path} failed ({resp.status_code})"

            logger.warning("%s %s -> %s %s", method, url, resp.status_code, errcode or "")
            raise MatrixError(resp.status_code, detail, errcode=errcode, body=body)

        return resp

    def _safe_json(self, resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError:
            return {"raw": resp.text, "status_code": resp.status_code}
