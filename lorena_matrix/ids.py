# SPDX-License-Identifier: MIT
# lorena_matrix/ids.py
"""
Helpers for Matrix identifiers and content URIs.

    @user:server   user id
    !room:server   room id
    mxc://server/media
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

__all__ = ["DidParts", "extract_did", "parse_mxc"]

MXC_SCHEME = "mxc://"


@dataclass(frozen=True)
class DidParts:
    """Local part and federation domain of a sigil-prefixed identifier."""
    local_user: str
    federation_domain: Optional[str]


def extract_did(sender: str) -> DidParts:
    """
    Split ``<sigil><localUser>:<federationDomain>`` into its parts.

    The first character is dropped whatever it is. Only the first colon
    separates, so a domain carrying a port survives intact. Input without a
    colon yields ``federation_domain=None``.
    """
    local, sep, domain = sender[1:].partition(":")
    return DidParts(local_user=local, federation_domain=domain if sep else None)


def parse_mxc(uri: str) -> Tuple[str, str]:
    """Return ``(server_name, media_id)`` for an ``mxc://`` content URI."""
    if not uri or not uri.startswith(MXC_SCHEME):
        raise ValueError(f"not an mxc:// URI: {uri!r}")
    server_name, _, media_id = uri[len(MXC_SCHEME):].partition("/")
    if not server_name or not media_id:
        raise ValueError(f"malformed mxc:// URI: {uri!r}")
    return server_name, media_id
