"""
permproxy.auth
~~~~~~~~~~~~~~
Pulls the signed credential out of the request headers.  Clients send it
either as ``Authorization: Bearer <credential>`` or as the username of
HTTP Basic auth (which is what the upstream API's own SDKs do with a
secret key).
"""

from __future__ import annotations

import base64
from typing import Mapping


class AuthError(Exception):
    pass


def _header(headers: Mapping[str, str], name: str) -> str | None:
    for k, v in headers.items():
        if k.lower() == name:
            return v
    return None


def _decode_basic(header_val: str) -> tuple[str, str]:
    if not header_val.lower().startswith("basic "):
        raise AuthError("Request requires valid Basic or Bearer auth header")
    try:
        decoded = base64.b64decode(header_val.split(None, 1)[1], validate=True).decode()
    except (IndexError, ValueError) as e:
        raise AuthError("Request requires valid Basic or Bearer auth header") from e
    username, sep, password = decoded.partition(":")
    if not sep:
        raise AuthError("Request requires valid Basic or Bearer auth header")
    return username, password


def extract_credential(headers: Mapping[str, str]) -> str:
    auth_hdr = (_header(headers, "authorization") or "").strip()
    if not auth_hdr:
        raise AuthError("missing authorization")

    scheme, _, token = auth_hdr.partition(" ")
    if scheme.lower() == "bearer":
        token = token.strip()
        if not token:
            raise AuthError("missing authorization")
        return token

    username, _ = _decode_basic(auth_hdr)
    if not username:
        raise AuthError("missing authorization")
    return username


def basic_authorization(username: str, password: str = "") -> str:
    raw = f"{username}:{password}".encode()
    return "Basic " + base64.b64encode(raw).decode("ascii")
