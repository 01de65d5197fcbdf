"""
permproxy.credentials
~~~~~~~~~~~~~~~~~~~~~
Signed permission credentials::

    b64(8-byte big-endian vector) + "_" + b64(HMAC-SHA256(key, vector))

Base64 is the standard alphabet without ``=`` padding, which never
contains the ``_`` separator.  The vector is readable by anyone holding
the credential; only the key holder can mint a different one.
"""

from __future__ import annotations

import base64
import hashlib
import hmac

from .permissions import PERMISSION_BYTES, Permission

SEPARATOR = "_"


class CredentialError(Exception):
    pass


class MalformedCredential(CredentialError):
    pass


class SignatureMismatch(CredentialError):
    pass


def _mac(key: bytes, message: bytes) -> bytes:
    return hmac.new(key, message, hashlib.sha256).digest()


def _encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii").rstrip("=")


def _decode(text: str) -> bytes:
    if len(text) % 4 == 1:
        raise MalformedCredential("Invalid signed permissions")
    try:
        raw = base64.b64decode(text + "=" * (-len(text) % 4), validate=True)
    except ValueError:
        raise MalformedCredential("Invalid signed permissions") from None
    # Reject alternate spellings of the same bytes (unused trailing bits).
    if _encode(raw) != text:
        raise MalformedCredential("Invalid signed permissions")
    return raw


def sign(permission: Permission, key: bytes) -> str:
    payload = permission.to_bytes()
    return SEPARATOR.join((_encode(payload), _encode(_mac(key, payload))))


def verify(credential: str, key: bytes) -> Permission:
    """Return the permission carried by *credential* or raise CredentialError."""
    parts = credential.split(SEPARATOR)
    if len(parts) != 2 or not all(parts):
        raise MalformedCredential("Invalid signed permissions")

    payload = _decode(parts[0])
    tag = _decode(parts[1])

    if not hmac.compare_digest(_mac(key, payload), tag):
        raise SignatureMismatch("MAC signature was not verified")

    if len(payload) != PERMISSION_BYTES:
        raise MalformedCredential("Invalid signed permissions")
    return Permission.from_bytes(payload)
