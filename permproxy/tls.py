"""
permproxy.tls
~~~~~~~~~~~~~
SSL contexts for both sides of the proxy: the optional listening
certificate, and verification of the upstream API's certificate.
"""

from __future__ import annotations

import ssl
from pathlib import Path

from .config import ConfigError


def server_context(cert_path: str | Path, key_path: str | Path) -> ssl.SSLContext:
    ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    try:
        ctx.load_cert_chain(str(cert_path), str(key_path))
    except (OSError, ssl.SSLError) as e:
        raise ConfigError(f"Unable to load TLS certificate/key: {e}") from e
    return ctx


def upstream_context() -> ssl.SSLContext:
    return ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
