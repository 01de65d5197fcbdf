"""
permproxy.core
~~~~~~~~~~~~~~
Non-blocking reverse proxy in front of the payment API.  Each request is
judged by :class:`~permproxy.acls.PermissionChecker`; allowed requests get
the caller's credential swapped for the real upstream secret and are
relayed, denied ones are answered locally with a 403.
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from http import HTTPStatus
from typing import Any, Dict, Optional, Tuple

from .acls import PermissionChecker
from .config import Config
from .logger import ProxyLogger
from .tls import server_context, upstream_context

CRLF = b"\r\n"
BUFFER = 65_536
MAX_HEAD = 65_536

_BAD_HEAD_BYTES = re.compile(rb"[\r\n\x00]")
_TOKEN = re.compile(r"[!#$%&'*+.^_`|~0-9A-Za-z-]+")


def run_proxy(config: Config) -> None:
    proxy = ProxyServer(config)
    try:
        asyncio.run(proxy.serve_forever())
    except KeyboardInterrupt:
        print("\n▸ Proxy shut down.")


class ProxyError(Exception):
    def __init__(self, status: int, msg: str):
        self.status = status
        self.msg = msg
        super().__init__(f"{status} {msg}")

    def body(self) -> Dict[str, Any]:
        err_type = "api_error" if self.status >= 500 else "invalid_request_error"
        return {"error": {"type": err_type, "message": self.msg, "status": self.status}}


class ProxyServer:
    def __init__(
        self,
        cfg: Config,
        checker: Optional[PermissionChecker] = None,
        logger: Optional[ProxyLogger] = None,
    ) -> None:
        self.cfg = cfg
        self.upstream = cfg.upstream
        self.checker = checker or PermissionChecker(
            cfg.signing_key,
            cfg.stripe_key,
            require_full_access_to_expand=cfg.require_full_access_to_expand,
        )
        self.logger = logger or ProxyLogger(cfg.log_path, cfg.log_level)
        self._upstream_ssl = upstream_context() if self.upstream.use_tls else None

    async def start(self) -> asyncio.AbstractServer:
        ssl_ctx = (
            server_context(self.cfg.tls_cert, self.cfg.tls_key) if self.cfg.use_tls else None
        )
        server = await asyncio.start_server(
            self._handle_client,
            host=self.cfg.listen_host,
            port=self.cfg.listen_port,
            ssl=ssl_ctx,
        )
        bind_str = ", ".join(str(s.getsockname()) for s in server.sockets)
        self.logger.listening(bind_str, self.cfg.use_tls, self.cfg.upstream_uri)
        return server

    async def serve_forever(self) -> None:
        server = await self.start()
        async with server:
            await server.serve_forever()

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        start_ts = time.time()
        peer = writer.get_extra_info("peername")
        peer_ip = peer[0] if peer else "-"
        method = target = "-"

        try:
            req_line, headers = await _read_request_head(reader)
            method, target, _ = _parse_request_line(req_line)

            verdict = self.checker.check(method, target, headers)
            if not verdict.allowed:
                self.logger.deny(peer_ip, method, target, verdict.error_type, verdict.message)
                await _send_json_response(writer, verdict.status, verdict.error_body())
                return

            self.logger.allow(
                peer_ip, method, target, verdict.resource.name, verdict.access.name
            )
            status, total = await self._forward(
                reader, writer, method, target, headers, verdict.upstream_authorization
            )
            self.logger.end(
                peer_ip, method, target, status, total, _elapsed_ms(start_ts)
            )

        except ProxyError as e:
            try:
                await _send_json_response(writer, e.status, e.body())
            except ConnectionError:
                pass
            self.logger.end(peer_ip, method, target, e.status, 0, _elapsed_ms(start_ts))
        except Exception as e:  # noqa: BLE001
            self.logger.error(peer_ip, method, target, repr(e))
            try:
                await _send_json_response(
                    writer, 500, ProxyError(500, "Internal Server Error").body()
                )
            except ConnectionError:
                pass
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

    async def _forward(
        self,
        client_reader: asyncio.StreamReader,
        client_writer: asyncio.StreamWriter,
        method: str,
        target: str,
        headers: Dict[str, str],
        authorization: str,
    ) -> Tuple[int, int]:
        body_len = _content_length(headers)
        if headers.get("expect", "").lower() == "100-continue" and body_len:
            client_writer.write(b"HTTP/1.1 100 Continue" + CRLF + CRLF)
            await client_writer.drain()

        up = self.upstream
        tls_kwargs: Dict[str, Any] = {}
        if self._upstream_ssl is not None:
            tls_kwargs = {"ssl": self._upstream_ssl, "server_hostname": up.host}
        try:
            remote_reader, remote_writer = await asyncio.open_connection(
                up.host, up.port, **tls_kwargs
            )
        except OSError as e:
            raise ProxyError(502, f"Upstream connect failed: {e}") from e

        try:
            remote_writer.write(
                _rebuild_request_head(
                    method, up.join(target), headers, up.host_header, authorization
                )
            )
            await _copy_exact(client_reader, remote_writer, body_len)
            await remote_writer.drain()
            return await _relay_response(remote_reader, client_writer)
        finally:
            remote_writer.close()
            try:
                await remote_writer.wait_closed()
            except OSError:
                pass


def _elapsed_ms(start_ts: float) -> int:
    return int((time.time() - start_ts) * 1000)


async def _read_request_head(reader: asyncio.StreamReader) -> Tuple[bytes, Dict[str, str]]:
    size = 0
    lines = []
    while True:
        line = await reader.readline()
        if not line:
            raise ProxyError(400, "Bad Request: EOF before headers complete")
        size += len(line)
        if size > MAX_HEAD:
            raise ProxyError(400, "Bad Request: request head too large")
        if line == CRLF:
            break
        # every line is re-emitted upstream, so it must be exactly one CRLF line
        body = line[:-2]
        if not line.endswith(CRLF) or _BAD_HEAD_BYTES.search(body):
            raise ProxyError(400, "Bad Request: invalid line terminator or control byte")
        lines.append(body)

    if not lines:
        raise ProxyError(400, "Bad Request: empty head")

    req_line = lines[0]
    hdrs = {}
    for raw in lines[1:]:
        k, sep, v = raw.partition(b":")
        name = k.decode("latin-1")
        if not sep or not _TOKEN.fullmatch(name):
            raise ProxyError(400, "Bad Request: malformed header line")
        hdrs[name.lower()] = v.decode("latin-1").strip(" \t")
    return req_line, hdrs


def _parse_request_line(line: bytes) -> Tuple[str, str, str]:
    parts = line.decode("latin-1").strip().split()
    if len(parts) != 3:
        raise ProxyError(400, "Bad Request: malformed request-line")
    method, target, version = parts
    if not target.startswith("/"):
        raise ProxyError(400, "Bad Request: only origin-form request targets are accepted")
    return method.upper(), target, version


def _content_length(headers: Dict[str, str]) -> int:
    if "chunked" in headers.get("transfer-encoding", "").lower():
        raise ProxyError(411, "Length Required: chunked request bodies are not supported")
    raw = headers.get("content-length")
    if raw is None:
        return 0
    try:
        length = int(raw)
    except ValueError:
        raise ProxyError(400, "Bad Request: invalid Content-Length") from None
    if length < 0:
        raise ProxyError(400, "Bad Request: invalid Content-Length")
    return length


_HOP_BY_HOP = {
    "proxy-authorization",
    "proxy-connection",
    "connection",
    "keep-alive",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    "expect",
}

# replaced on the way out; the caller's credential must never reach upstream
_REWRITTEN = {"host", "authorization"}


def _rebuild_request_head(
    method: str,
    target: str,
    headers: Dict[str, str],
    host: str,
    authorization: str,
) -> bytes:
    head = bytearray(f"{method} {target} HTTP/1.1".encode("latin-1") + CRLF)
    for k, v in headers.items():
        if k in _HOP_BY_HOP or k in _REWRITTEN:
            continue
        head.extend(f"{k}: {v}".encode("latin-1") + CRLF)
    head.extend(f"host: {host}".encode("latin-1") + CRLF)
    head.extend(f"authorization: {authorization}".encode("latin-1") + CRLF)
    head.extend(b"connection: close" + CRLF)
    head.extend(CRLF)
    return bytes(head)


async def _copy_exact(src: asyncio.StreamReader, dst: asyncio.StreamWriter, n: int) -> None:
    remaining = n
    while remaining:
        chunk = await src.read(min(BUFFER, remaining))
        if not chunk:
            raise ProxyError(400, "Bad Request: body shorter than Content-Length")
        dst.write(chunk)
        await dst.drain()
        remaining -= len(chunk)


async def _relay_response(
    src: asyncio.StreamReader, dst: asyncio.StreamWriter
) -> Tuple[int, int]:
    status_line = await src.readline()
    if not status_line:
        raise ProxyError(502, "Upstream closed the connection without a response")
    try:
        status = int(status_line.split()[1])
    except (IndexError, ValueError):
        raise ProxyError(502, "Upstream sent a malformed status line") from None

    dst.write(status_line)
    total = len(status_line)
    while True:
        chunk = await src.read(BUFFER)
        if not chunk:
            break
        dst.write(chunk)
        await dst.drain()
        total += len(chunk)
    await dst.drain()
    return status, total


async def _send_json_response(
    writer: asyncio.StreamWriter, status: int, body: Dict[str, Any]
) -> None:
    payload = json.dumps(body).encode()
    try:
        reason = HTTPStatus(status).phrase
    except ValueError:
        reason = "Error"
    head = (
        f"HTTP/1.1 {status} {reason}\r\n"
        "Content-Type: application/json\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "Connection: close\r\n\r\n"
    )
    writer.write(head.encode() + payload)
    await writer.drain()
