"""
permproxy.logger
~~~~~~~~~~~~~~~~
Human-readable console lines *and* JSON logs with daily rotation.
Credentials and the upstream secret never reach either.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

_ISO = "%Y-%m-%dT%H:%M:%SZ"
LOGGER_NAME = "permproxy"


def _now() -> str:  # RFC-3339 without microseconds
    return datetime.now(tz=timezone.utc).strftime(_ISO)


class _PlainFormatter(logging.Formatter):
    """ e.g. 2025-06-19T15:07:02Z 127.0.0.1 GET /v1/customers DENY permission_error ... """

    def format(self, record):  # type: ignore[override]
        if not isinstance(record.msg, dict):
            return super().format(record)
        d: Dict[str, Any] = record.msg

        parts = [d.get("ts", _now()), d.get("event", "-").upper()]
        event = d.get("event")
        if event == "listening":
            parts.extend([d.get("bind", "-"), f'tls={d.get("tls")}', d.get("upstream", "-")])
        elif event == "error":
            parts.extend([d.get("ip", "-"), d.get("method", "-"), d.get("url", "-"),
                          d.get("error", "")])
        else:
            parts.extend([d.get("ip", "-"), d.get("method", "-"), d.get("url", "-")])
            if event == "deny":
                parts.extend([d.get("type", "-"), d.get("message", "")])
            elif event == "allow":
                parts.extend([d.get("resource", "-"), d.get("access", "-")])
            else:  # end
                parts.extend(
                    [
                        str(d.get("status", "-")),
                        f'{d.get("bytes", 0):,}B',
                        f'{d.get("ms", 0)} ms',
                    ]
                )
        return " ".join(str(p) for p in parts)


class _JSONFormatter(logging.Formatter):
    def format(self, record):  # type: ignore[override]
        if isinstance(record.msg, dict):
            return json.dumps(record.msg, separators=(",", ":"))
        return json.dumps({"ts": _now(), "event": "log", "message": record.getMessage()})


class ProxyLogger:
    def __init__(self, basename: str | Path, level: str | int = logging.INFO,
                 console: bool = True):
        root = logging.getLogger(LOGGER_NAME)
        root.setLevel(level if isinstance(level, int) else level.upper())
        root.propagate = False  # don't spam the root logger

        for old in list(root.handlers):
            root.removeHandler(old)
            old.close()

        basename = Path(basename).with_suffix("")  # proxy
        jsonl_file = basename.with_suffix(".jsonl")

        # json lines
        h = logging.handlers.TimedRotatingFileHandler(
            jsonl_file, when="midnight", backupCount=7, encoding="utf-8"
        )
        h.setFormatter(_JSONFormatter())
        root.addHandler(h)

        if console:
            c = logging.StreamHandler(sys.stderr)
            c.setFormatter(_PlainFormatter())
            root.addHandler(c)

        self.log = root

    def listening(self, bind: str, tls: bool, upstream: str):
        self.log.info(
            {"event": "listening", "ts": _now(), "bind": bind, "tls": tls, "upstream": upstream}
        )

    def allow(self, ip: str, method: str, url: str, resource: str, access: str):
        self.log.info(
            {
                "event": "allow",
                "ts": _now(),
                "ip": ip,
                "method": method,
                "url": url,
                "resource": resource,
                "access": access,
            }
        )

    def deny(self, ip: str, method: str, url: str, error_type: str, message: str):
        self.log.warning(
            {
                "event": "deny",
                "ts": _now(),
                "ip": ip,
                "method": method,
                "url": url,
                "type": error_type,
                "message": message,
            }
        )

    def end(
        self,
        ip: str,
        method: str,
        url: str,
        status: int,
        total_bytes: int,
        duration_ms: int,
    ):
        self.log.info(
            {
                "event": "end",
                "ts": _now(),
                "ip": ip,
                "method": method,
                "url": url,
                "status": status,
                "bytes": total_bytes,
                "ms": duration_ms,
            }
        )

    def error(self, ip: str, method: str, url: str, error: str):
        self.log.error(
            {
                "event": "error",
                "ts": _now(),
                "ip": ip,
                "method": method,
                "url": url,
                "error": error,
            }
        )
