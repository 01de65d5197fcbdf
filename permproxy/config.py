from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from urllib.parse import urlsplit

from dotenv import find_dotenv, load_dotenv


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class Upstream:
    scheme: str
    host: str
    port: int
    base_path: str

    @property
    def use_tls(self) -> bool:
        return self.scheme == "https"

    @property
    def host_header(self) -> str:
        default = 443 if self.use_tls else 80
        return self.host if self.port == default else f"{self.host}:{self.port}"

    def join(self, target: str) -> str:
        if not target.startswith("/"):
            target = "/" + target
        return self.base_path.rstrip("/") + target


def parse_upstream(uri: str) -> Upstream:
    parts = urlsplit(uri)
    if parts.scheme not in ("http", "https"):
        raise ConfigError(f"Unsupported upstream scheme in uri: {uri}")
    if not parts.hostname:
        raise ConfigError(f"Unable to parse hostname from uri: {uri}")
    try:
        port = parts.port
    except ValueError as e:
        raise ConfigError(f"Invalid port in uri: {uri}") from e
    return Upstream(
        scheme=parts.scheme,
        host=parts.hostname,
        port=port or (443 if parts.scheme == "https" else 80),
        base_path=parts.path,
    )


@dataclass(frozen=True)
class Config:
    stripe_key: str
    signing_key_text: str = ""
    upstream_uri: str = "https://api.stripe.com"
    listen_host: str = "0.0.0.0"
    listen_port: int = 9090
    tls_cert: str = ""
    tls_key: str = ""
    require_full_access_to_expand: bool = True
    log_path: str = "proxy.log"
    log_level: str = "INFO"

    @property
    def signing_key(self) -> bytes:
        return (self.signing_key_text or self.stripe_key).encode()

    @property
    def use_tls(self) -> bool:
        return bool(self.tls_cert)

    @property
    def upstream(self) -> Upstream:
        return parse_upstream(self.upstream_uri)

    def validate(self) -> "Config":
        if not self.stripe_key:
            raise ConfigError("STRIPE_KEY must be set")
        if bool(self.tls_cert) != bool(self.tls_key):
            raise ConfigError(
                "Both the private key and certificate chain files must be "
                "specified to enable HTTPS"
            )
        if not 0 <= self.listen_port <= 65535:
            raise ConfigError(f"Invalid listen port {self.listen_port}")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigError(f"Unknown log level {self.log_level}")
        parse_upstream(self.upstream_uri)
        return self


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def load_config(**overrides) -> Config:
    load_dotenv(find_dotenv(usecwd=True), override=True)
    try:
        port = int(os.getenv("PROXY_LISTEN_PORT", 9090))
    except ValueError as e:
        raise ConfigError("PROXY_LISTEN_PORT must be an integer") from e

    cfg = Config(
        stripe_key=os.getenv("STRIPE_KEY", ""),
        signing_key_text=os.getenv("PROXY_SIGNING_KEY", ""),
        upstream_uri=os.getenv("PROXY_UPSTREAM_URI", "https://api.stripe.com"),
        listen_host=os.getenv("PROXY_LISTEN_HOST", "0.0.0.0"),
        listen_port=port,
        tls_cert=os.getenv("PROXY_TLS_CERT", ""),
        tls_key=os.getenv("PROXY_TLS_KEY", ""),
        require_full_access_to_expand=_env_bool(
            "PROXY_REQUIRE_FULL_ACCESS_TO_EXPAND", "true"
        ),
        log_path=os.getenv("PROXY_LOG_PATH", "proxy.log"),
        log_level=os.getenv("PROXY_LOG_LEVEL", "INFO"),
    )
    overrides = {k: v for k, v in overrides.items() if v is not None}
    return dataclasses.replace(cfg, **overrides).validate()
