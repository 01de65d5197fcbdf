import pytest

from permproxy.config import Config, ConfigError, load_config, parse_upstream

ENV_VARS = [
    "STRIPE_KEY",
    "PROXY_SIGNING_KEY",
    "PROXY_UPSTREAM_URI",
    "PROXY_LISTEN_HOST",
    "PROXY_LISTEN_PORT",
    "PROXY_TLS_CERT",
    "PROXY_TLS_KEY",
    "PROXY_REQUIRE_FULL_ACCESS_TO_EXPAND",
    "PROXY_LOG_PATH",
    "PROXY_LOG_LEVEL",
]


@pytest.fixture
def env(monkeypatch, tmp_path):
    # keep a developer's .env out of the picture
    monkeypatch.chdir(tmp_path)
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("STRIPE_KEY", "sk_test_123")
    return monkeypatch


class TestLoadConfig:
    def test_defaults(self, env):
        cfg = load_config()
        assert cfg.stripe_key == "sk_test_123"
        assert cfg.signing_key == b"sk_test_123"
        assert cfg.upstream_uri == "https://api.stripe.com"
        assert cfg.listen_host == "0.0.0.0"
        assert cfg.listen_port == 9090
        assert cfg.require_full_access_to_expand is True
        assert cfg.use_tls is False

    def test_env(self, env):
        env.setenv("PROXY_SIGNING_KEY", "signing")
        env.setenv("PROXY_LISTEN_PORT", "8443")
        env.setenv("PROXY_REQUIRE_FULL_ACCESS_TO_EXPAND", "false")
        env.setenv("PROXY_UPSTREAM_URI", "http://localhost:12111")
        cfg = load_config()
        assert cfg.signing_key == b"signing"
        assert cfg.listen_port == 8443
        assert cfg.require_full_access_to_expand is False
        assert cfg.upstream.port == 12111

    def test_dotenv_file(self, env, tmp_path):
        # registered so monkeypatch undoes what load_dotenv writes
        env.setenv("PROXY_LISTEN_PORT", "1")
        (tmp_path / ".env").write_text("PROXY_LISTEN_PORT=7000\n")
        assert load_config().listen_port == 7000

    def test_overrides(self, env):
        cfg = load_config(listen_port=1234, upstream_uri=None)
        assert cfg.listen_port == 1234
        assert cfg.upstream_uri == "https://api.stripe.com"

    def test_missing_key_is_fatal(self, env):
        env.delenv("STRIPE_KEY")
        with pytest.raises(ConfigError):
            load_config()

    def test_bad_port(self, env):
        env.setenv("PROXY_LISTEN_PORT", "http")
        with pytest.raises(ConfigError):
            load_config()

    def test_cert_without_key(self, env):
        env.setenv("PROXY_TLS_CERT", "server.pem")
        with pytest.raises(ConfigError, match="Both the private key"):
            load_config()

    def test_bad_upstream(self, env):
        env.setenv("PROXY_UPSTREAM_URI", "api.stripe.com")
        with pytest.raises(ConfigError):
            load_config()

    def test_bad_log_level(self, env):
        env.setenv("PROXY_LOG_LEVEL", "chatty")
        with pytest.raises(ConfigError):
            load_config()


class TestUpstream:
    def test_https_default_port(self):
        up = parse_upstream("https://api.stripe.com")
        assert (up.scheme, up.host, up.port, up.base_path) == ("https", "api.stripe.com", 443, "")
        assert up.use_tls
        assert up.host_header == "api.stripe.com"
        assert up.join("/v1/charges?limit=1") == "/v1/charges?limit=1"

    def test_http_with_port_and_path(self):
        up = parse_upstream("http://localhost:8080/base/")
        assert not up.use_tls
        assert up.host_header == "localhost:8080"
        assert up.join("/v1/charges") == "/base/v1/charges"

    def test_missing_host(self):
        with pytest.raises(ConfigError, match="Unable to parse hostname"):
            parse_upstream("https://")

    def test_config_exposes_upstream(self):
        cfg = Config(stripe_key="k", upstream_uri="http://127.0.0.1:9")
        assert cfg.upstream.port == 9
