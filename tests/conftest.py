import pytest

from permproxy.config import Config


@pytest.fixture
def config(tmp_path):
    return Config(
        stripe_key="sk_live_realsecret",
        signing_key_text="pk_live_thisisateststripekey",
        upstream_uri="http://127.0.0.1:1",
        listen_host="127.0.0.1",
        listen_port=0,
        log_path=str(tmp_path / "proxy.log"),
    )
