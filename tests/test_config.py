import pytest

from core.config import ConfigError, WorkerConfig
from core.constitution import TEMPO_CHAIN

_ENV = (
    "DATABASE_URL", "TEMPO_EXECUTOR_PRIVATE_KEY", "TEMPO_SPONSOR_PRIVATE_KEY", "TEMPO_RPC_URL",
    "TWITTER_BEARER_TOKEN", "BOT_HANDLE", "MONIBOT_PROFILE_ID", "WORKER_ID", "POLL_INTERVAL_MS",
    "AUTO_RESTART_MINUTES", "PORT", "P2P_ROUTER_ENABLED", "REQUEST_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


def test_missing_database_url_is_fatal(monkeypatch):
    monkeypatch.setenv("TEMPO_EXECUTOR_PRIVATE_KEY", "0xkey")
    with pytest.raises(ConfigError, match="DATABASE_URL"):
        WorkerConfig.from_env()


def test_missing_executor_key_is_fatal(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/monipay")
    with pytest.raises(ConfigError, match="TEMPO_EXECUTOR_PRIVATE_KEY"):
        WorkerConfig.from_env()


def test_defaults(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/monipay")
    monkeypatch.setenv("TEMPO_EXECUTOR_PRIVATE_KEY", "0xkey")

    config = WorkerConfig.from_env()

    assert config.sponsor_private_key == "0xkey"
    assert config.rpc_url == TEMPO_CHAIN["rpc"]
    assert config.twitter_bearer_token is None
    assert config.poll_interval_ms == 30_000
    assert config.auto_restart_minutes == 90
    assert config.p2p_router_enabled is False
    assert config.worker_id.startswith("tempo-")


def test_overrides(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/monipay")
    monkeypatch.setenv("TEMPO_EXECUTOR_PRIVATE_KEY", "0xkey")
    monkeypatch.setenv("BOT_HANDLE", "@TempoBot")
    monkeypatch.setenv("POLL_INTERVAL_MS", "5000")
    monkeypatch.setenv("P2P_ROUTER_ENABLED", "true")

    config = WorkerConfig.from_env()

    assert config.bot_handle == "tempobot"
    assert config.reserved_handles == ("monibot", "monipay", "tempobot")
    assert config.poll_interval_ms == 5000
    assert config.p2p_router_enabled is True


@pytest.mark.parametrize("value", ["abc", "0", "-5"])
def test_bad_poll_interval(monkeypatch, value):
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/monipay")
    monkeypatch.setenv("TEMPO_EXECUTOR_PRIVATE_KEY", "0xkey")
    monkeypatch.setenv("POLL_INTERVAL_MS", value)
    with pytest.raises(ConfigError):
        WorkerConfig.from_env()
