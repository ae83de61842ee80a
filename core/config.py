"""
Worker configuration, read from the environment (.env loaded by main.py).

Required: DATABASE_URL, TEMPO_EXECUTOR_PRIVATE_KEY. Everything else has a
default; Twitter credentials are optional (pollers idle without them).
"""

import os
import socket
from dataclasses import dataclass
from typing import Optional

from core.constitution import TEMPO_CHAIN, TEMPO_RULES, ZERO_PROFILE_ID


class ConfigError(Exception):
    """Missing or malformed required setting. Fatal at startup."""
    pass


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("true", "1", "yes")


@dataclass
class WorkerConfig:
    database_url: str
    executor_private_key: str
    sponsor_private_key: str
    rpc_url: str = TEMPO_CHAIN["rpc"]
    twitter_bearer_token: Optional[str] = None
    bot_handle: str = "monibot"
    bot_profile_id: str = ZERO_PROFILE_ID
    worker_id: str = "tempo-worker"
    poll_interval_ms: int = TEMPO_RULES.DEFAULT_POLL_INTERVAL_MS
    auto_restart_minutes: int = TEMPO_RULES.DEFAULT_AUTO_RESTART_MINUTES
    port: int = 3002
    p2p_router_enabled: bool = False
    request_timeout_seconds: int = 20

    @property
    def reserved_handles(self) -> tuple[str, ...]:
        handles = list(TEMPO_RULES.RESERVED_HANDLES)
        if self.bot_handle.lower() not in handles:
            handles.append(self.bot_handle.lower())
        return tuple(handles)

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ConfigError("DATABASE_URL not set")

        executor_key = os.getenv("TEMPO_EXECUTOR_PRIVATE_KEY", "").strip()
        if not executor_key:
            raise ConfigError("TEMPO_EXECUTOR_PRIVATE_KEY not set")

        poll_interval_ms = _env_int("POLL_INTERVAL_MS", TEMPO_RULES.DEFAULT_POLL_INTERVAL_MS)
        if poll_interval_ms <= 0:
            raise ConfigError("POLL_INTERVAL_MS must be positive")

        return cls(
            database_url=database_url,
            executor_private_key=executor_key,
            sponsor_private_key=os.getenv("TEMPO_SPONSOR_PRIVATE_KEY", "").strip() or executor_key,
            rpc_url=os.getenv("TEMPO_RPC_URL", TEMPO_CHAIN["rpc"]),
            twitter_bearer_token=os.getenv("TWITTER_BEARER_TOKEN") or None,
            bot_handle=os.getenv("BOT_HANDLE", "monibot").lstrip("@").lower(),
            bot_profile_id=os.getenv("MONIBOT_PROFILE_ID") or ZERO_PROFILE_ID,
            worker_id=os.getenv("WORKER_ID") or f"tempo-{socket.gethostname()}",
            poll_interval_ms=poll_interval_ms,
            auto_restart_minutes=_env_int("AUTO_RESTART_MINUTES", TEMPO_RULES.DEFAULT_AUTO_RESTART_MINUTES),
            port=_env_int("PORT", 3002),
            p2p_router_enabled=_env_bool("P2P_ROUTER_ENABLED"),
            request_timeout_seconds=_env_int("REQUEST_TIMEOUT_SECONDS", 20),
        )
