"""
MoniBot Tempo Worker - main entry point

Processes campaign grants and P2P commands on Tempo Testnet (AlphaUSD,
6 decimals). Wires every module, starts the poll loop inside the FastAPI
lifespan and serves /health.

Usage:
    python main.py              # Start the worker
"""

import asyncio
import logging
import os
import re
import sys
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv

# ============================================================
# BOOTSTRAP
# ============================================================

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


class _SecretMaskingFilter(logging.Filter):
    """Redact 64-char hex strings (private keys) from all log output."""
    _PATTERN = re.compile(r'(?<![0-9a-fA-F])([0-9a-fA-F]{64})(?![0-9a-fA-F])')

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if isinstance(record.msg, str):
            record.msg = self._PATTERN.sub('[REDACTED]', record.msg)
        if record.args:
            try:
                formatted = record.getMessage()
            except (TypeError, ValueError):
                return True
            if self._PATTERN.search(formatted):
                record.msg = self._PATTERN.sub('[REDACTED]', formatted)
                record.args = None
        return True


_mask_filter = _SecretMaskingFilter()
for _h in logging.root.handlers:
    _h.addFilter(_mask_filter)

logger = logging.getLogger("monibot.main")


# ============================================================
# MODULE IMPORTS
# ============================================================

from api.server import create_app
from core.chain import TransferExecutor
from core.config import ConfigError, WorkerConfig
from core.constitution import TEMPO_CHAIN, TEMPO_RULES
from core.datastore import Datastore
from core.identity import IdentityResolver
from core.ledger import LedgerRecorder
from core.scheduler import CycleScheduler
from services.campaigns import CampaignReplyPoller
from services.p2p import P2PCommandPoller
from social.reader import SocialReader


def _build_reader(config: WorkerConfig):
    if not config.twitter_bearer_token:
        logger.warning("Twitter credentials not set - running without Twitter")
        return None
    try:
        return SocialReader.from_bearer_token(
            config.twitter_bearer_token, timeout_seconds=config.request_timeout_seconds,
        )
    except Exception as e:
        logger.error(f"Twitter init failed: {e}")
        return None


def build_worker(config: WorkerConfig):
    """Wire all modules. Returns (datastore, executor, ledger, scheduler). Raises ConfigError on unusable chain config."""
    datastore = Datastore(config.database_url, command_timeout=config.request_timeout_seconds)

    executor = TransferExecutor(p2p_router_enabled=config.p2p_router_enabled)
    if not executor.initialize(config.executor_private_key, config.sponsor_private_key, config.rpc_url):
        raise ConfigError("Tempo chain executor could not be initialized")

    reader = _build_reader(config)
    resolver = IdentityResolver(datastore)
    ledger = LedgerRecorder(datastore, worker_id=config.worker_id)

    pollers = [
        CampaignReplyPoller(reader, datastore, resolver, ledger, executor,
                            reserved_handles=config.reserved_handles),
        P2PCommandPoller(reader, resolver, ledger, executor,
                         bot_handle=config.bot_handle,
                         bot_profile_id=config.bot_profile_id,
                         reserved_handles=config.reserved_handles),
    ]
    scheduler = CycleScheduler(
        pollers,
        cursor_store=datastore,
        worker_id=config.worker_id,
        poll_interval_seconds=config.poll_interval_ms / 1000,
        max_uptime_seconds=config.auto_restart_minutes * 60,
    )
    return datastore, executor, ledger, scheduler


def _log_configuration(config: WorkerConfig) -> None:
    logger.info("Configuration:")
    logger.info(f"   Chain:            {TEMPO_CHAIN['display_name']} ({TEMPO_CHAIN['chain_id']})")
    logger.info(f"   Token:            {TEMPO_RULES.TOKEN_SYMBOL} ({TEMPO_RULES.TOKEN_DECIMALS} decimals)")
    logger.info(f"   Fee:              {TEMPO_RULES.FEE_BPS} bps")
    logger.info(f"   Worker:           {config.worker_id}")
    logger.info(f"   Poll Interval:    {config.poll_interval_ms}ms")
    logger.info(f"   Auto-Restart:     {config.auto_restart_minutes} minutes")


def create_worker_app(config: WorkerConfig):
    datastore, executor, ledger, scheduler = build_worker(config)

    @asynccontextmanager
    async def lifespan(app):
        """Startup and shutdown."""
        logger.info("=" * 60)
        logger.info("MoniBot Tempo Worker v1.0 - Fee Sponsorship + AlphaUSD (Testnet)")
        logger.info("=" * 60)
        await datastore.connect()
        _log_configuration(config)

        loop_task = asyncio.create_task(scheduler.run_forever())
        logger.info("Tempo Worker is now live!")
        try:
            yield
        finally:
            logger.info("Shutting down...")
            scheduler.stop()
            loop_task.cancel()
            try:
                await loop_task
            except asyncio.CancelledError:
                pass
            await datastore.close()
            logger.info(f"Completed {scheduler.cycle_count} poll cycles, {scheduler.processed_count} transactions.")

    def status() -> dict:
        return {**scheduler.get_status(), "executor": executor.get_status(), "ledger": ledger.get_status()}

    return create_app(status, lifespan=lifespan)


def main() -> None:
    try:
        config = WorkerConfig.from_env()
        app = create_worker_app(config)
    except ConfigError as e:
        logger.critical(f"Startup failed: {e}")
        sys.exit(1)

    uvicorn.run(app, host="0.0.0.0", port=config.port, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
