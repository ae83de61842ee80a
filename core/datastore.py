"""
Datastore - PostgreSQL access for profiles, campaigns and the ledger

All SQL lives here. The rest of the worker talks to this class only, so
tests can swap in an in-memory double with the same methods.

Idempotency is enforced here, not in application code:
- monibot_transactions has UNIQUE (tweet_id, leg)
- event_claims has PRIMARY KEY (tweet_id)
Both inserts use ON CONFLICT DO NOTHING and report whether a row landed.
"""

import logging
from decimal import Decimal
from typing import Optional

import asyncpg

from core.constitution import TEMPO_CHAIN
from core.models import Campaign, Profile, TransactionRecord

logger = logging.getLogger("monibot.datastore")


_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS profiles(
      id UUID PRIMARY KEY,
      x_username TEXT,
      pay_tag TEXT,
      wallet_address TEXT,
      tempo_address TEXT
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS campaigns(
      id UUID PRIMARY KEY,
      tweet_id TEXT,
      network TEXT NOT NULL DEFAULT 'tempo',
      status TEXT NOT NULL DEFAULT 'active',
      grant_amount NUMERIC(20, 6) NOT NULL,
      max_participants INT,
      current_participants INT NOT NULL DEFAULT 0,
      budget_spent NUMERIC(20, 6) NOT NULL DEFAULT 0
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS monibot_transactions(
      id BIGSERIAL PRIMARY KEY,
      tweet_id TEXT NOT NULL,
      leg TEXT NOT NULL DEFAULT '',
      chain TEXT NOT NULL,
      tx_hash TEXT NOT NULL,
      sender_id TEXT NOT NULL,
      receiver_id TEXT NOT NULL,
      amount NUMERIC(20, 6) NOT NULL,
      fee NUMERIC(20, 6) NOT NULL DEFAULT 0,
      type TEXT NOT NULL,
      status TEXT NOT NULL,
      error_reason TEXT,
      campaign_id TEXT,
      payer_pay_tag TEXT,
      recipient_pay_tag TEXT,
      replied BOOLEAN NOT NULL DEFAULT FALSE,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_monibot_tx_tweet_leg ON monibot_transactions(tweet_id, leg);",
    """
    CREATE TABLE IF NOT EXISTS event_claims(
      tweet_id TEXT PRIMARY KEY,
      worker_id TEXT NOT NULL,
      claimed_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS poll_cursors(
      stream TEXT PRIMARY KEY,
      since_id TEXT NOT NULL,
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
]

_PROFILE_COLUMNS = "id::text AS id, x_username, pay_tag, wallet_address, tempo_address"


def _profile_from_row(row) -> Profile:
    return Profile(
        profile_id=row["id"],
        pay_tag=row["pay_tag"],
        social_handle=row["x_username"],
        wallet_address=row["wallet_address"],
        tempo_address=row["tempo_address"],
    )


def _campaign_from_row(row) -> Campaign:
    return Campaign(
        campaign_id=row["id"],
        source_event_id=row["tweet_id"],
        grant_amount=Decimal(row["grant_amount"]),
        max_participants=row["max_participants"],
        current_participants=row["current_participants"] or 0,
        budget_spent=Decimal(row["budget_spent"] or 0),
        status=row["status"],
        network=row["network"],
    )


class Datastore:
    """asyncpg-backed store. Call connect() before use and close() at shutdown."""

    def __init__(self, dsn: str, command_timeout: float = 20.0):
        self._dsn = dsn
        self._command_timeout = command_timeout
        self.pool: Optional[asyncpg.Pool] = None
        self.stats = {"queries_executed": 0, "queries_failed": 0}

    async def connect(self) -> None:
        self.pool = await asyncpg.create_pool(
            dsn=self._dsn,
            min_size=1,
            max_size=5,
            command_timeout=self._command_timeout,
        )
        await self.ensure_schema()
        logger.info("Datastore connected, schema ensured")

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            for stmt in _SCHEMA:
                await conn.execute(stmt)

    # ----------------------------------------------------------
    # LOW-LEVEL HELPERS
    # ----------------------------------------------------------

    async def _fetch(self, query: str, *args):
        try:
            rows = await self.pool.fetch(query, *args)
            self.stats["queries_executed"] += 1
            return rows
        except Exception:
            self.stats["queries_failed"] += 1
            raise

    async def _execute(self, query: str, *args) -> str:
        try:
            status = await self.pool.execute(query, *args)
            self.stats["queries_executed"] += 1
            return status
        except Exception:
            self.stats["queries_failed"] += 1
            raise

    # ----------------------------------------------------------
    # PROFILES
    # ----------------------------------------------------------

    async def find_profiles(self, handle_or_tag: str) -> list[Profile]:
        """Profiles whose pay_tag OR x_username equals the value (case-insensitive)."""
        rows = await self._fetch(
            f"""
            SELECT {_PROFILE_COLUMNS} FROM profiles
             WHERE lower(pay_tag) = lower($1) OR lower(x_username) = lower($1)
             LIMIT 2
            """,
            handle_or_tag,
        )
        return [_profile_from_row(r) for r in rows]

    async def find_profiles_by_handle(self, handle: str) -> list[Profile]:
        rows = await self._fetch(
            f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE lower(x_username) = lower($1) LIMIT 2",
            handle,
        )
        return [_profile_from_row(r) for r in rows]

    # ----------------------------------------------------------
    # CAMPAIGNS
    # ----------------------------------------------------------

    async def active_campaigns(self, network: str = TEMPO_CHAIN["name"]) -> list[Campaign]:
        rows = await self._fetch(
            """
            SELECT id::text AS id, tweet_id, network, status, grant_amount,
                   max_participants, current_participants, budget_spent
              FROM campaigns
             WHERE network = $1 AND status = 'active' AND tweet_id IS NOT NULL
             ORDER BY id
            """,
            network,
        )
        return [_campaign_from_row(r) for r in rows]

    async def increment_campaign(self, campaign_id: str, grant_amount: Decimal) -> None:
        await self._execute(
            """
            UPDATE campaigns
               SET current_participants = COALESCE(current_participants, 0) + 1,
                   budget_spent = COALESCE(budget_spent, 0) + $2
             WHERE id = $1::uuid
            """,
            campaign_id,
            grant_amount,
        )

    # ----------------------------------------------------------
    # LEDGER
    # ----------------------------------------------------------

    async def has_transaction(self, tweet_id: str) -> bool:
        rows = await self._fetch(
            """
            SELECT 1 FROM monibot_transactions WHERE tweet_id = $1
            UNION ALL
            SELECT 1 FROM event_claims WHERE tweet_id = $1
            LIMIT 1
            """,
            tweet_id,
        )
        return bool(rows)

    async def insert_transaction(self, record: TransactionRecord) -> bool:
        status = await self._execute(
            """
            INSERT INTO monibot_transactions(
              tweet_id, leg, chain, tx_hash, sender_id, receiver_id, amount, fee,
              type, status, error_reason, campaign_id, payer_pay_tag,
              recipient_pay_tag, replied)
            VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$10,$11,$12,$13,$14,$15)
            ON CONFLICT (tweet_id, leg) DO NOTHING
            """,
            record.source_event_id,
            record.leg,
            record.chain,
            record.tx_hash,
            record.sender_id,
            record.receiver_id,
            record.amount,
            record.fee,
            record.kind.value,
            record.status.value,
            record.error_reason,
            record.campaign_id,
            record.payer_pay_tag,
            record.recipient_pay_tag,
            record.replied,
        )
        # asyncpg returns "INSERT 0 <rows>"
        return status.endswith(" 1")

    async def claim_event(self, tweet_id: str, worker_id: str) -> bool:
        status = await self._execute(
            "INSERT INTO event_claims(tweet_id, worker_id) VALUES ($1, $2) ON CONFLICT (tweet_id) DO NOTHING",
            tweet_id,
            worker_id,
        )
        return status.endswith(" 1")

    # ----------------------------------------------------------
    # POLL CURSORS
    # ----------------------------------------------------------

    async def load_cursors(self) -> dict[str, str]:
        rows = await self._fetch("SELECT stream, since_id FROM poll_cursors")
        return {r["stream"]: r["since_id"] for r in rows}

    async def save_cursors(self, cursors: dict[str, str]) -> None:
        for stream, since_id in cursors.items():
            await self._execute(
                """
                INSERT INTO poll_cursors(stream, since_id) VALUES ($1, $2)
                ON CONFLICT (stream) DO UPDATE SET since_id = EXCLUDED.since_id, updated_at = now()
                """,
                stream,
                since_id,
            )
