"""
Data model shared by the pollers, resolver and ledger.

SocialEvent and TransactionRecord are immutable; Campaign counters are the
only thing the worker mutates (after a confirmed grant).
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from core.constitution import TEMPO_CHAIN, TxKind, TxStatus


@dataclass(frozen=True)
class SocialEvent:
    """One post as returned by the social search API."""
    id: str
    author_id: str
    author_handle: str
    text: str
    created_at: Optional[datetime] = None
    quoted_event_id: Optional[str] = None
    is_repost: bool = False
    conversation_id: Optional[str] = None

    @property
    def is_quote(self) -> bool:
        return self.quoted_event_id is not None


@dataclass(frozen=True)
class Profile:
    profile_id: str
    pay_tag: Optional[str] = None
    social_handle: Optional[str] = None
    wallet_address: Optional[str] = None
    tempo_address: Optional[str] = None

    @property
    def pay_address(self) -> Optional[str]:
        """Chain-specific address first, generic wallet second."""
        return self.tempo_address or self.wallet_address or None


@dataclass
class Campaign:
    campaign_id: str
    source_event_id: str
    grant_amount: Decimal
    max_participants: Optional[int] = None      # None = unlimited
    current_participants: int = 0
    budget_spent: Decimal = Decimal("0")
    status: str = "active"
    network: str = TEMPO_CHAIN["name"]

    @property
    def at_capacity(self) -> bool:
        if not self.max_participants:
            return False
        return self.current_participants >= self.max_participants


@dataclass(frozen=True)
class TransactionRecord:
    """
    One ledger row. (source_event_id, leg) is unique in the datastore:
    leg is "" for event-level outcomes and the recipient tag for a
    per-recipient leg of a multi-recipient command.
    """
    source_event_id: str
    tx_hash: str
    sender_id: str
    receiver_id: str
    amount: Decimal
    kind: TxKind
    status: TxStatus
    fee: Decimal = Decimal("0")
    leg: str = ""
    chain: str = TEMPO_CHAIN["name"]
    error_reason: Optional[str] = None
    campaign_id: Optional[str] = None
    payer_pay_tag: Optional[str] = None
    recipient_pay_tag: Optional[str] = None
    replied: bool = False


def later_id(a: Optional[str], b: Optional[str]) -> Optional[str]:
    """The newer of two snowflake ids (numeric compare, None-safe)."""
    if not a:
        return b
    if not b:
        return a
    if a.isdigit() and b.isdigit():
        return a if int(a) >= int(b) else b
    return max(a, b)


@dataclass
class PollOutcome:
    """What one poller hands back to the scheduler after a cycle."""
    processed: int = 0
    errors: int = 0
    cursors: dict[str, str] = field(default_factory=dict)


@dataclass
class StreamCursor:
    """
    Search position of one stream, kept in the cursors dict under
    "<stream>", "<stream>/until" and "<stream>/high".

    since_id  every event at or below it is handled
    until_id  set while catching up after a truncated search: the band
              (since_id, until_id) still has unfetched events
    high_id   newest id handled before the catch-up started
    """
    since_id: Optional[str] = None
    until_id: Optional[str] = None
    high_id: Optional[str] = None

    @classmethod
    def load(cls, cursors: dict[str, str], stream: str) -> "StreamCursor":
        return cls(
            since_id=cursors.get(stream) or None,
            until_id=cursors.get(f"{stream}/until") or None,
            high_id=cursors.get(f"{stream}/high") or None,
        )

    def store(self, cursors: dict[str, str], stream: str) -> None:
        if self.since_id:
            cursors[stream] = self.since_id
        for key, value in ((f"{stream}/until", self.until_id), (f"{stream}/high", self.high_id)):
            # "" overwrites a persisted value; the store only upserts
            if value or key in cursors:
                cursors[key] = value or ""

    def advance(self, page, handled_through: Optional[str], blocked: bool) -> "StreamCursor":
        """
        Next position after one search page.

        handled_through: newest id of the unbroken run of handled events,
        counting from the oldest event of the page.
        blocked: an event failed or the poller stopped before the end.
        """
        if blocked:
            if page.truncated or not handled_through:
                return self
            return replace(self, since_id=later_id(self.since_id, handled_through))

        if page.truncated:
            if not page.oldest_id:
                return self
            return StreamCursor(
                since_id=self.since_id,
                until_id=page.oldest_id,
                high_id=self.high_id or later_id(handled_through, page.newest_id),
            )

        if self.until_id:
            # Band below until_id is complete; everything up to high_id was handled before
            return StreamCursor(since_id=later_id(self.since_id, self.high_id))
        return StreamCursor(since_id=later_id(self.since_id, later_id(handled_through, page.newest_id)))
