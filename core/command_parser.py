"""
Command Parser - free text -> TransferIntent

Grammar (case-insensitive, order-free within a post):

    AMOUNT   := "$" DIGITS ["." DIGITS]       first match wins
    MENTION  := "@" [A-Za-z0-9_-]+            every match, reserved handles removed
    MODIFIER := "each"                        whole word

Precedence: an invalid AMOUNT rejects the post before mentions are looked
at; mentions are de-duplicated in order of appearance.

Examples:
    "@monibot send $5 to @alice on tempo"
    "@monibot pay @bob $10 on tempo"
    "@monibot send $1 each to @alice, @bob on tempo"

Pure functions only. No I/O.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Iterable, Optional

from core.constitution import TEMPO_RULES

_AMOUNT_RE = re.compile(r"\$(\d+(?:\.\d+)?)")
_MENTION_RE = re.compile(r"@([a-zA-Z0-9_-]+)")
_EACH_RE = re.compile(r"\beach\b", re.I)
_DIRECT_COMMAND_RE = re.compile(r"(?:send\s+\$?\d|pay\s+@?\w+\s+\$?\d)", re.I)

_UNIT = Decimal(1).scaleb(-TEMPO_RULES.TOKEN_DECIMALS)


@dataclass(frozen=True)
class TransferIntent:
    """
    Parsed P2P command. The amount is always paid to every recipient;
    is_split_each only records that the post said "each".
    """
    amount: Decimal
    recipient_tags: tuple[str, ...]
    is_split_each: bool = False

    @property
    def total_required(self) -> Decimal:
        return self.amount * len(self.recipient_tags)

    @property
    def amount_per_recipient(self) -> Decimal:
        return self.amount


def parse_amount(text: str, max_amount: Decimal = Decimal(TEMPO_RULES.MAX_COMMAND_AMOUNT)) -> Optional[Decimal]:
    """First $-prefixed amount, or None if absent or out of (0, max_amount]."""
    match = _AMOUNT_RE.search(text)
    if not match:
        return None
    try:
        amount = Decimal(match.group(1))
    except InvalidOperation:
        return None
    if amount <= 0 or amount > max_amount:
        return None
    # More precision than the token carries cannot be sent
    if amount != amount.quantize(_UNIT, rounding=ROUND_DOWN):
        return None
    return amount


def extract_recipients(text: str, reserved_handles: Iterable[str] = TEMPO_RULES.RESERVED_HANDLES) -> tuple[str, ...]:
    reserved = {h.lower().lstrip("@") for h in reserved_handles}
    seen: list[str] = []
    for raw in _MENTION_RE.findall(text):
        tag = raw.lower()
        if tag in reserved or tag in seen:
            continue
        seen.append(tag)
    return tuple(seen)


def parse_command(
    text: str,
    reserved_handles: Iterable[str] = TEMPO_RULES.RESERVED_HANDLES,
    max_amount: Decimal = Decimal(TEMPO_RULES.MAX_COMMAND_AMOUNT),
) -> Optional[TransferIntent]:
    """Parse a post into a TransferIntent, or None when it is not a command."""
    if not text:
        return None

    amount = parse_amount(text, max_amount)
    if amount is None:
        return None

    recipients = extract_recipients(text, reserved_handles)
    if not recipients:
        return None

    return TransferIntent(
        amount=amount,
        recipient_tags=recipients,
        is_split_each=bool(_EACH_RE.search(text)),
    )


def is_direct_command(text: str) -> bool:
    """Imperative "send $5" / "pay @bob $5" pattern, used to vet quote-reposts."""
    return bool(_DIRECT_COMMAND_RE.search(text or ""))


def is_network_related(text: str, keywords: Iterable[str] = TEMPO_RULES.NETWORK_KEYWORDS) -> bool:
    lower = (text or "").lower()
    return any(kw in lower for kw in keywords)
