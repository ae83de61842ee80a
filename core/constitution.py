"""
MoniBot Tempo Rules - Layer 0 (Immutable)

Network identity, fee schedule and command limits. These values are
hardcoded; runtime config (core/config.py) may point at a different RPC
or bot handle, but never changes the economics below.

Designed for: MoniBot Tempo worker
"""

from dataclasses import dataclass
from enum import Enum
from typing import Final, Tuple


class TxKind(Enum):
    GRANT = "grant"
    P2P_COMMAND = "p2p_command"


class TxStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    PARTIALLY_COMPLETED = "partially_completed"   # recipient paid, fee leg lost


class SkipReason(Enum):
    QUOTE_NOT_COMMAND = "quote-not-command"
    PARSE_FAILED = "parse-failed"
    SENDER_NOT_FOUND = "sender-not-found"
    RECIPIENT_NOT_FOUND = "recipient-not-found"
    NO_PROFILE = "no-profile"
    INSUFFICIENT_BALANCE = "insufficient-balance"
    TRANSFER_FAILED = "transfer-failed"
    FEE_LEG_FAILED = "fee-leg-failed"


# ============================================================
# TEMPO RULES - cannot be changed by config
# ============================================================

@dataclass(frozen=True)
class TempoRules:
    """Frozen dataclass = truly immutable at runtime."""

    # --- TOKEN ---
    TOKEN_SYMBOL: Final[str] = "AlphaUSD"
    TOKEN_DECIMALS: Final[int] = 6                  # TIP-20, 1 unit = 10^-6 αUSD

    # --- FEES ---
    FEE_BPS: Final[int] = 130                       # 1.3% of every outgoing amount
    BPS_DENOMINATOR: Final[int] = 10_000

    # --- COMMAND LIMITS ---
    MAX_COMMAND_AMOUNT: Final[int] = 10_000         # $ per command leg
    RESERVED_HANDLES: Final[Tuple[str, ...]] = ("monibot", "monipay")
    NETWORK_KEYWORDS: Final[Tuple[str, ...]] = ("on tempo", "tempo", "alphausd", "αusd")

    # --- EXECUTION ---
    CONFIRMATION_TIMEOUT_SECONDS: Final[int] = 60   # receipt wait per write
    RPC_HTTP_TIMEOUT_SECONDS: Final[int] = 30
    DEFAULT_GAS_LIMIT: Final[int] = 200_000
    GAS_BUFFER_RATIO: Final[float] = 1.2

    # --- POLLING ---
    SEARCH_PAGE_SIZE: Final[int] = 50               # P2P search page
    REPLY_PAGE_SIZE: Final[int] = 100               # campaign reply search page
    MAX_SEARCH_PAGES: Final[int] = 3
    DEFAULT_POLL_INTERVAL_MS: Final[int] = 30_000
    DEFAULT_AUTO_RESTART_MINUTES: Final[int] = 90


TEMPO_RULES = TempoRules()


# ============================================================
# CHAIN IDENTITY
# ============================================================

TEMPO_CHAIN = {
    "name": "tempo",
    "display_name": "Tempo Testnet",
    "chain_id": 42431,
    "rpc": "https://rpc.moderato.tempo.xyz",
    "explorer": "https://explore.tempo.xyz",
    "token_address": "0x20c0000000000000000000000000000000000001",   # AlphaUSD
    "treasury": "0xDC9B47551734bE984D7Aa2a365251E002f8FF2D7",
    "monibot_router": "0x78A824fDE7Ee3E69B2e2Ee52d1136EECD76749fc",   # grants + P2P
    "monipay_router": "0xa39C3B7e02686cf7F226337525515c694318BDb9",
}

ZERO_PROFILE_ID = "00000000-0000-0000-0000-000000000000"
