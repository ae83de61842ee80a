"""
Transfer Executor - AlphaUSD on Tempo

Turns a confirmed intent into an on-chain transfer and reports the fee split.

Design:
- Sync Web3 calls wrapped in asyncio.run_in_executor() (web3.py async is fragile)
- Embedded minimal ABI, only the functions we call
- Gas estimation + 20% buffer, nonce from chain
- Every write waits for its receipt (60s). Timeout or revert = failure,
  never a partial success
- Amounts are Decimals at the edge, integers (10^-6 units) for fee math

Two execution paths:
1. Routed: MoniBotRouter.executeGrant / executeP2P. One call, the contract
   splits the fee to treasury atomically. Always used for grants.
2. Fallback: two ERC20 transfers (net -> recipient, fee -> treasury). NOT
   atomic: if the fee leg fails the recipient is already paid. That state
   raises PartialTransferError and is never retried.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Optional

from core.constitution import TEMPO_CHAIN, TEMPO_RULES

logger = logging.getLogger("monibot.chain")


# ============================================================
# ERRORS
# ============================================================

class TransferError(Exception):
    """A write was rejected, reverted or not confirmed in time. Funds assumed unmoved."""

    def __init__(self, message: str, tx_hash: str = ""):
        super().__init__(message)
        self.tx_hash = tx_hash


class PartialTransferError(TransferError):
    """Fallback path: recipient leg confirmed, fee leg failed."""

    def __init__(self, message: str, tx_hash: str, amount: Decimal, fee: Decimal, net_amount: Decimal):
        super().__init__(message, tx_hash)
        self.amount = amount
        self.fee = fee
        self.net_amount = net_amount


class ChainReadError(Exception):
    """A view call (balanceOf) failed. Treated as infrastructure failure."""
    pass


# ============================================================
# UNIT MATH - integers only below this line
# ============================================================

def to_base_units(amount: Decimal, decimals: int = TEMPO_RULES.TOKEN_DECIMALS) -> int:
    """Decimal token amount -> integer smallest units, truncating extra precision."""
    return int(Decimal(amount).scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


def from_base_units(units: int, decimals: int = TEMPO_RULES.TOKEN_DECIMALS) -> Decimal:
    return Decimal(units).scaleb(-decimals).quantize(Decimal(1).scaleb(-decimals))


def split_fee(units: int, fee_bps: int = TEMPO_RULES.FEE_BPS) -> tuple[int, int]:
    """(fee, net) in smallest units. fee = floor(units * bps / 10000)."""
    fee = (units * fee_bps) // TEMPO_RULES.BPS_DENOMINATOR
    return fee, units - fee


# ============================================================
# MINIMAL ABI
# ============================================================

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

MONIBOT_ROUTER_ABI = [
    # executeGrant(address to, uint256 amount, string campaignId) - fee split on chain
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "campaignId", "type": "string"},
        ],
        "name": "executeGrant",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    # executeP2P(address from, address to, uint256 amount, uint256 nonce, string tweetId)
    {
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "nonce", "type": "uint256"},
            {"name": "tweetId", "type": "string"},
        ],
        "name": "executeP2P",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass
class ChainTxResult:
    """Result of one on-chain write attempt."""
    success: bool
    tx_hash: str = ""
    error: str = ""
    block_number: int = 0
    gas_used: int = 0


@dataclass
class TransferResult:
    """Confirmed transfer, amounts in token units."""
    tx_hash: str
    amount: Decimal
    fee: Decimal
    net_amount: Decimal
    block_number: int = 0
    fee_tx_hash: str = ""
    routed: bool = True


# ============================================================
# TRANSFER EXECUTOR
# ============================================================

class TransferExecutor:
    """
    Usage:
        executor = TransferExecutor()
        if executor.initialize(executor_key, sponsor_key, rpc_url):
            result = await executor.grant(address, Decimal("5"), campaign_id)
    """

    def __init__(self, p2p_router_enabled: bool = False):
        self._initialized: bool = False
        self._p2p_router_enabled = p2p_router_enabled
        self._private_key: str = ""
        self.executor_address: str = ""
        self.sponsor_address: str = ""

        self._w3 = None
        self._token = None
        self._router = None
        self._treasury: str = ""

        self._tx_count: int = 0
        self._gas_used: int = 0
        self._last_error: str = ""

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self, executor_private_key: str, sponsor_private_key: str = "", rpc_url: str = "") -> bool:
        """Connect to the RPC and derive accounts. False = unusable credentials or RPC."""
        from web3 import Web3
        from eth_account import Account

        if not executor_private_key:
            logger.error("No TEMPO_EXECUTOR_PRIVATE_KEY - chain executor disabled")
            return False

        try:
            self.executor_address = Account.from_key(executor_private_key).address
            self.sponsor_address = Account.from_key(sponsor_private_key or executor_private_key).address
        except Exception as e:
            logger.error(f"Invalid Tempo private key: {e}")
            return False

        self._private_key = executor_private_key
        rpc_url = rpc_url or TEMPO_CHAIN["rpc"]

        try:
            w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": TEMPO_RULES.RPC_HTTP_TIMEOUT_SECONDS}))
            if not w3.is_connected():
                logger.error(f"Cannot connect to Tempo RPC ({rpc_url})")
                return False
        except Exception as e:
            logger.error(f"Failed to initialize Tempo RPC: {e}")
            return False

        self._w3 = w3
        self._token = w3.eth.contract(address=Web3.to_checksum_address(TEMPO_CHAIN["token_address"]), abi=ERC20_ABI)
        self._router = w3.eth.contract(address=Web3.to_checksum_address(TEMPO_CHAIN["monibot_router"]), abi=MONIBOT_ROUTER_ABI)
        self._treasury = Web3.to_checksum_address(TEMPO_CHAIN["treasury"])
        self._initialized = True

        logger.info(f"Executor: {self.executor_address}")
        logger.info(f"Sponsor:  {self.sponsor_address}")
        logger.info(f"MoniBotRouter: {TEMPO_CHAIN['monibot_router']}")
        logger.info(f"MoniPayRouter: {TEMPO_CHAIN['monipay_router']}")
        self._log_startup_balances()
        return True

    def _log_startup_balances(self) -> None:
        for label, address in (("MoniBotRouter", TEMPO_CHAIN["monibot_router"]), ("Sponsor", self.sponsor_address)):
            try:
                raw = self._token.functions.balanceOf(self._w3.to_checksum_address(address)).call()
                logger.info(f"{label} αUSD: {from_base_units(raw)}")
            except Exception as e:
                logger.warning(f"Could not read {label} balance: {e}")

    # ============================================================
    # READS
    # ============================================================

    async def balance_of(self, address: str) -> Decimal:
        if not self._initialized:
            raise ChainReadError("chain executor not initialized")
        try:
            checksum = self._w3.to_checksum_address(address)
            raw = await asyncio.get_running_loop().run_in_executor(
                None, self._token.functions.balanceOf(checksum).call,
            )
        except Exception as e:
            raise ChainReadError(f"balanceOf({address}) failed: {type(e).__name__}: {e}") from e
        return from_base_units(raw)

    # ============================================================
    # WRITES
    # ============================================================

    async def _send_tx(self, tx_fn) -> ChainTxResult:
        """
        Build, sign, send and wait for one transaction.

        Args:
            tx_fn: a web3 contract function call (e.g. token.functions.transfer(to, amount))
        """
        w3 = self._w3

        try:
            def _execute():
                nonce = w3.eth.get_transaction_count(self.executor_address)
                tx = tx_fn.build_transaction({
                    "from": self.executor_address,
                    "nonce": nonce,
                    "gasPrice": w3.eth.gas_price,
                    "chainId": TEMPO_CHAIN["chain_id"],
                })

                try:
                    gas_estimate = w3.eth.estimate_gas(tx)
                    tx["gas"] = int(gas_estimate * TEMPO_RULES.GAS_BUFFER_RATIO)
                except Exception as gas_err:
                    logger.warning(f"Gas estimation failed, using default {TEMPO_RULES.DEFAULT_GAS_LIMIT}: {gas_err}")
                    tx["gas"] = TEMPO_RULES.DEFAULT_GAS_LIMIT

                signed = w3.eth.account.sign_transaction(tx, self._private_key)
                tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
                receipt = w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=TEMPO_RULES.CONFIRMATION_TIMEOUT_SECONDS,
                )
                return receipt, tx_hash.hex()

            receipt, tx_hash_hex = await asyncio.get_running_loop().run_in_executor(None, _execute)

            if receipt["status"] == 1:
                result = ChainTxResult(
                    success=True,
                    tx_hash=tx_hash_hex,
                    block_number=receipt.get("blockNumber", 0),
                    gas_used=receipt.get("gasUsed", 0),
                )
                self._tx_count += 1
                self._gas_used += result.gas_used
                return result
            error = f"TX reverted: {tx_hash_hex}"
            self._last_error = error
            return ChainTxResult(success=False, tx_hash=tx_hash_hex, error=error)

        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            self._last_error = error
            return ChainTxResult(success=False, error=error)

    def _require_ready(self) -> None:
        if not self._initialized:
            raise TransferError("chain executor not initialized")

    async def grant(self, address: str, amount: Decimal, campaign_id: str = "") -> TransferResult:
        """Campaign grant through MoniBotRouter. The contract splits the fee."""
        self._require_ready()
        units = to_base_units(amount)
        if units <= 0:
            raise TransferError("amount too small")
        fee, net = split_fee(units)

        logger.info(f"Executing grant of {amount} αUSD to {address} via MoniBotRouter")
        tx_fn = self._router.functions.executeGrant(self._w3.to_checksum_address(address), units, str(campaign_id))
        result = await self._send_tx(tx_fn)
        if not result.success:
            raise TransferError(f"grant failed: {result.error}", result.tx_hash)

        logger.info(f"Grant complete: {result.tx_hash} (block {result.block_number})")
        return TransferResult(
            tx_hash=result.tx_hash,
            amount=from_base_units(units),
            fee=from_base_units(fee),
            net_amount=from_base_units(net),
            block_number=result.block_number,
        )

    async def transfer(
        self,
        address: str,
        amount: Decimal,
        memo: str = "",
        sender_address: Optional[str] = None,
        source_event_id: Optional[str] = None,
        leg_index: int = 0,
    ) -> TransferResult:
        """P2P transfer. Routed when the P2P router is enabled, two-leg fallback otherwise."""
        self._require_ready()
        units = to_base_units(amount)
        if units <= 0:
            raise TransferError("amount too small")

        if self._p2p_router_enabled and sender_address and source_event_id:
            return await self._routed_p2p(address, units, sender_address, source_event_id, leg_index, memo)
        return await self._two_leg_transfer(address, units, memo)

    async def _routed_p2p(self, address: str, units: int, sender_address: str,
                          source_event_id: str, leg_index: int, memo: str) -> TransferResult:
        fee, net = split_fee(units)
        # One nonce per (tweet, leg): the router rejects replays
        nonce = int(source_event_id) * 100 + leg_index if source_event_id.isdigit() else leg_index

        logger.info(f"Routing P2P {from_base_units(units)} αUSD {sender_address} -> {address} ({memo})")
        tx_fn = self._router.functions.executeP2P(
            self._w3.to_checksum_address(sender_address),
            self._w3.to_checksum_address(address),
            units,
            nonce,
            source_event_id,
        )
        result = await self._send_tx(tx_fn)
        if not result.success:
            raise TransferError(f"routed P2P failed: {result.error}", result.tx_hash)

        return TransferResult(
            tx_hash=result.tx_hash,
            amount=from_base_units(units),
            fee=from_base_units(fee),
            net_amount=from_base_units(net),
            block_number=result.block_number,
        )

    async def _two_leg_transfer(self, address: str, units: int, memo: str) -> TransferResult:
        fee, net = split_fee(units)
        amount_d, fee_d, net_d = from_base_units(units), from_base_units(fee), from_base_units(net)

        logger.info(f"Sending {net_d} αUSD to {address} ({memo})")
        logger.info(f"   Fee: {fee_d} αUSD -> Treasury")

        leg1 = await self._send_tx(self._token.functions.transfer(self._w3.to_checksum_address(address), net))
        if not leg1.success:
            raise TransferError(f"transfer failed: {leg1.error}", leg1.tx_hash)

        fee_tx_hash = ""
        if fee > 0:
            leg2 = await self._send_tx(self._token.functions.transfer(self._treasury, fee))
            if not leg2.success:
                logger.critical(
                    f"PARTIAL TRANSFER: {net_d} αUSD paid to {address} in {leg1.tx_hash}, "
                    f"fee leg of {fee_d} αUSD failed: {leg2.error}. Not retrying."
                )
                raise PartialTransferError(
                    f"fee leg failed after recipient was paid: {leg2.error}",
                    tx_hash=leg1.tx_hash, amount=amount_d, fee=fee_d, net_amount=net_d,
                )
            fee_tx_hash = leg2.tx_hash

        logger.info(f"Transfer complete: {leg1.tx_hash}")
        return TransferResult(
            tx_hash=leg1.tx_hash,
            amount=amount_d,
            fee=fee_d,
            net_amount=net_d,
            block_number=leg1.block_number,
            fee_tx_hash=fee_tx_hash,
            routed=False,
        )

    # ============================================================
    # STATUS
    # ============================================================

    def get_explorer_url(self, tx_hash: str) -> str:
        return f"{TEMPO_CHAIN['explorer']}/tx/{tx_hash}"

    def get_status(self) -> dict:
        return {
            "initialized": self._initialized,
            "executor": self.executor_address[:10] + "..." if self.executor_address else "",
            "p2p_router_enabled": self._p2p_router_enabled,
            "tx_count": self._tx_count,
            "gas_used": self._gas_used,
            "last_error": self._last_error,
        }
