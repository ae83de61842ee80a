"""
Ledger Recorder - append-only outcome rows, one per (tweet, leg)

Every outcome is a row: completed, failed, skipped, partially_completed.
A retried cycle recognizes "already handled" from the row alone, whatever
the outcome was.

Lifecycle per event:
1. already_recorded()  - cheap pre-check, skip the event if True
2. claim()             - right before the first transfer; loser skips
3. record*()           - after each leg; conflict = someone else wrote it

Write errors propagate to the caller. The claim stays behind, so a transfer
that confirmed but could not be recorded is never re-sent.
"""

import logging
from decimal import Decimal
from typing import Optional

from core.constitution import SkipReason, TxKind, TxStatus
from core.models import Campaign, TransactionRecord

logger = logging.getLogger("monibot.ledger")


class LedgerRecorder:

    def __init__(self, datastore, worker_id: str = "tempo-worker"):
        self._store = datastore
        self._worker_id = worker_id
        self.records_written: int = 0
        self.conflicts: int = 0

    async def already_recorded(self, source_event_id: str) -> bool:
        return await self._store.has_transaction(source_event_id)

    async def claim(self, source_event_id: str) -> bool:
        claimed = await self._store.claim_event(source_event_id, self._worker_id)
        if not claimed:
            logger.info(f"Tweet {source_event_id} already claimed by another worker, skipping")
        return claimed

    async def record(self, record: TransactionRecord) -> bool:
        inserted = await self._store.insert_transaction(record)
        if inserted:
            self.records_written += 1
            logger.debug(
                f"Ledger: {record.kind.value}/{record.status.value} tweet={record.source_event_id}"
                f"{' leg=' + record.leg if record.leg else ''} tx={record.tx_hash}"
            )
        else:
            self.conflicts += 1
            logger.info(
                f"Ledger: tweet {record.source_event_id} leg '{record.leg}' already recorded, keeping existing row"
            )
        return inserted

    def get_status(self) -> dict:
        return {"records_written": self.records_written, "conflicts": self.conflicts}

    # ----------------------------------------------------------
    # CONVENIENCE WRITERS
    # ----------------------------------------------------------

    async def record_skip(
        self,
        source_event_id: str,
        reason: SkipReason,
        kind: TxKind,
        sender_id: str,
        receiver_id: str,
        amount: Decimal = Decimal("0"),
        error_reason: Optional[str] = None,
        leg: str = "",
        campaign_id: Optional[str] = None,
        payer_pay_tag: Optional[str] = None,
        recipient_pay_tag: Optional[str] = None,
    ) -> bool:
        return await self.record(TransactionRecord(
            source_event_id=source_event_id,
            leg=leg,
            tx_hash=f"skip:{reason.value}",
            sender_id=sender_id,
            receiver_id=receiver_id,
            amount=amount,
            kind=kind,
            status=TxStatus.SKIPPED,
            error_reason=error_reason or reason.value,
            campaign_id=campaign_id,
            payer_pay_tag=payer_pay_tag,
            recipient_pay_tag=recipient_pay_tag,
        ))

    async def record_failure(
        self,
        source_event_id: str,
        reason: SkipReason,
        kind: TxKind,
        sender_id: str,
        receiver_id: str,
        amount: Decimal,
        error_reason: str,
        leg: str = "",
        campaign_id: Optional[str] = None,
        payer_pay_tag: Optional[str] = None,
        recipient_pay_tag: Optional[str] = None,
        tx_hash: Optional[str] = None,
        fee: Decimal = Decimal("0"),
        status: TxStatus = TxStatus.FAILED,
    ) -> bool:
        return await self.record(TransactionRecord(
            source_event_id=source_event_id,
            leg=leg,
            tx_hash=tx_hash or f"failed:{reason.value}",
            sender_id=sender_id,
            receiver_id=receiver_id,
            amount=amount,
            fee=fee,
            kind=kind,
            status=status,
            error_reason=error_reason,
            campaign_id=campaign_id,
            payer_pay_tag=payer_pay_tag,
            recipient_pay_tag=recipient_pay_tag,
        ))

    async def record_completed(
        self,
        source_event_id: str,
        tx_hash: str,
        kind: TxKind,
        sender_id: str,
        receiver_id: str,
        amount: Decimal,
        fee: Decimal,
        leg: str = "",
        campaign_id: Optional[str] = None,
        payer_pay_tag: Optional[str] = None,
        recipient_pay_tag: Optional[str] = None,
    ) -> bool:
        return await self.record(TransactionRecord(
            source_event_id=source_event_id,
            leg=leg,
            tx_hash=tx_hash,
            sender_id=sender_id,
            receiver_id=receiver_id,
            amount=amount,
            fee=fee,
            kind=kind,
            status=TxStatus.COMPLETED,
            campaign_id=campaign_id,
            payer_pay_tag=payer_pay_tag,
            recipient_pay_tag=recipient_pay_tag,
        ))

    async def record_grant(self, record: TransactionRecord, campaign: Campaign) -> bool:
        """Completed grant row, then bump the campaign counters (store + in memory)."""
        inserted = await self.record(record)
        if inserted and record.status == TxStatus.COMPLETED:
            await self._store.increment_campaign(campaign.campaign_id, campaign.grant_amount)
            campaign.current_participants += 1
            campaign.budget_spent += campaign.grant_amount
        return inserted
