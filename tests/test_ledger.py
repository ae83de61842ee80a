from decimal import Decimal

import pytest

from core.constitution import SkipReason, TxKind, TxStatus
from core.models import Campaign, TransactionRecord


def _completed(tweet_id="100", leg=""):
    return TransactionRecord(
        source_event_id=tweet_id,
        leg=leg,
        tx_hash="0xabc",
        sender_id="carol",
        receiver_id="alice",
        amount=Decimal("5"),
        fee=Decimal("0.065"),
        kind=TxKind.P2P_COMMAND,
        status=TxStatus.COMPLETED,
    )


async def test_second_record_for_same_event_is_a_conflict(ledger, store):
    assert await ledger.record(_completed()) is True
    assert await ledger.record(_completed()) is False
    assert len(store.records_for("100")) == 1
    assert ledger.conflicts == 1


async def test_legs_of_one_event_are_distinct(ledger, store):
    assert await ledger.record(_completed(leg="alice"))
    assert await ledger.record(_completed(leg="bob"))
    assert not await ledger.record(_completed(leg="alice"))
    assert len(store.records_for("100")) == 2


async def test_already_recorded_sees_skips_and_claims(ledger):
    assert not await ledger.already_recorded("200")
    await ledger.record_skip("200", SkipReason.PARSE_FAILED, TxKind.P2P_COMMAND, "bot", "bot")
    assert await ledger.already_recorded("200")

    assert await ledger.claim("300")
    assert await ledger.already_recorded("300")
    assert not await ledger.claim("300")


async def test_skip_record_shape(ledger, store):
    await ledger.record_skip("400", SkipReason.QUOTE_NOT_COMMAND, TxKind.P2P_COMMAND, "bot", "bot",
                             payer_pay_tag="carol")
    (row,) = store.records_for("400")
    assert row.status == TxStatus.SKIPPED
    assert row.error_reason == "quote-not-command"
    assert row.tx_hash == "skip:quote-not-command"
    assert row.amount == Decimal("0")


async def test_write_failure_propagates(ledger, store):
    store.fail_writes = True
    with pytest.raises(ConnectionError):
        await ledger.record(_completed())


async def test_grant_bumps_campaign_once(ledger, store):
    campaign = Campaign(campaign_id="camp-1", source_event_id="1", grant_amount=Decimal("2"),
                        max_participants=3, current_participants=1, budget_spent=Decimal("2"))
    record = TransactionRecord(
        source_event_id="500", tx_hash="0xg", sender_id="camp-1", receiver_id="alice",
        amount=Decimal("2"), kind=TxKind.GRANT, status=TxStatus.COMPLETED, campaign_id="camp-1",
    )

    assert await ledger.record_grant(record, campaign)
    assert not await ledger.record_grant(record, campaign)

    assert store.increments == [("camp-1", Decimal("2"))]
    assert campaign.current_participants == 2
    assert campaign.budget_spent == Decimal("4")


async def test_status_counts_writes_and_conflicts(ledger):
    await ledger.record(_completed(leg="alice"))
    await ledger.record(_completed(leg="bob"))
    await ledger.record(_completed(leg="alice"))

    assert ledger.get_status() == {"records_written": 2, "conflicts": 1}
