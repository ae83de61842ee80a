from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.constitution import TxKind, TxStatus
from core.datastore import Datastore
from core.models import TransactionRecord


@pytest.fixture
def datastore():
    store = Datastore("postgresql://localhost/test")
    store.pool = MagicMock()
    store.pool.fetch = AsyncMock(return_value=[])
    store.pool.execute = AsyncMock(return_value="INSERT 0 1")
    return store


def _record():
    return TransactionRecord(
        source_event_id="100", leg="alice", tx_hash="0xabc", sender_id="carol", receiver_id="alice",
        amount=Decimal("5"), fee=Decimal("0.065"), kind=TxKind.P2P_COMMAND, status=TxStatus.COMPLETED,
    )


async def test_insert_reports_whether_a_row_landed(datastore):
    assert await datastore.insert_transaction(_record()) is True

    datastore.pool.execute.return_value = "INSERT 0 0"
    assert await datastore.insert_transaction(_record()) is False

    query, *args = datastore.pool.execute.call_args.args
    assert "ON CONFLICT (tweet_id, leg) DO NOTHING" in query
    assert args[:2] == ["100", "alice"]
    assert args[8:10] == ["p2p_command", "completed"]


async def test_claim_conflict_is_false(datastore):
    datastore.pool.execute.return_value = "INSERT 0 0"
    assert await datastore.claim_event("100", "w-1") is False


async def test_profiles_are_mapped(datastore):
    datastore.pool.fetch.return_value = [{
        "id": "p-1", "x_username": "alice", "pay_tag": "alicepay",
        "wallet_address": "0xwallet", "tempo_address": None,
    }]

    (profile,) = await datastore.find_profiles("alicepay")

    assert profile.social_handle == "alice"
    assert profile.pay_address == "0xwallet"


async def test_campaign_rows_use_decimals(datastore):
    datastore.pool.fetch.return_value = [{
        "id": "c-1", "tweet_id": "9000", "network": "tempo", "status": "active",
        "grant_amount": Decimal("2.5"), "max_participants": None,
        "current_participants": None, "budget_spent": None,
    }]

    (campaign,) = await datastore.active_campaigns()

    assert campaign.grant_amount == Decimal("2.5")
    assert campaign.current_participants == 0
    assert campaign.at_capacity is False


async def test_cursor_roundtrip_uses_upsert(datastore):
    datastore.pool.fetch.return_value = [{"stream": "p2p", "since_id": "42"}]
    assert await datastore.load_cursors() == {"p2p": "42"}

    await datastore.save_cursors({"p2p": "43", "campaign:c-1": "9001"})
    assert datastore.pool.execute.await_count == 2
    assert "DO UPDATE" in datastore.pool.execute.call_args.args[0]


async def test_failed_query_is_counted_and_raised(datastore):
    datastore.pool.fetch.side_effect = ConnectionError("down")
    with pytest.raises(ConnectionError):
        await datastore.has_transaction("100")
    assert datastore.stats["queries_failed"] == 1
