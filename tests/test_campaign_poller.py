from decimal import Decimal

import pytest

from core.constitution import TxKind, TxStatus
from core.models import Campaign
from fakes import tweet
from services.campaigns import CampaignReplyPoller


@pytest.fixture
def campaign(store):
    camp = Campaign(campaign_id="camp-1", source_event_id="9000", grant_amount=Decimal("2"),
                    max_participants=3, current_participants=0)
    store.campaigns.append(camp)
    return camp


@pytest.fixture
def poller(reader, store, resolver, ledger, executor):
    return CampaignReplyPoller(reader, store, resolver, ledger, executor)


async def test_reply_earns_a_grant(poller, reader, store, executor, campaign):
    reader.add(poller.query_for(campaign), tweet("9001", "count me in", author="alice"))

    outcome = await poller.poll({})

    assert outcome.processed == 1
    assert executor.grants == [("0xalice", Decimal("2"), "camp-1")]
    (row,) = store.records_for("9001")
    assert row.kind == TxKind.GRANT
    assert row.status == TxStatus.COMPLETED
    assert row.campaign_id == "camp-1"
    assert store.increments == [("camp-1", Decimal("2"))]
    assert campaign.current_participants == 1
    assert outcome.cursors["campaign:camp-1"] == "9001"


async def test_full_campaign_makes_no_grants(poller, reader, executor, campaign):
    campaign.max_participants = 5
    campaign.current_participants = 5
    reader.add(poller.query_for(campaign), tweet("9002", "me too", author="alice"))

    outcome = await poller.poll({})

    assert outcome.processed == 0
    assert executor.grants == []
    assert reader.calls == []


async def test_capacity_reached_mid_page_halts(poller, reader, store, executor, campaign):
    campaign.max_participants = 2
    reader.add(
        poller.query_for(campaign),
        tweet("9003", "in", author="alice"),
        tweet("9004", "in", author="bob"),
        tweet("9005", "in", author="dave"),
    )

    outcome = await poller.poll({})

    assert outcome.processed == 2
    assert [address for address, _, _ in executor.grants] == ["0xalice", "0xbob"]
    assert store.records_for("9005") == []
    assert outcome.cursors["campaign:camp-1"] == "9004"


async def test_reply_without_profile_is_skipped(poller, reader, store, executor, campaign):
    reader.add(poller.query_for(campaign), tweet("9006", "hi", author="stranger"))

    await poller.poll({})

    (row,) = store.records_for("9006")
    assert row.status == TxStatus.SKIPPED
    assert row.error_reason == "No profile for @stranger"
    assert executor.grants == []
    assert store.increments == []


async def test_failed_grant_is_recorded_once(poller, reader, store, executor, campaign):
    executor.failing.add("0xbob")
    reader.add(poller.query_for(campaign), tweet("9007", "in", author="bob"))

    await poller.poll({})
    await poller.poll({})

    (row,) = store.records_for("9007")
    assert row.status == TxStatus.FAILED
    assert len(executor.grants) == 1
    assert campaign.current_participants == 0


async def test_bot_replies_and_repeats_are_ignored(poller, reader, store, executor, campaign):
    reader.add(
        poller.query_for(campaign),
        tweet("9008", "thanks all", author="MoniBot"),
        tweet("9009", "in", author="alice"),
    )

    await poller.poll({})
    outcome = await poller.poll({})

    assert outcome.processed == 0
    assert store.records_for("9008") == []
    assert len(executor.grants) == 1


async def test_no_active_campaigns_is_idle(poller, reader):
    outcome = await poller.poll({"p2p": "1"})
    assert outcome.processed == 0
    assert outcome.cursors == {"p2p": "1"}
    assert reader.calls == []


async def test_one_bad_campaign_does_not_block_others(poller, reader, store, executor, campaign):
    other = Campaign(campaign_id="camp-2", source_event_id="8000", grant_amount=Decimal("1"))
    store.campaigns.insert(0, other)
    reader.add(poller.query_for(campaign), tweet("9010", "in", author="alice"))

    original = reader.search

    async def search(query, **kwargs):
        if query == poller.query_for(other):
            raise TimeoutError("search timed out")
        return await original(query, **kwargs)

    reader.search = search

    outcome = await poller.poll({})

    assert outcome.errors == 1
    assert outcome.processed == 1
    assert "campaign:camp-2" not in outcome.cursors


async def test_truncated_reply_search_grants_older_replies_later(poller, reader, store, executor, campaign):
    campaign.max_participants = None
    reader.page_size = 2
    reader.add(
        poller.query_for(campaign),
        tweet("9011", "in", author="alice"),
        tweet("9012", "in", author="bob"),
        tweet("9013", "in", author="dave"),
    )

    first = await poller.poll({})

    assert first.processed == 2
    assert "campaign:camp-1" not in first.cursors
    assert first.cursors["campaign:camp-1/until"] == "9012"

    second = await poller.poll(first.cursors)

    assert second.processed == 1
    assert second.cursors["campaign:camp-1"] == "9013"
    assert second.cursors["campaign:camp-1/until"] == ""
    assert sorted(address for address, _, _ in executor.grants) == ["0xalice", "0xbob", "0xdavetempo"]


async def test_reply_from_another_conversation_is_ignored(poller, reader, store, executor, campaign):
    reader.add(poller.query_for(campaign), tweet("9014", "in", author="alice", conversation="7777"))

    outcome = await poller.poll({})

    assert outcome.processed == 0
    assert executor.grants == []
    assert store.records_for("9014") == []
