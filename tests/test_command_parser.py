from decimal import Decimal

import pytest

from core.command_parser import (
    TransferIntent,
    extract_recipients,
    is_direct_command,
    is_network_related,
    parse_amount,
    parse_command,
)

BOT = ("bot",)


def test_send_single_recipient():
    intent = parse_command("@bot send $5 to @alice on X", reserved_handles=BOT)
    assert intent == TransferIntent(amount=Decimal("5"), recipient_tags=("alice",), is_split_each=False)


def test_each_marks_per_recipient():
    intent = parse_command("@bot pay @a $1 each", reserved_handles=BOT)
    assert intent.recipient_tags == ("a",)
    assert intent.is_split_each is True


@pytest.mark.parametrize("text", [
    "hello world",
    "@bot send $0 to @a",
    "@bot send $999999 to @a",
    "@bot send five dollars to @a",
    "@bot send $5",
    "",
])
def test_not_a_command(text):
    assert parse_command(text, reserved_handles=BOT) is None


def test_reserved_handles_are_case_insensitive():
    intent = parse_command("@MoniBot send $2 to @MoniPay and @Alice on tempo")
    assert intent.recipient_tags == ("alice",)


def test_only_reserved_mentions_is_not_a_command():
    assert parse_command("@monibot send $2 to @monipay on tempo") is None


def test_mentions_deduplicated_in_order():
    assert extract_recipients("@bob @alice @BOB @monibot") == ("bob", "alice")


def test_first_amount_wins_and_decimals_kept():
    assert parse_amount("send $5.50 not $7") == Decimal("5.50")


def test_amount_at_max_is_accepted():
    assert parse_amount("$10000") == Decimal("10000")
    assert parse_amount("$10000.01") is None


def test_more_precision_than_token_is_rejected():
    assert parse_amount("$1.0000001") is None
    assert parse_amount("$1.000001") == Decimal("1.000001")


def test_each_is_a_whole_word():
    intent = parse_command("@monibot send $3 to @reach on tempo")
    assert intent.is_split_each is False


def test_amount_without_each_is_per_recipient():
    intent = parse_command("@monibot send $10 to @alice @bob @carol on tempo")
    assert intent.is_split_each is False
    assert intent.total_required == Decimal("30")
    assert intent.amount_per_recipient == Decimal("10")


def test_each_multiplies_total():
    intent = parse_command("@monibot send $5 each to @alice, @bob on tempo")
    assert intent.total_required == Decimal("10")
    assert intent.amount_per_recipient == Decimal("5")


@pytest.mark.parametrize("text,expected", [
    ("@monibot send $5 to @a", True),
    ("send 5 to @a", True),
    ("@monibot pay @bob $10", True),
    ("pay bob 3", True),
    ("look at @monibot on tempo, so cool", False),
    ("I sent alphausd yesterday", False),
])
def test_direct_command_pattern(text, expected):
    assert is_direct_command(text) is expected


def test_network_keywords():
    assert is_network_related("send $1 to @a on TEMPO")
    assert is_network_related("pay @a $1 in αUSD")
    assert not is_network_related("send $1 to @a on base")
