"""Tests for TelegramBroadcaster: tier fan-out, chunking, failure isolation."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.error import Forbidden

from signal_relay.scheduling.models import Tier
from signal_relay.tools.telegram import TelegramBroadcaster, split_message


@pytest.fixture
def bot():
    mock = MagicMock()
    mock.send_message = AsyncMock()
    return mock


@pytest.fixture
def broadcaster(store, bot):
    store.subscribers = {"GOLD": ["1", "2"], "DIAMOND": ["2", "3"]}
    return TelegramBroadcaster("", store, bot=bot)


def test_requires_token_or_bot(store):
    with pytest.raises(ValueError):
        TelegramBroadcaster("", store)


def test_split_message_chunks():
    chunks = split_message("a" * 8500)
    assert [len(c) for c in chunks] == [4000, 4000, 500]
    assert split_message("short") == ["short"]


@pytest.mark.asyncio
async def test_broadcast_dedupes_recipients(broadcaster, bot):
    result = await broadcaster.broadcast_to_tiers("hello", [Tier.GOLD, Tier.DIAMOND])

    sent_to = [c.kwargs["chat_id"] for c in bot.send_message.await_args_list]
    assert sent_to == ["1", "2", "3"]
    assert (result.recipients, result.sent, result.failed) == (3, 3, 0)


@pytest.mark.asyncio
async def test_broadcast_accepts_tier_names(broadcaster, bot):
    await broadcaster.broadcast_to_tiers("hello", ["gold"])
    assert bot.send_message.await_count == 2


@pytest.mark.asyncio
async def test_long_message_sent_in_chunks(broadcaster, bot, store):
    store.subscribers = {"SILVER": ["9"]}
    await broadcaster.broadcast_to_tiers("x" * 4500, [Tier.SILVER])
    assert [len(c.kwargs["text"]) for c in bot.send_message.await_args_list] == [4000, 500]


@pytest.mark.asyncio
async def test_failed_recipient_does_not_stop_fanout(broadcaster, bot):
    bot.send_message.side_effect = [Forbidden("blocked"), None, None]

    result = await broadcaster.broadcast_to_tiers("hello", [Tier.GOLD, Tier.DIAMOND])

    assert result.failed == 1
    assert result.sent == 2
    assert result.failed_chat_ids == ["1"]


@pytest.mark.asyncio
async def test_unexpected_send_error_does_not_stop_fanout(broadcaster, bot):
    bot.send_message.side_effect = [None, RuntimeError("socket closed"), None]

    result = await broadcaster.broadcast_to_tiers("hello", [Tier.GOLD, Tier.DIAMOND])

    assert bot.send_message.await_count == 3
    assert (result.sent, result.failed) == (2, 1)
    assert result.failed_chat_ids == ["2"]


@pytest.mark.asyncio
async def test_subscriber_lookup_failure_returns_empty(broadcaster, store, bot):
    store.get_subscriber_chat_ids = AsyncMock(side_effect=RuntimeError("db down"))
    result = await broadcaster.broadcast_to_tiers("hello", [Tier.GOLD])
    assert result.recipients == 0
    bot.send_message.assert_not_awaited()
