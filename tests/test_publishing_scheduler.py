"""Tests for PublishScheduler: scheduling delays and due-post processing."""

import random
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from signal_relay.exceptions import (
    AuthError,
    ContentTooLongError,
    DatabaseError,
    QuotaExceededError,
    ValidationError,
)
from signal_relay.scheduling.publishing_scheduler import PublishScheduler
from signal_relay.scheduling.models import PostStatus, Tier
from signal_relay.scheduling.rate_limit_gate import RateLimitGate
from signal_relay.utils import parse_timestamp


@pytest.fixture
def gate(store, clock):
    return RateLimitGate(store, clock=clock)


@pytest.fixture
def twitter():
    client = MagicMock()
    client.post_tweet = AsyncMock(return_value="tweet-1")
    return client


@pytest.fixture
def telegram():
    broadcaster = MagicMock()
    broadcaster.broadcast_to_tiers = AsyncMock()
    return broadcaster


@pytest.fixture
def writer():
    agent = MagicMock()
    agent.shorten = AsyncMock(return_value="$SOL short")
    return agent


@pytest.fixture
def scheduler(store, gate, twitter, telegram, writer, clock):
    return PublishScheduler(
        store,
        gate,
        twitter,
        telegram,
        writer,
        clock=clock,
        rng=random.Random(7),
    )


def _add_signal(store, signal_id="sig-1"):
    store.add_signal(
        id=signal_id,
        token_symbol="SOL",
        entry_price=100,
        target_price=120,
        stop_price=90,
        status="active",
    )


# =============================================================================
# schedule_post()
# =============================================================================


class TestSchedulePost:
    @pytest.mark.asyncio
    async def test_silver_fixed_delay(self, scheduler, store, clock):
        post = await scheduler.schedule_post("sig-1", Tier.SILVER, "hello")
        assert post.scheduled_for == clock.now + timedelta(minutes=15)
        assert post.status is PostStatus.PENDING
        assert store.scheduled_posts[post.id]["tier"] == "SILVER"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tier", [Tier.GOLD, Tier.DIAMOND])
    async def test_instant_tiers_have_no_delay(self, scheduler, clock, tier):
        post = await scheduler.schedule_post("sig-1", tier, "hello")
        assert post.scheduled_for == clock.now

    @pytest.mark.asyncio
    async def test_override_wins(self, scheduler, clock):
        post = await scheduler.schedule_post("sig-1", "public", "hello", delay_override=3)
        assert post.tier is Tier.PUBLIC
        assert post.scheduled_for == clock.now + timedelta(minutes=3)

    @pytest.mark.asyncio
    async def test_public_delays_spread_across_window(self, scheduler, clock):
        delays = set()
        for _ in range(1000):
            post = await scheduler.schedule_post("sig-1", Tier.PUBLIC, "hello")
            minutes = (post.scheduled_for - clock.now).total_seconds() / 60
            assert 30 <= minutes <= 60
            delays.add(minutes)
        # re-rolled per call, not one fixed value
        assert min(delays) <= 32
        assert max(delays) >= 58
        assert len(delays) > 20

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "args",
        [("", Tier.SILVER, "x"), ("sig-1", "BRONZE", "x"), ("sig-1", Tier.SILVER, "  ")],
        ids=["no-signal", "bad-tier", "blank-content"],
    )
    async def test_rejects_bad_input(self, scheduler, args):
        with pytest.raises(ValidationError):
            await scheduler.schedule_post(*args)

    @pytest.mark.asyncio
    async def test_negative_override_rejected(self, scheduler):
        with pytest.raises(ValidationError):
            await scheduler.schedule_post("sig-1", Tier.SILVER, "x", delay_override=-1)

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, scheduler, store):
        store.fail_inserts = True
        with pytest.raises(DatabaseError):
            await scheduler.schedule_post("sig-1", Tier.SILVER, "x")


# =============================================================================
# process_pending_posts()
# =============================================================================


class TestProcessPendingPosts:
    @pytest.mark.asyncio
    async def test_nothing_due(self, scheduler, store, clock):
        await scheduler.schedule_post("sig-1", Tier.SILVER, "later")
        report = await scheduler.process_pending_posts()
        assert report.due == 0
        assert store.scheduled_post_updates == 0

    @pytest.mark.asyncio
    async def test_silver_delivered_through_messaging(self, scheduler, store, telegram, clock):
        post = await scheduler.schedule_post("sig-1", Tier.SILVER, "hello silver")
        clock.advance(minutes=15)

        report = await scheduler.process_pending_posts()

        telegram.broadcast_to_tiers.assert_awaited_once_with("hello silver", [Tier.SILVER])
        assert report.posted == 1
        row = store.scheduled_posts[post.id]
        assert row["status"] == "posted"
        assert parse_timestamp(row["posted_at"]) == clock.now

    @pytest.mark.asyncio
    async def test_second_run_changes_nothing(self, scheduler, store, clock):
        await scheduler.schedule_post("sig-1", Tier.SILVER, "hello")
        clock.advance(minutes=15)
        await scheduler.process_pending_posts()
        snapshot = {k: dict(v) for k, v in store.scheduled_posts.items()}
        updates = store.scheduled_post_updates

        report = await scheduler.process_pending_posts()

        assert report.due == 0
        assert store.scheduled_posts == snapshot
        assert store.scheduled_post_updates == updates

    @pytest.mark.asyncio
    async def test_public_posted_stamps_signal(self, scheduler, store, twitter, clock):
        _add_signal(store)
        post = await scheduler.schedule_post("sig-1", Tier.PUBLIC, "$SOL hit", delay_override=0)

        report = await scheduler.process_pending_posts()

        twitter.post_tweet.assert_awaited_once_with("$SOL hit")
        assert report.posted == 1
        assert store.scheduled_posts[post.id]["tweet_id"] == "tweet-1"
        assert parse_timestamp(store.signals["sig-1"]["public_posted_at"]) == clock.now

    @pytest.mark.asyncio
    async def test_public_posted_at_is_set_once(self, scheduler, store, clock):
        _add_signal(store)
        store.signals["sig-1"]["public_posted_at"] = "2025-01-01T00:00:00+00:00"
        await scheduler.schedule_post("sig-1", Tier.PUBLIC, "$SOL", delay_override=0)

        await scheduler.process_pending_posts()

        assert store.signals["sig-1"]["public_posted_at"] == "2025-01-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_gate_closed_leaves_pending(self, scheduler, gate, store, twitter, clock):
        await gate.initialize()
        await gate.mark_rate_limited(user_reset=clock.now + timedelta(hours=1))
        post = await scheduler.schedule_post("sig-1", Tier.PUBLIC, "$SOL", delay_override=0)

        report = await scheduler.process_pending_posts()

        twitter.post_tweet.assert_not_awaited()
        assert report.deferred == 1
        assert store.scheduled_posts[post.id]["status"] == "pending"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "outcome",
        [None, QuotaExceededError("429")],
        ids=["not-sent", "quota"],
    )
    async def test_try_later_outcomes_leave_pending(self, scheduler, store, twitter, outcome):
        if isinstance(outcome, Exception):
            twitter.post_tweet.side_effect = outcome
        else:
            twitter.post_tweet.return_value = outcome
        post = await scheduler.schedule_post("sig-1", Tier.PUBLIC, "$SOL", delay_override=0)

        report = await scheduler.process_pending_posts()

        assert report.deferred == 1
        assert store.scheduled_posts[post.id]["status"] == "pending"

    @pytest.mark.asyncio
    async def test_too_long_then_shortened_success(self, scheduler, store, twitter, writer):
        _add_signal(store)
        twitter.post_tweet.side_effect = [ContentTooLongError("too long"), "tweet-2"]
        post = await scheduler.schedule_post("sig-1", Tier.PUBLIC, "$SOL long text", delay_override=0)

        report = await scheduler.process_pending_posts()

        writer.shorten.assert_awaited_once_with("$SOL long text", rejected=True)
        assert twitter.post_tweet.await_args_list[-1].args == ("$SOL short",)
        assert len(store.scheduled_posts) == 1
        row = store.scheduled_posts[post.id]
        assert row["status"] == "posted"
        assert row["content"] == "$SOL short"
        assert row["tweet_id"] == "tweet-2"
        assert report.posted == 1

    @pytest.mark.asyncio
    async def test_too_long_twice_fails(self, scheduler, store, twitter):
        twitter.post_tweet.side_effect = [
            ContentTooLongError("too long"),
            ContentTooLongError("still too long"),
        ]
        post = await scheduler.schedule_post("sig-1", Tier.PUBLIC, "$SOL", delay_override=0)

        report = await scheduler.process_pending_posts()

        row = store.scheduled_posts[post.id]
        assert row["status"] == "failed"
        assert "still too long" in row["error_message"]
        assert row["content"] == "$SOL"
        assert report.failed == 1

    @pytest.mark.asyncio
    async def test_auth_error_fails_without_retry(self, scheduler, store, twitter):
        twitter.post_tweet.side_effect = AuthError("401")
        post = await scheduler.schedule_post("sig-1", Tier.PUBLIC, "$SOL", delay_override=0)

        await scheduler.process_pending_posts()

        assert twitter.post_tweet.await_count == 1
        assert store.scheduled_posts[post.id]["status"] == "failed"
        assert store.scheduled_posts[post.id]["error_message"] == "401"

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_batch(self, scheduler, store, twitter, telegram, clock):
        twitter.post_tweet.side_effect = AuthError("401")
        public = await scheduler.schedule_post("sig-1", Tier.PUBLIC, "$SOL", delay_override=0)
        clock.advance(seconds=1)
        silver = await scheduler.schedule_post("sig-1", Tier.SILVER, "hi", delay_override=0)
        clock.advance(seconds=1)

        report = await scheduler.process_pending_posts()

        assert store.scheduled_posts[public.id]["status"] == "failed"
        assert store.scheduled_posts[silver.id]["status"] == "posted"
        assert (report.failed, report.posted) == (1, 1)

    @pytest.mark.asyncio
    async def test_no_messaging_channel_leaves_pending(self, store, gate, twitter, writer, clock):
        scheduler = PublishScheduler(store, gate, twitter, None, writer, clock=clock)
        post = await scheduler.schedule_post("sig-1", Tier.SILVER, "hi", delay_override=0)

        report = await scheduler.process_pending_posts()

        assert report.deferred == 1
        assert store.scheduled_posts[post.id]["status"] == "pending"


@pytest.mark.asyncio
async def test_tick_catches_store_failure(scheduler, store):
    store.get_pending_scheduled_posts = AsyncMock(side_effect=DatabaseError("down"))
    report = await scheduler.tick()
    assert report.errors == ["tick: down"]
