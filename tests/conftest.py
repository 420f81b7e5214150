"""Shared fixtures for the Signal Relay test suite."""

import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest

from signal_relay.database import IMMUTABLE_SIGNAL_FIELDS
from signal_relay.exceptions import DatabaseError, ValidationError
from signal_relay.utils import parse_timestamp


# ---------------------------------------------------------------------------
# Ensure we don't hit real APIs during tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _block_env_keys(monkeypatch):
    """Clear all API keys so tests never hit real services."""
    keys = [
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "ANTHROPIC_API_KEY",
        "TWITTER_ACCESS_TOKEN",
        "TELEGRAM_BOT_TOKEN",
        "COINGECKO_API_KEY",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)


# ---------------------------------------------------------------------------
# Common datetime fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def sample_utc_now():
    """A fixed UTC datetime for deterministic tests."""
    return datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock(sample_utc_now):
    return FakeClock(sample_utc_now)


# ---------------------------------------------------------------------------
# In-memory Store
# ---------------------------------------------------------------------------
class InMemoryStore:
    """Dict-backed stand-in for ``SupabaseDB`` with the same method surface."""

    def __init__(self) -> None:
        self.signals: Dict[str, Dict[str, Any]] = {}
        self.scheduled_posts: Dict[str, Dict[str, Any]] = {}
        self.rate_limit_rows: Dict[str, Dict[str, Any]] = {}
        self.subscribers: Dict[str, List[str]] = {}
        self.rate_limit_writes: int = 0
        self.scheduled_post_updates: int = 0
        self.fail_inserts: bool = False

    # Signals
    def add_signal(self, **row: Any) -> Dict[str, Any]:
        self.signals[row["id"]] = dict(row)
        return self.signals[row["id"]]

    async def get_signal(self, signal_id: str) -> Optional[Dict[str, Any]]:
        row = self.signals.get(signal_id)
        return copy.deepcopy(row) if row else None

    async def get_open_signals(self, limit: int = 20) -> List[Dict[str, Any]]:
        rows = sorted(
            self.signals.values(),
            key=lambda r: r.get("created_at") or "",
            reverse=True,
        )
        return [copy.deepcopy(r) for r in rows[:limit]]

    async def update_signal(self, signal: Dict[str, Any]) -> None:
        touched = IMMUTABLE_SIGNAL_FIELDS & set(signal)
        if touched:
            raise ValidationError(f"signal prices are immutable: {sorted(touched)}")
        self.signals[signal["id"]].update(signal)

    # Scheduled posts
    async def create_scheduled_post(self, post: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail_inserts:
            raise DatabaseError("insert failed")
        self.scheduled_posts[post["id"]] = dict(post)
        return dict(post)

    async def get_pending_scheduled_posts(
        self, now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        due = [
            dict(row)
            for row in self.scheduled_posts.values()
            if row["status"] == "pending"
            and parse_timestamp(row["scheduled_for"]) <= now
        ]
        return sorted(due, key=lambda r: parse_timestamp(r["scheduled_for"]))

    async def update_scheduled_post(self, post: Dict[str, Any]) -> None:
        self.scheduled_post_updates += 1
        self.scheduled_posts[post["id"]].update(post)

    # Rate limit
    async def get_rate_limit_state(self, service: str) -> Optional[Dict[str, Any]]:
        row = self.rate_limit_rows.get(service)
        return dict(row) if row else None

    async def upsert_rate_limit_state(self, state: Dict[str, Any]) -> None:
        self.rate_limit_writes += 1
        self.rate_limit_rows[state["service"]] = dict(state)

    # Subscribers
    async def get_subscriber_chat_ids(self, tiers: Sequence[str]) -> List[str]:
        seen: List[str] = []
        for tier in tiers:
            for chat_id in self.subscribers.get(tier, []):
                if chat_id not in seen:
                    seen.append(chat_id)
        return seen


@pytest.fixture
def store():
    return InMemoryStore()


# ---------------------------------------------------------------------------
# Mock Supabase client
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_supabase_client():
    """A mock Supabase async client whose query chain returns itself."""
    client = MagicMock()
    table_mock = MagicMock()
    for method in (
        "select",
        "insert",
        "update",
        "upsert",
        "eq",
        "lte",
        "in_",
        "is_",
        "order",
        "limit",
    ):
        getattr(table_mock, method).return_value = table_mock
    table_mock.not_ = table_mock
    table_mock.execute = AsyncMock(return_value=MagicMock(data=[]))
    client.table.return_value = table_mock
    return client
