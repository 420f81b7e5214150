"""
Unified async database client for all Signal Relay operations.

ALL database operations go through the SupabaseDB class defined here.
No direct Supabase calls should appear anywhere else in the codebase.

Tables:
    - ``signals``: trading calls and their live tracking columns
    - ``scheduled_posts``: deferred tier deliveries
    - ``rate_limit_state``: one row per social channel (keyed by ``service``)
    - ``users``: subscribers with their ``tier`` and ``telegram_user_id``

Usage::

    from signal_relay.database import SupabaseDB, get_db

    # In async context:
    db = await get_db()
    rows = await db.get_pending_scheduled_posts()
"""

import asyncio
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set, Union

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient, create_async_client

from signal_relay.exceptions import DatabaseError, ValidationError
from signal_relay.utils import utc_now

logger = logging.getLogger(__name__)

# Columns a signal update must never carry (set once at creation)
IMMUTABLE_SIGNAL_FIELDS: Set[str] = {"entry_price", "target_price", "stop_price"}


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def validate_not_empty(value: Any, name: str) -> None:
    """Validate that *value* is not ``None`` or an empty string.

    Raises:
        ValidationError: If *value* is ``None`` or a blank string.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{name} cannot be empty string")


def validate_positive(value: Union[int, float], name: str) -> None:
    """Validate that *value* is strictly positive (> 0).

    Raises:
        ValidationError: If *value* is ``None`` or not positive.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SupabaseConfig:
    """Supabase configuration loaded from environment variables.

    Attributes:
        url: The Supabase project URL (``SUPABASE_URL``).
        key: The service-role key for full server-side access
            (``SUPABASE_SERVICE_KEY``).
    """

    url: str
    key: str

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Create a config instance from environment variables.

        Raises:
            ValueError: If either variable is missing or empty.
        """
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"
            )

        return cls(url=url, key=key)


# =============================================================================
# SUPABASE DATABASE CLIENT
# =============================================================================


class SupabaseDB:
    """Unified **async** database client (the Store).

    **Important:** Use the :meth:`create` factory method instead of
    ``__init__`` directly -- the underlying async client requires an
    ``await`` during initialisation.
    """

    def __init__(self, client: AsyncClient) -> None:
        """Private constructor.  Use :meth:`create` factory method."""
        self.client = client

    @classmethod
    async def create(
        cls, config: Optional[SupabaseConfig] = None
    ) -> "SupabaseDB":
        """Factory method to create an async :class:`SupabaseDB` instance.

        Args:
            config: Optional configuration.  When ``None``,
                :meth:`SupabaseConfig.from_env` is used.
        """
        config = config or SupabaseConfig.from_env()
        client = await create_async_client(config.url, config.key)
        return cls(client)

    async def _execute(self, query: Any, table: str) -> Any:
        """Run a built query, raising ``DatabaseError`` if Supabase fails."""
        try:
            return await query.execute()
        except (APIError, httpx.HTTPError) as exc:
            logger.error("Supabase query on %s failed: %s", table, exc)
            raise DatabaseError(f"Query on {table} failed: {exc}") from exc

    # -----------------------------------------------------------------
    # SIGNALS
    # -----------------------------------------------------------------

    async def get_signal(self, signal_id: str) -> Optional[Dict[str, Any]]:
        """Get a signal by ID.

        Returns:
            Signal row dict or ``None`` if not found.
        """
        validate_not_empty(signal_id, "signal_id")

        result = await self._execute(
            self.client.table("signals")
            .select("*")
            .eq("id", signal_id),
            "signals",
        )
        return result.data[0] if result.data else None

    async def get_open_signals(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Get the most recent signals, newest first.

        This is the bounded window the lifecycle monitor scans each tick;
        rows that are already terminal are left for the caller to skip.

        Args:
            limit: Maximum number of signals to return (must be > 0).
        """
        validate_positive(limit, "limit")

        result = await self._execute(
            self.client.table("signals")
            .select("*")
            .order("created_at", desc=True)
            .limit(limit),
            "signals",
        )
        return result.data or []

    async def update_signal(self, signal: Dict[str, Any]) -> None:
        """Update the mutable columns of a signal.

        Args:
            signal: Dict containing ``id`` and the fields to update.

        Raises:
            ValidationError: If *signal* lacks ``id`` or tries to change an
                entry / target / stop price.
        """
        if not signal:
            raise ValidationError("signal cannot be None or empty")
        if "id" not in signal:
            raise ValidationError("signal must have 'id' for update")
        touched = IMMUTABLE_SIGNAL_FIELDS & set(signal.keys())
        if touched:
            raise ValidationError(
                f"signal prices are immutable, refusing to update {sorted(touched)}"
            )

        await self._execute(
            self.client.table("signals")
            .update(signal)
            .eq("id", signal["id"]),
            "signals",
        )

    # -----------------------------------------------------------------
    # SCHEDULED POSTS
    # -----------------------------------------------------------------

    async def create_scheduled_post(
        self, post: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Insert a scheduled post.

        Args:
            post: Row dict.  Must contain ``signal_id``, ``tier``,
                ``content``, ``scheduled_for`` and ``status``.

        Returns:
            The inserted row.

        Raises:
            ValidationError: On missing fields.
            DatabaseError: When the insert returns no data.
        """
        if not post:
            raise ValidationError(
                "scheduled post cannot be None or empty"
            )

        required_fields: Set[str] = {
            "signal_id",
            "tier",
            "content",
            "scheduled_for",
            "status",
        }
        missing = required_fields - set(post.keys())
        if missing:
            raise ValidationError(
                f"scheduled post missing required fields: {missing}"
            )

        result = await self._execute(
            self.client.table("scheduled_posts")
            .insert(post),
            "scheduled_posts",
        )
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]

    async def get_pending_scheduled_posts(
        self, now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """Get posts that are due for delivery.

        Returns all posts with status ``"pending"`` whose ``scheduled_for``
        is at or before *now* (default: current UTC time), ordered by
        ``scheduled_for`` ascending.
        """
        cutoff = (now or utc_now()).isoformat()
        result = await self._execute(
            self.client.table("scheduled_posts")
            .select("*")
            .eq("status", "pending")
            .lte("scheduled_for", cutoff)
            .order("scheduled_for", desc=False),
            "scheduled_posts",
        )
        return result.data or []

    async def update_scheduled_post(
        self, post: Dict[str, Any]
    ) -> None:
        """Update a scheduled post.

        Args:
            post: Dict containing at least ``id`` and the fields to
                update.

        Raises:
            ValidationError: If *post* is empty or lacks ``id``.
        """
        if not post:
            raise ValidationError(
                "scheduled post cannot be None or empty"
            )
        if "id" not in post:
            raise ValidationError(
                "scheduled post must have 'id' for update"
            )

        await self._execute(
            self.client.table("scheduled_posts")
            .update(post)
            .eq("id", post["id"]),
            "scheduled_posts",
        )

    # -----------------------------------------------------------------
    # RATE LIMIT STATE
    # -----------------------------------------------------------------

    async def get_rate_limit_state(
        self, service: str
    ) -> Optional[Dict[str, Any]]:
        """Get the rate-limit row for a channel, or ``None`` if absent."""
        validate_not_empty(service, "service")

        result = await self._execute(
            self.client.table("rate_limit_state")
            .select("*")
            .eq("service", service)
            .limit(1),
            "rate_limit_state",
        )
        return result.data[0] if result.data else None

    async def upsert_rate_limit_state(self, state: Dict[str, Any]) -> None:
        """Insert or update the rate-limit row keyed on ``service``.

        Raises:
            ValidationError: If *state* lacks ``service``.
        """
        if not state or not state.get("service"):
            raise ValidationError("rate limit state must have 'service'")

        await self._execute(
            self.client.table("rate_limit_state")
            .upsert(state, on_conflict="service"),
            "rate_limit_state",
        )

    # -----------------------------------------------------------------
    # SUBSCRIBERS
    # -----------------------------------------------------------------

    async def get_subscriber_chat_ids(
        self, tiers: Sequence[str]
    ) -> List[str]:
        """Get distinct Telegram chat IDs of users in any of *tiers*.

        Returns:
            De-duplicated chat IDs in first-seen order.
        """
        if not tiers:
            return []

        result = await self._execute(
            self.client.table("users")
            .select("telegram_user_id")
            .in_("tier", list(tiers))
            .not_.is_("telegram_user_id", "null"),
            "users",
        )

        seen: Set[str] = set()
        chat_ids: List[str] = []
        for row in result.data or []:
            chat_id = row.get("telegram_user_id")
            if chat_id is None:
                continue
            key = str(chat_id)
            if key not in seen:
                seen.add(key)
                chat_ids.append(key)
        return chat_ids


# =============================================================================
# GLOBAL DATABASE INSTANCE (Singleton)
# =============================================================================

# One async connection for the host process.
_db_instance: Optional[SupabaseDB] = None
_db_lock: Optional[asyncio.Lock] = None

# Thread lock for safe initialisation of the async lock itself.
_init_lock = threading.Lock()


async def get_db() -> SupabaseDB:
    """Get the process-wide async database instance.

    Components never call this themselves; the host driver resolves the
    store once and injects it.
    """
    global _db_instance, _db_lock

    if _db_lock is None:
        with _init_lock:
            if _db_lock is None:
                _db_lock = asyncio.Lock()

    if _db_instance is None:
        async with _db_lock:
            if _db_instance is None:
                _db_instance = await SupabaseDB.create()

    return _db_instance
