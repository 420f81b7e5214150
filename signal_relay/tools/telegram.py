"""
Telegram tier broadcaster (the messaging channel).

``TelegramBroadcaster`` pushes one piece of content to every subscriber of
the requested tiers through the Bot API.  It does **not** start long-polling,
so it can be embedded in any async service without side-effects.

Delivery is best-effort: a failure for one recipient is logged and counted,
never raised, so one blocked chat cannot stop a fan-out.  Configuration
errors (missing token) fail fast at construction time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from telegram import Bot
from telegram.error import TelegramError

from signal_relay.scheduling.models import Tier

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Telegram message limits (4096 hard limit, keep headroom for markup)
# ---------------------------------------------------------------------------
_CHUNK_LENGTH = 4000


def split_message(text: str, chunk_length: int = _CHUNK_LENGTH) -> List[str]:
    """Split *text* into consecutive chunks no longer than *chunk_length*."""
    if not text:
        return [text]
    return [text[i : i + chunk_length] for i in range(0, len(text), chunk_length)]


@dataclass
class BroadcastResult:
    """Per-call delivery tally."""

    recipients: int = 0
    sent: int = 0
    failed: int = 0
    failed_chat_ids: List[str] = field(default_factory=list)


class TelegramBroadcaster:
    """
    Best-effort fan-out of content to subscribers by tier.

    Args:
        bot_token: Telegram Bot API token (from BotFather).
        db: Store exposing ``get_subscriber_chat_ids(tiers)``.
        bot: Optional pre-built ``telegram.Bot`` (tests inject a mock).

    Usage::

        broadcaster = TelegramBroadcaster(token, db)
        await broadcaster.broadcast_to_tiers(text, [Tier.GOLD, Tier.DIAMOND])
    """

    def __init__(
        self,
        bot_token: str,
        db: "SupabaseDB",  # noqa: F821
        bot: Optional[Any] = None,
    ) -> None:
        if not bot_token and bot is None:
            raise ValueError("TelegramBroadcaster requires a non-empty bot_token")

        self.db = db
        self._bot: Any = bot if bot is not None else Bot(token=bot_token)

    async def broadcast_to_tiers(
        self, content: str, tiers: Sequence[Tier]
    ) -> BroadcastResult:
        """
        Send *content* to every distinct subscriber in *tiers*.

        Long messages are split into 4000-character chunks.  Recipients are
        de-duplicated by chat ID.  Per-recipient failures are logged and
        counted; they never propagate.

        Returns:
            A :class:`BroadcastResult` tally.
        """
        tier_values = [Tier.parse(t).value for t in tiers]
        result = BroadcastResult()

        try:
            chat_ids = await self.db.get_subscriber_chat_ids(tier_values)
        except Exception:
            logger.exception(
                "[TELEGRAM] Failed to fetch subscribers for tiers %s",
                ",".join(tier_values),
            )
            return result

        result.recipients = len(chat_ids)
        logger.info(
            "[TELEGRAM] Broadcasting to %s (%d users)...",
            ",".join(tier_values),
            len(chat_ids),
        )

        chunks = split_message(content)
        for chat_id in chat_ids:
            try:
                for chunk in chunks:
                    await self._bot.send_message(
                        chat_id=chat_id,
                        text=chunk,
                        parse_mode="Markdown",
                    )
                result.sent += 1
            except TelegramError as exc:
                result.failed += 1
                result.failed_chat_ids.append(chat_id)
                logger.warning("[TELEGRAM] Failed to send to %s: %s", chat_id, exc)
            except Exception:
                result.failed += 1
                result.failed_chat_ids.append(chat_id)
                logger.exception("[TELEGRAM] Unexpected error sending to %s", chat_id)

        if result.failed:
            logger.warning(
                "[TELEGRAM] Broadcast to %s finished with %d/%d failures",
                ",".join(tier_values),
                result.failed,
                result.recipients,
            )
        return result


__all__ = [
    "BroadcastResult",
    "TelegramBroadcaster",
    "split_message",
]
