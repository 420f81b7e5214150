"""
Signal lifecycle monitor.

Polls the most recent signals every tick, prices them through the oracle and
drives the status state machine:

    pending -> active    price within 0.5% of entry (long only); the alert
                         is generated and the activation stored, then it
                         is sent to GOLD/DIAMOND at once and scheduled for
                         SILVER and PUBLIC
    active  -> active    pnl / r-multiple refreshed every tick
    active  -> tp_hit    price >= target
    active  -> sl_hit    price <= stop
    any open -> closed   error-stop (content generation failed)

One bad signal never stops the tick: price, validation and scheduling
failures are logged, recorded in the returned ``TickReport`` and the next
signal is processed.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from signal_relay.exceptions import InvalidTransitionError, ValidationError
from signal_relay.scheduling.models import Tier
from signal_relay.signals.models import Direction, Signal, SignalStatus, TickReport
from signal_relay.utils import utc_now

logger = logging.getLogger(__name__)


# Tiers that receive the alert the moment an entry triggers
INSTANT_TIERS: Tuple[Tier, ...] = (Tier.GOLD, Tier.DIAMOND)

# Tiers that receive it later through the scheduler
DELAYED_TIERS: Tuple[Tier, ...] = (Tier.SILVER, Tier.PUBLIC)


def compute_pnl_percent(entry: float, price: float) -> float:
    """Unrealized PnL of a long position in percent of entry."""
    return round((price - entry) / entry * 100, 4)


def compute_r_multiple(entry: float, stop: float, price: float) -> float:
    """Reward-to-risk multiple reached at *price* (0 when risk is undefined)."""
    risk = entry - stop
    if risk <= 0:
        return 0.0
    return round((price - entry) / risk, 4)


class SignalLifecycleMonitor:
    """Drives every open signal through its state machine.

    Args:
        db: Store exposing ``get_open_signals`` and ``update_signal``.
        oracle: Pricing oracle exposing ``get_prices`` and ``get_price``.
        content_generator: Exposes ``generate(signal)``.
        telegram: Messaging publisher for the instant tiers, or ``None``.
        scheduler: ``PublishScheduler`` used for the delayed tiers.
        scan_limit: Size of the recent-signal window scanned each tick.
        entry_tolerance: Fractional slippage allowed above entry.
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        db: "SupabaseDB",  # noqa: F821
        oracle: "CoinGeckoClient",  # noqa: F821
        content_generator: "SignalWriterAgent",  # noqa: F821
        telegram: Optional["TelegramBroadcaster"],  # noqa: F821
        scheduler: "PublishScheduler",  # noqa: F821
        scan_limit: int = 20,
        entry_tolerance: float = 0.005,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.oracle = oracle
        self.content_generator = content_generator
        self.telegram = telegram
        self.scheduler = scheduler
        self.scan_limit = scan_limit
        self.entry_tolerance = entry_tolerance
        self._clock = clock

    # ================================================================
    # TICK
    # ================================================================

    async def tick(self) -> TickReport:
        """One monitor pass with a top-level catch.  Never raises."""
        try:
            return await self.check_signals()
        except Exception as exc:
            logger.exception("[MONITOR] Monitor tick failed")
            return TickReport(errors=[f"tick: {exc}"])

    async def check_signals(self) -> TickReport:
        """Scan the recent window and apply at most one transition per signal.

        Raises:
            DatabaseError: If the signal window cannot be loaded.
        """
        rows = await self.db.get_open_signals(self.scan_limit)
        report = TickReport()

        signals: List[Signal] = []
        for row in rows:
            try:
                signal = Signal.from_row(row)
            except ValidationError as exc:
                logger.warning("[MONITOR] Skipping malformed signal: %s", exc)
                report.skipped += 1
                report.errors.append(str(exc))
                continue
            if signal.is_terminal:
                continue
            signals.append(signal)

        report.scanned = len(signals)
        if not signals:
            return report

        prices = await self._prefetch_prices(s.price_identifier for s in signals)

        for signal in signals:
            try:
                await self._check_signal(signal, prices, report)
            except Exception as exc:
                logger.exception("[MONITOR] Error checking signal %s", signal.id)
                report.errors.append(f"{signal.id}: {exc}")

        if report.transitions:
            logger.info(
                "[MONITOR] Tick done: scanned=%d updated=%d transitions=%d",
                report.scanned,
                report.updated,
                len(report.transitions),
            )
        return report

    # ================================================================
    # PER-SIGNAL
    # ================================================================

    async def _check_signal(
        self, signal: Signal, prices: Dict[str, float], report: TickReport
    ) -> None:
        try:
            self._validate(signal)
        except ValidationError as exc:
            logger.warning("[MONITOR] Signal %s invalid: %s", signal.id, exc)
            report.skipped += 1
            report.errors.append(f"{signal.id}: {exc}")
            return

        price = await self._price_for(signal, prices, report)
        if price is None:
            report.skipped += 1
            return

        if signal.status is SignalStatus.PENDING:
            await self._check_pending(signal, price, report)
        elif signal.status is SignalStatus.ACTIVE:
            await self._check_active(signal, price, report)

    async def _check_pending(
        self, signal: Signal, price: float, report: TickReport
    ) -> None:
        if signal.direction is Direction.SHORT:
            logger.warning(
                "[MONITOR] Signal %s is a SHORT pending order, not tracked", signal.id
            )
            report.skipped += 1
            return

        trigger = signal.entry_price * (1 + self.entry_tolerance)
        if price > trigger:
            return

        logger.info(
            "[MONITOR] Entry hit for $%s at %s (entry %s)",
            signal.token_symbol,
            price,
            signal.entry_price,
        )
        signal.current_price = price

        # Content already went out when the limit order was placed
        if signal.formatted_content:
            change = self._transition(signal, SignalStatus.ACTIVE)
            await self._persist(signal, report, change)
            return

        try:
            content = await self.content_generator.generate(signal)
        except Exception as exc:
            logger.error(
                "[MONITOR] Content generation failed for %s, closing: %s",
                signal.id,
                exc,
            )
            await self.close_signal(signal, f"content generation failed: {exc}", report)
            return

        # Activation must be stored before any fan-out
        signal.formatted_content = content
        change = self._transition(signal, SignalStatus.ACTIVE)
        await self._persist(signal, report, change)

        await self._deliver_instant(signal, content, report)
        await self._schedule_delayed(signal, content, report)

        if signal.telegram_delivered_at is not None:
            try:
                await self.db.update_signal(
                    {
                        "id": signal.id,
                        "telegram_delivered_at": signal.telegram_delivered_at.isoformat(),
                    }
                )
            except Exception as exc:
                logger.exception(
                    "[MONITOR] Failed to record delivery time for %s", signal.id
                )
                report.errors.append(f"{signal.id}: delivery stamp: {exc}")

    async def _check_active(
        self, signal: Signal, price: float, report: TickReport
    ) -> None:
        signal.current_price = price
        signal.pnl_percent = compute_pnl_percent(signal.entry_price, price)
        signal.r_multiple = compute_r_multiple(
            signal.entry_price, signal.stop_price, price
        )

        change = None
        if price >= signal.target_price:
            change = self._transition(signal, SignalStatus.TP_HIT)
        elif price <= signal.stop_price:
            change = self._transition(signal, SignalStatus.SL_HIT)

        if change is not None:
            signal.closed_at = self._clock()
            logger.info(
                "[MONITOR] $%s %s at %s (pnl %.2f%%)",
                signal.token_symbol,
                signal.status.value,
                price,
                signal.pnl_percent,
            )

        await self._persist(signal, report, change)

    async def close_signal(
        self,
        signal: Signal,
        reason: str,
        report: Optional[TickReport] = None,
    ) -> None:
        """Error-stop: move an open signal to ``closed`` with *reason*.

        Raises:
            InvalidTransitionError: If the signal is already terminal.
        """
        change = self._transition(signal, SignalStatus.CLOSED)
        signal.error_message = reason
        signal.closed_at = self._clock()
        await self._persist(signal, report or TickReport(), change)

    # ================================================================
    # FAN-OUT
    # ================================================================

    async def _deliver_instant(
        self, signal: Signal, content: str, report: TickReport
    ) -> None:
        if self.telegram is None:
            logger.warning(
                "[MONITOR] No messaging channel configured, %s not sent to %s",
                signal.id,
                ",".join(t.value for t in INSTANT_TIERS),
            )
            return

        try:
            await self.telegram.broadcast_to_tiers(content, list(INSTANT_TIERS))
        except Exception as exc:
            logger.exception("[MONITOR] Instant delivery failed for %s", signal.id)
            report.errors.append(f"{signal.id}: instant delivery: {exc}")
            return
        signal.telegram_delivered_at = self._clock()

    async def _schedule_delayed(
        self, signal: Signal, content: str, report: TickReport
    ) -> None:
        for tier in DELAYED_TIERS:
            try:
                await self.scheduler.schedule_post(signal.id, tier, content)
            except Exception as exc:
                logger.exception(
                    "[MONITOR] Failed to schedule %s post for %s", tier.value, signal.id
                )
                report.errors.append(f"{signal.id}: schedule {tier.value}: {exc}")

    # ================================================================
    # HELPERS
    # ================================================================

    def _validate(self, signal: Signal) -> None:
        if signal.entry_price <= 0:
            raise ValidationError(f"entry_price must be positive, got {signal.entry_price}")
        if not signal.price_identifier:
            raise ValidationError("signal has no token symbol or coingecko id")

    def _transition(
        self, signal: Signal, target: SignalStatus
    ) -> Tuple[SignalStatus, SignalStatus]:
        """Apply a state-machine edge in memory.

        Raises:
            InvalidTransitionError: If ``status -> target`` is not an edge.
        """
        current = signal.status
        if not current.can_transition_to(target):
            raise InvalidTransitionError(signal.id, current.value, target.value)
        signal.status = target
        return current, target

    async def _persist(
        self,
        signal: Signal,
        report: TickReport,
        change: Optional[Tuple[SignalStatus, SignalStatus]] = None,
    ) -> None:
        await self.db.update_signal(signal.to_update_row())
        report.updated += 1
        if change is not None:
            report.transitions.append((signal.id, change[0].value, change[1].value))

    async def _prefetch_prices(self, identifiers: Iterable[str]) -> Dict[str, float]:
        unique = list(dict.fromkeys(identifiers))
        try:
            return await self.oracle.get_prices(unique)
        except Exception as exc:
            logger.warning("[MONITOR] Batch price fetch failed: %s", exc)
            return {}

    async def _price_for(
        self, signal: Signal, prices: Dict[str, float], report: TickReport
    ) -> Optional[float]:
        identifier = signal.price_identifier
        if identifier in prices:
            return prices[identifier]

        try:
            price = await self.oracle.get_price(identifier)
        except Exception as exc:
            logger.warning(
                "[MONITOR] Price fetch failed for %s (%s): %s", signal.id, identifier, exc
            )
            report.errors.append(f"{signal.id}: price: {exc}")
            return None

        if price is None:
            logger.debug("[MONITOR] No price for %s this tick", identifier)
        return price


__all__ = [
    "SignalLifecycleMonitor",
    "compute_pnl_percent",
    "compute_r_multiple",
    "INSTANT_TIERS",
    "DELAYED_TIERS",
]
