"""
Signal data models: SignalStatus, Direction, Signal, TickReport.

A ``Signal`` is a trading call created upstream by the analysis step.  Its
``status`` is driven exclusively by the lifecycle monitor through the edges
declared in ``SignalStatus.ALLOWED_TRANSITIONS``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from signal_relay.exceptions import ValidationError
from signal_relay.utils import parse_timestamp


# =============================================================================
# STATUS
# =============================================================================


class SignalStatus(Enum):
    """Lifecycle status of a signal.

    Transitions:
        PENDING -> ACTIVE -> TP_HIT
                          -> SL_HIT
        PENDING | ACTIVE  -> CLOSED   (error-stop)
    """

    PENDING = "pending"
    ACTIVE = "active"
    TP_HIT = "tp_hit"
    SL_HIT = "sl_hit"
    CLOSED = "closed"

    @property
    def is_terminal(self) -> bool:
        """Check if status is terminal (no further transitions allowed)."""
        return self in {SignalStatus.TP_HIT, SignalStatus.SL_HIT, SignalStatus.CLOSED}

    def can_transition_to(self, target: "SignalStatus") -> bool:
        """Whether ``self -> target`` is an edge of the state machine."""
        return target in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: Dict[SignalStatus, FrozenSet[SignalStatus]] = {
    SignalStatus.PENDING: frozenset({SignalStatus.ACTIVE, SignalStatus.CLOSED}),
    SignalStatus.ACTIVE: frozenset(
        {SignalStatus.TP_HIT, SignalStatus.SL_HIT, SignalStatus.CLOSED}
    ),
    SignalStatus.TP_HIT: frozenset(),
    SignalStatus.SL_HIT: frozenset(),
    SignalStatus.CLOSED: frozenset(),
}

TERMINAL_STATUSES: FrozenSet[SignalStatus] = frozenset(
    status for status in SignalStatus if status.is_terminal
)


class Direction(Enum):
    """Trading direction of a signal."""

    LONG = "LONG"
    SHORT = "SHORT"


# =============================================================================
# SIGNAL
# =============================================================================


@dataclass
class Signal:
    """A trading call tracked by the lifecycle monitor.

    Entry, target and stop prices are immutable after creation; they are
    never part of :meth:`to_update_row`.
    """

    id: str
    token_symbol: str
    entry_price: float
    target_price: float
    stop_price: float
    status: SignalStatus = SignalStatus.PENDING
    direction: Direction = Direction.LONG
    confidence: Optional[float] = None

    # Token identity used for price lookups
    token_name: Optional[str] = None
    coingecko_id: Optional[str] = None
    chain: Optional[str] = None
    address: Optional[str] = None

    # Live tracking
    current_price: Optional[float] = None
    pnl_percent: Optional[float] = None
    r_multiple: Optional[float] = None
    closed_at: Optional[datetime] = None

    # Publishing
    formatted_content: Optional[str] = None
    error_message: Optional[str] = None
    telegram_delivered_at: Optional[datetime] = None
    public_posted_at: Optional[datetime] = None

    created_at: Optional[datetime] = None

    @property
    def price_identifier(self) -> str:
        """Identifier handed to the pricing oracle (CoinGecko id, else symbol)."""
        return self.coingecko_id or self.token_symbol

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_update_row(self) -> Dict[str, Any]:
        """Serialize the mutable columns for ``update_signal``."""
        return {
            "id": self.id,
            "status": self.status.value,
            "current_price": self.current_price,
            "pnl_percent": self.pnl_percent,
            "r_multiple": self.r_multiple,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "formatted_content": self.formatted_content,
            "error_message": self.error_message,
            "telegram_delivered_at": (
                self.telegram_delivered_at.isoformat()
                if self.telegram_delivered_at
                else None
            ),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Signal":
        """Build a ``Signal`` from a ``signals`` row dict.

        Raises:
            ValidationError: If identity or price columns are missing or
                non-numeric.
        """
        try:
            signal_id = row["id"]
            entry = float(row["entry_price"])
            target = float(row["target_price"])
            stop = float(row["stop_price"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(
                f"Malformed signal row {row.get('id', '?')}: {exc}"
            ) from exc

        try:
            status = SignalStatus(row.get("status") or SignalStatus.ACTIVE.value)
            direction = Direction(str(row.get("direction") or "LONG").upper())
        except ValueError as exc:
            raise ValidationError(f"Malformed signal row {signal_id}: {exc}") from exc

        return cls(
            id=signal_id,
            token_symbol=row.get("token_symbol") or "",
            entry_price=entry,
            target_price=target,
            stop_price=stop,
            status=status,
            direction=direction,
            confidence=_optional_float(row.get("confidence")),
            token_name=row.get("token_name"),
            coingecko_id=row.get("coingecko_id"),
            chain=row.get("chain"),
            address=row.get("address"),
            current_price=_optional_float(row.get("current_price")),
            pnl_percent=_optional_float(row.get("pnl_percent")),
            r_multiple=_optional_float(row.get("r_multiple")),
            closed_at=parse_timestamp(row.get("closed_at")),
            formatted_content=row.get("formatted_content"),
            error_message=row.get("error_message"),
            telegram_delivered_at=parse_timestamp(row.get("telegram_delivered_at")),
            public_posted_at=parse_timestamp(row.get("public_posted_at")),
            created_at=parse_timestamp(row.get("created_at")),
        )


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


# =============================================================================
# TICK REPORT
# =============================================================================


@dataclass
class TickReport:
    """Outcome of one lifecycle monitor tick.

    ``transitions`` records ``(signal_id, from_status, to_status)`` for every
    persisted status change; ``errors`` collects per-item failures that were
    logged and skipped, so they stay observable after the tick returns.
    """

    scanned: int = 0
    updated: int = 0
    skipped: int = 0
    transitions: List[tuple] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


__all__ = [
    "SignalStatus",
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "Direction",
    "Signal",
    "TickReport",
]
