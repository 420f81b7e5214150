"""Signal models and the lifecycle monitor that drives their state machine."""

from signal_relay.signals.lifecycle_monitor import SignalLifecycleMonitor
from signal_relay.signals.models import (
    ALLOWED_TRANSITIONS,
    Direction,
    Signal,
    SignalStatus,
    TickReport,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Direction",
    "Signal",
    "SignalStatus",
    "TickReport",
    "SignalLifecycleMonitor",
]
