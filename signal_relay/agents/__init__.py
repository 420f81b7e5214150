"""Agent implementations for Signal Relay."""

from signal_relay.agents.writer import SignalWriterAgent, create_writer

__all__ = [
    "SignalWriterAgent",
    "create_writer",
]
