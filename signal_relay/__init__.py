"""Signal Relay: tiered delivery of trading signals with a persistent rate-limit gate."""
