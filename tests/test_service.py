"""Tests for SignalRelayService: startup, loop bookkeeping and shutdown."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from signal_relay.config import Settings
from signal_relay.exceptions import ConfigurationError
from signal_relay.scheduling.models import ProcessReport
from signal_relay.service import SCHEDULER, MONITOR, SignalRelayService, build_service
from signal_relay.signals.models import TickReport


@pytest.fixture
def gate():
    mock = MagicMock()
    mock.initialize = AsyncMock()
    mock.get_status.return_value = {"is_rate_limited": False}
    return mock


@pytest.fixture
def monitor():
    mock = MagicMock()
    mock.tick = AsyncMock(return_value=TickReport(scanned=1))
    return mock


@pytest.fixture
def scheduler():
    mock = MagicMock()
    mock.tick = AsyncMock(return_value=ProcessReport(due=2, posted=2))
    return mock


@pytest.fixture
def service(gate, monitor, scheduler):
    return SignalRelayService(gate, monitor, scheduler, interval_seconds=60)


@pytest.mark.asyncio
async def test_run_once_records_result(service, monitor):
    report = await service.run_once(MONITOR, monitor.tick)
    assert service.last_results[MONITOR] is report
    assert service.failure_counts[MONITOR] == 0


@pytest.mark.asyncio
async def test_failure_counts_track_consecutive_error_ticks(service, scheduler):
    scheduler.tick.side_effect = [
        ProcessReport(errors=["p1: boom"]),
        ProcessReport(errors=["p2: boom"]),
        ProcessReport(),
    ]

    await service.run_once(SCHEDULER, scheduler.tick)
    await service.run_once(SCHEDULER, scheduler.tick)
    assert service.failure_counts[SCHEDULER] == 2

    await service.run_once(SCHEDULER, scheduler.tick)
    assert service.failure_counts[SCHEDULER] == 0


@pytest.mark.asyncio
async def test_start_initializes_gate_and_runs_both_loops(service, gate, monitor, scheduler):
    await service.start()
    # let both tasks run their first tick before the interval sleep
    for _ in range(5):
        await asyncio.sleep(0)
    await service.stop()

    gate.initialize.assert_awaited_once()
    monitor.tick.assert_awaited()
    scheduler.tick.assert_awaited()
    assert set(service.last_results) == {MONITOR, SCHEDULER}
    assert service._tasks == []


@pytest.mark.asyncio
async def test_gate_failure_aborts_start(service, gate, monitor):
    gate.initialize.side_effect = RuntimeError("db down")
    with pytest.raises(RuntimeError):
        await service.start()
    monitor.tick.assert_not_awaited()


@pytest.mark.asyncio
async def test_build_service_wires_components(store, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    settings = Settings(tick_interval_seconds=5, silver_delay_minutes=10)

    service = await build_service(settings, db=store)

    assert service.interval_seconds == 5
    assert service.scheduler.silver_delay_minutes == 10
    assert service.scheduler.telegram is None
    assert service.monitor.scheduler is service.scheduler
    assert service.rate_limit_gate.db is store


@pytest.mark.asyncio
async def test_build_service_without_llm_key_is_a_configuration_error(store):
    with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY"):
        await build_service(Settings(), db=store)
