"""Tests for sunpoll.services.device.poller."""

import asyncio
from datetime import timedelta

import pytest

from conftest import SleepRecorder, T0, Words
from sunpoll.common.exceptions import ConnectionLostError
from sunpoll.services.device import layouts
from sunpoll.services.device.poller import PollScheduler
from sunpoll.services.device.register_map import DEFAULT_RANGES, RegisterRange

FAST = RegisterRange("Meter", 37100, 37139, timedelta(seconds=10), layouts.METER)
SLOW = RegisterRange("Cumulative 1", 32106, 32120, timedelta(minutes=2), layouts.CUMULATIVE_1)


def _meter_registers(active_power):
    return (
        Words().u16(1).zeros(12).i32(active_power).zeros(24)
    ).registers


@pytest.fixture
def poll_setup(make_manager, clock):
    """Connected manager plus scheduler over the given ranges."""
    def _setup(ranges=(FAST, SLOW), sleep=None):
        manager = make_manager(ranges)
        asyncio.run(manager.connect())
        scheduler = PollScheduler(
            manager.context,
            manager,
            sleep_s=5.0,
            clock=clock,
            sleep=sleep or SleepRecorder(),
        )
        return manager.context, scheduler
    return _setup


class TestRunPass:

    def test_first_pass_reads_everything(self, poll_setup, factory):
        context, scheduler = poll_setup(DEFAULT_RANGES)

        summary = asyncio.run(scheduler.run_pass())

        assert summary.attempted == len(DEFAULT_RANGES)
        assert summary.stored == len(DEFAULT_RANGES)
        assert summary.failed == 0
        assert [r[0] for r in factory.requests] == [rng.start for rng in DEFAULT_RANGES]
        assert not context.cell("ESU Temperatures").snapshot().record.is_empty

    def test_second_pass_skips_fresh_ranges(self, poll_setup, factory):
        _, scheduler = poll_setup(DEFAULT_RANGES)

        asyncio.run(scheduler.run_pass())
        summary = asyncio.run(scheduler.run_pass())

        assert summary.attempted == 0
        assert summary.skipped == len(DEFAULT_RANGES)
        assert scheduler.passes == 2

    def test_fast_range_refresh(self, poll_setup, factory, clock):
        context, scheduler = poll_setup()
        cell = context.cell("Meter")

        factory.script.extend([_meter_registers(-1500), None])
        asyncio.run(scheduler.run_pass())
        assert cell.next_read_at == T0 + timedelta(seconds=10)

        clock.advance(9)
        summary = asyncio.run(scheduler.run_pass())
        assert summary.attempted == 0
        assert cell.snapshot().record["active_power"] == -1.5

        clock.advance(1)
        factory.script.append(_meter_registers(2000))
        summary = asyncio.run(scheduler.run_pass())

        assert summary.attempted == 1
        assert summary.skipped == 1
        snap = cell.snapshot()
        assert snap.record["active_power"] == 2.0
        assert snap.last_read_at == T0 + timedelta(seconds=10)
        assert snap.next_read_at == T0 + timedelta(seconds=20)

    def test_read_failure_leaves_cell_and_retries_next_pass(self, poll_setup, factory):
        context, scheduler = poll_setup((FAST,))
        factory.fail_reads(1)

        summary = asyncio.run(scheduler.run_pass())

        assert summary.failed == 1
        assert context.cell("Meter").snapshot().record.is_empty
        assert context.cell("Meter").is_due(T0)

        summary = asyncio.run(scheduler.run_pass())
        assert summary.stored == 1

    def test_decode_failure_leaves_cell_untouched(self, poll_setup, factory, clock):
        context, scheduler = poll_setup((FAST,))
        cell = context.cell("Meter")

        factory.script.append(_meter_registers(1000))
        asyncio.run(scheduler.run_pass())
        before = cell.snapshot()

        clock.advance(10)
        factory.script.append([0] * 20)
        summary = asyncio.run(scheduler.run_pass())

        assert summary.failed == 1
        assert cell.snapshot() == before

    def test_decode_failure_backs_off_one_interval(self, poll_setup, factory, clock):
        context, scheduler = poll_setup((FAST,))
        factory.script.append([0] * 20)

        asyncio.run(scheduler.run_pass())
        clock.advance(5)
        summary = asyncio.run(scheduler.run_pass())
        assert summary.skipped == 1
        assert len(factory.requests) == 1

        clock.advance(5)
        summary = asyncio.run(scheduler.run_pass())
        assert summary.stored == 1
        assert context.cell("Meter").last_read_at == T0 + timedelta(seconds=10)

    def test_connection_lost_propagates(self, poll_setup, factory):
        _, scheduler = poll_setup(DEFAULT_RANGES)
        factory.fail_reads(11)
        factory.connect_outcomes.append(False)

        with pytest.raises(ConnectionLostError):
            asyncio.run(scheduler.run_pass())
        assert len(factory.requests) == 11


class TestRun:

    def test_run_primes_then_loops_until_stopped(self, poll_setup, factory):
        holder = {}
        sleeper = SleepRecorder(on_sleep=lambda delay: holder["scheduler"].stop())
        _, scheduler = poll_setup(sleep=sleeper)
        holder["scheduler"] = scheduler

        asyncio.run(scheduler.run())

        assert factory.requests[0] == (30000, 15, 1)
        assert len(factory.requests) == 3
        assert sleeper.delays == [5.0]
        assert scheduler.passes == 1
        assert not scheduler.is_running

    def test_priming_read_not_counted(self, poll_setup, factory):
        holder = {}
        sleeper = SleepRecorder(on_sleep=lambda delay: holder["scheduler"].stop())
        context, scheduler = poll_setup(sleep=sleeper)
        holder["scheduler"] = scheduler
        factory.fail_reads(1)

        asyncio.run(scheduler.run())

        stats = context.snapshot()
        assert stats.total_errors == 0
        assert stats.total_successes == 2

    def test_run_stops_on_connection_lost(self, poll_setup, factory):
        _, scheduler = poll_setup(DEFAULT_RANGES)
        factory.script.append(None)
        factory.fail_reads(11)
        factory.connect_outcomes.append(False)

        with pytest.raises(ConnectionLostError):
            asyncio.run(scheduler.run())
        assert not scheduler.is_running
