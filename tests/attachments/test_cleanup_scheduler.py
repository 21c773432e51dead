"""Tests for the adaptive attachment cleanup scheduler."""

from __future__ import annotations

import asyncio
import logging

import pytest
from conftest import HOUR_MS

from workspace_auth.attachments.cleanup import (
    BASE_INTERVAL_MS,
    MAX_INTERVAL_MS,
    AttachmentCleanupScheduler,
)
from workspace_auth.attachments.index import AttachmentMetadataIndex

pytestmark = pytest.mark.unit


class FakePerfCounter:
    def __init__(self, *readings: float) -> None:
        self.readings = list(readings)

    def __call__(self) -> float:
        return self.readings.pop(0) if len(self.readings) > 1 else self.readings[0]


@pytest.fixture
def index(clock):
    return AttachmentMetadataIndex(capacity=10, clock=clock)


@pytest.fixture
def scheduler(index, clock):
    return AttachmentCleanupScheduler(index, clock=clock, perf_counter=FakePerfCounter(0.0))


def _fill(index, count, start=0):
    for i in range(start, start + count):
        index.add(f"m{i}", {"id": f"a{i}", "name": f"f{i}"})


class TestInterval:
    def test_starts_at_base(self, scheduler):
        assert scheduler.current_interval_ms == BASE_INTERVAL_MS

    def test_idle_stretches_by_quarter(self, scheduler):
        scheduler.notify_activity()
        assert scheduler.current_interval_ms == BASE_INTERVAL_MS * 1.25

    def test_idle_capped_at_max(self, scheduler):
        for _ in range(50):
            scheduler.notify_activity()
        assert scheduler.current_interval_ms == MAX_INTERVAL_MS

    def test_growth_shrinks_but_not_below_base(self, scheduler, index):
        scheduler.notify_activity()
        scheduler.notify_activity()
        stretched = scheduler.current_interval_ms

        _fill(index, 1)
        scheduler.notify_activity()
        assert scheduler.current_interval_ms == max(BASE_INTERVAL_MS, stretched * 0.75)

        _fill(index, 1, start=1)
        scheduler.notify_activity()
        _fill(index, 1, start=2)
        scheduler.notify_activity()
        assert scheduler.current_interval_ms == BASE_INTERVAL_MS

    def test_reset(self, scheduler):
        scheduler.notify_activity()
        scheduler.reset()
        assert scheduler.current_interval_ms == BASE_INTERVAL_MS


class TestCleanup:
    def test_near_capacity_sweeps_immediately(self, scheduler, index, clock):
        _fill(index, 5)
        clock.advance(HOUR_MS + 1)
        _fill(index, 4, start=5)

        scheduler.notify_activity()

        assert index.size == 4

    def test_skipped_when_too_soon(self, scheduler, index, clock):
        assert scheduler.run_cleanup() == 0
        clock.advance(BASE_INTERVAL_MS // 2 - 1)
        assert scheduler.run_cleanup() is None
        clock.advance(1)
        assert scheduler.run_cleanup() == 0

    def test_slow_sweep_stretches_interval(self, index, clock):
        scheduler = AttachmentCleanupScheduler(
            index, clock=clock, perf_counter=FakePerfCounter(1.0, 1.2)
        )
        scheduler.run_cleanup()
        assert scheduler.current_interval_ms == BASE_INTERVAL_MS * 1.5

    def test_errors_are_logged_not_raised(self, index, clock, caplog, monkeypatch):
        def boom():
            raise RuntimeError("sweep failed")

        monkeypatch.setattr(index, "clean_expired", boom)
        scheduler = AttachmentCleanupScheduler(index, clock=clock)

        with caplog.at_level(logging.ERROR):
            assert scheduler.run_cleanup() is None

        assert "Error during attachment cleanup" in caplog.text


class TestLifecycle:
    async def test_timer_sweeps_until_stopped(self, index):
        calls = 0
        original = index.clean_expired

        def counting():
            nonlocal calls
            calls += 1
            return original()

        index.clean_expired = counting
        scheduler = AttachmentCleanupScheduler(index, base_interval_ms=20, max_interval_ms=40)

        scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.15)
        await scheduler.stop()

        assert not scheduler.running
        assert calls >= 2
        settled = calls
        await asyncio.sleep(0.05)
        assert calls == settled

    async def test_start_twice_is_harmless(self, scheduler):
        scheduler.start()
        scheduler.start()
        await scheduler.stop()
        await scheduler.stop()
