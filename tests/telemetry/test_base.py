"""
Unit tests for collector base classes.

Tests timed collection, composite registration and the periodic loop.
"""

import pytest
import asyncio
from datetime import datetime
from typing import List

from rancher_exporter.telemetry.base import (
    BaseCollector,
    CompositeCollector,
    PeriodicCollector,
)


class StubCollector(BaseCollector[str]):
    """Concrete BaseCollector returning canned items."""

    def __init__(self, name: str = "StubCollector", delay: float = 0):
        super().__init__(name, timeout_seconds=1)
        self.available = True
        self.delay = delay
        self.items = ["a", "b"]
        self.collect_called = 0
        self.active = 0
        self.max_active = 0

    async def collect(self) -> List[str]:
        self.collect_called += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if not self.available:
                raise Exception("Test error")
            return self.items
        finally:
            self.active -= 1


class StubPeriodic(PeriodicCollector):
    """Concrete PeriodicCollector recording stored data."""

    def __init__(self, collector, interval_seconds=1, stop_timeout=1):
        super().__init__(collector, interval_seconds, stop_timeout)
        self.stored_data = []

    async def _store_data(self, data):
        self.stored_data.append(data)


class TestBaseCollector:
    """Test BaseCollector functionality."""

    @pytest.mark.asyncio
    async def test_successful_collection(self):
        collector = StubCollector()

        result = await collector.collect_with_timeout()

        assert result == ["a", "b"]
        assert collector._collection_count == 1
        assert collector._error_count == 0
        assert collector.last_error is None

    @pytest.mark.asyncio
    async def test_empty_collection_is_not_a_failure(self):
        collector = StubCollector()
        collector.items = []

        result = await collector.collect_with_timeout()

        assert result == []
        assert collector._error_count == 0

    @pytest.mark.asyncio
    async def test_collection_error_handling(self):
        collector = StubCollector()
        collector.available = False

        result = await collector.collect_with_timeout()

        assert result is None
        assert collector._error_count == 1
        assert collector.last_error == "Test error"

    @pytest.mark.asyncio
    async def test_collection_timeout(self):
        collector = StubCollector(delay=2)

        result = await collector.collect_with_timeout()

        assert result is None
        assert collector._error_count == 1
        assert "timeout" in collector.last_error.lower()

    @pytest.mark.asyncio
    async def test_success_clears_last_error(self):
        collector = StubCollector()
        collector.available = False
        await collector.collect_with_timeout()

        collector.available = True
        await collector.collect_with_timeout()

        assert collector.last_error is None
        assert collector._error_count == 1

    def test_get_stats(self):
        collector = StubCollector()
        collector._collection_count = 10
        collector._error_count = 2
        collector._last_collection_time = datetime(2025, 1, 1, 12, 0, 0)
        collector._last_error = "Test error"

        stats = collector.get_stats()

        assert stats["name"] == "StubCollector"
        assert stats["collections"] == 10
        assert stats["errors"] == 2
        assert stats["error_rate"] == 0.2
        assert "2025-01-01" in stats["last_collection"]
        assert stats["last_error"] == "Test error"


class TestCompositeCollector:
    """Test CompositeCollector functionality."""

    class StubComposite(CompositeCollector):
        async def collect(self):
            return []

    def test_register_collector(self):
        composite = self.StubComposite()
        collector1 = StubCollector("collector1")
        collector2 = StubCollector("collector2")

        composite.register_collector("test1", collector1)
        composite.register_collector("test2", collector2)

        assert composite.collectors == {"test1": collector1, "test2": collector2}

    def test_register_duplicate_fails(self):
        composite = self.StubComposite()
        collector = StubCollector()

        composite.register_collector("test", collector)

        with pytest.raises(ValueError, match="already registered"):
            composite.register_collector("test", collector)

    def test_get_all_stats(self):
        composite = self.StubComposite()
        collector1 = StubCollector("collector1")
        collector2 = StubCollector("collector2")
        collector1._collection_count = 5
        collector1._error_count = 1
        collector2._collection_count = 10

        composite.register_collector("test1", collector1)
        composite.register_collector("test2", collector2)

        stats = composite.get_all_stats()

        assert "composite" in stats
        assert stats["collectors"]["test1"]["collections"] == 5
        assert stats["collectors"]["test2"]["errors"] == 0


class TestPeriodicCollector:
    """Test PeriodicCollector functionality."""

    @pytest.mark.asyncio
    async def test_first_collection_runs_immediately(self):
        collector = StubCollector()
        periodic = StubPeriodic(collector, interval_seconds=60)

        await periodic.start()
        await asyncio.sleep(0.05)

        assert collector.collect_called == 1
        assert periodic.stored_data == [["a", "b"]]

        await periodic.stop()
        assert not periodic.is_running

    @pytest.mark.asyncio
    async def test_stop_interrupts_the_wait(self):
        collector = StubCollector()
        periodic = StubPeriodic(collector, interval_seconds=60)

        await periodic.start()
        await asyncio.sleep(0.05)
        await asyncio.wait_for(periodic.stop(), timeout=1)

        assert collector.collect_called == 1

    @pytest.mark.asyncio
    async def test_already_running(self):
        collector = StubCollector()
        periodic = StubPeriodic(collector)

        await periodic.start()
        task1 = periodic._task
        await periodic.start()

        assert periodic._task is task1

        await periodic.stop()

    @pytest.mark.asyncio
    async def test_overrunning_collections_never_overlap(self):
        collector = StubCollector(delay=0.08)
        periodic = StubPeriodic(collector, interval_seconds=0.02)

        await periodic.start()
        await asyncio.sleep(0.3)
        await periodic.stop()

        assert collector.collect_called >= 2
        assert collector.max_active == 1
        assert periodic.skipped_ticks >= 1

    @pytest.mark.asyncio
    async def test_failed_collection_keeps_loop_alive(self):
        collector = StubCollector()
        collector.available = False
        periodic = StubPeriodic(collector, interval_seconds=0.02)

        await periodic.start()
        await asyncio.sleep(0.1)
        await periodic.stop()

        assert collector.collect_called >= 2
        assert periodic.stored_data == []

    @pytest.mark.asyncio
    async def test_stop_lets_in_flight_collection_finish(self):
        collector = StubCollector(delay=0.1)
        periodic = StubPeriodic(collector, interval_seconds=60, stop_timeout=1)

        await periodic.start()
        await asyncio.sleep(0.02)
        await periodic.stop()

        assert periodic.stored_data == [["a", "b"]]

    @pytest.mark.asyncio
    async def test_stop_cancels_after_grace_period(self):
        collector = StubCollector(delay=0.9)
        periodic = StubPeriodic(collector, interval_seconds=60, stop_timeout=0.05)

        await periodic.start()
        await asyncio.sleep(0.02)
        await periodic.stop()

        assert periodic.stored_data == []
        assert collector.active == 0
