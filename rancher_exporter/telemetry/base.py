"""
Base classes for exporter collectors.

BaseCollector wraps a single collection with timeout enforcement and
statistics. CompositeCollector groups named sub-collectors. PeriodicCollector
drives a collector on a fixed interval until stopped.
"""

from abc import ABC, abstractmethod
from typing import Generic, List, Optional, TypeVar
from datetime import datetime, timezone
import asyncio
import logging

logger = logging.getLogger(__name__)

# Type variable for collected items - allows type-safe generic collectors
T = TypeVar("T")


class BaseCollector(ABC, Generic[T]):
    """
    Abstract base class for all collectors.

    Subclasses implement collect(); callers use collect_with_timeout(), which
    turns every failure into a None result plus a logged, recorded error.
    """

    def __init__(self, name: str, timeout_seconds: float = 30):
        """
        Initialize base collector.

        Args:
            name: Collector name for logging and identification
            timeout_seconds: Maximum time allowed for collection
        """
        self.name = name
        self.timeout_seconds = timeout_seconds
        self._last_collection_time: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._collection_count = 0
        self._error_count = 0

    @abstractmethod
    async def collect(self) -> List[T]:
        """
        Collect items from the source.

        May raise; collect_with_timeout() handles it.
        """
        pass

    async def collect_with_timeout(self) -> Optional[List[T]]:
        """
        Collect with timeout enforcement.

        Returns:
            Collected items, or None on timeout/error. An empty list is a
            successful collection of nothing.
        """
        try:
            self._collection_count += 1
            start_time = datetime.now(timezone.utc)

            result = await asyncio.wait_for(self.collect(), timeout=self.timeout_seconds)

            self._last_collection_time = datetime.now(timezone.utc)
            self._last_error = None
            logger.debug(
                f"{self.name} collected {len(result)} items in "
                f"{(self._last_collection_time - start_time).total_seconds():.2f}s"
            )
            return result

        except asyncio.TimeoutError:
            self._error_count += 1
            self._last_error = f"Collection timeout after {self.timeout_seconds}s"
            logger.error(f"{self.name}: {self._last_error}")
            return None

        except Exception as e:
            self._error_count += 1
            self._last_error = str(e)
            logger.error(f"{self.name} collection failed: {e}")
            return None

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def get_stats(self) -> dict:
        """
        Get collector statistics.

        Returns:
            Dictionary with collection stats
        """
        return {
            "name": self.name,
            "collections": self._collection_count,
            "errors": self._error_count,
            "error_rate": self._error_count / max(1, self._collection_count),
            "last_collection": self._last_collection_time.isoformat()
            if self._last_collection_time
            else None,
            "last_error": self._last_error,
        }


class CompositeCollector(BaseCollector[T]):
    """
    Base class for collectors that aggregate data from multiple sources.
    """

    def __init__(self, name: str = "CompositeCollector", timeout_seconds: float = 60):
        """Initialize composite collector."""
        super().__init__(name, timeout_seconds=timeout_seconds)
        self.collectors: dict[str, BaseCollector] = {}

    def register_collector(self, key: str, collector: BaseCollector) -> None:
        """
        Register a sub-collector.

        Args:
            key: Unique key for this collector
            collector: Collector instance to register
        """
        if key in self.collectors:
            raise ValueError(f"Collector {key} already registered")
        self.collectors[key] = collector
        logger.info(f"Registered collector: {key}")

    def get_all_stats(self) -> dict:
        """
        Get statistics for all collectors.

        Returns:
            Dictionary with stats for each collector
        """
        stats = {"composite": super().get_stats(), "collectors": {}}

        for key, collector in self.collectors.items():
            stats["collectors"][key] = collector.get_stats()

        return stats


class PeriodicCollector(ABC):
    """
    Base class for collectors that run periodically.

    The first collection runs immediately on start(). Collections never
    overlap: a collection that overruns the interval makes the loop skip the
    missed ticks and start the next one straight away.
    """

    def __init__(
        self,
        collector: BaseCollector,
        interval_seconds: float = 10,
        stop_timeout: float = 5,
    ):
        """
        Initialize periodic collector.

        Args:
            collector: The collector to run periodically
            interval_seconds: Collection interval
            stop_timeout: Grace period for an in-flight collection on stop()
        """
        self.collector = collector
        self.interval_seconds = interval_seconds
        self.stop_timeout = stop_timeout
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._skipped_ticks = 0

    async def start(self) -> None:
        """Start the periodic collection loop."""
        if self._running:
            logger.warning("Collector already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._collection_loop())
        logger.info(
            f"Started periodic collection for {self.collector.name} every {self.interval_seconds}s"
        )

    async def stop(self) -> None:
        """
        Stop the periodic collection loop.

        No new collection starts after this call. An in-flight collection gets
        stop_timeout seconds to finish and is cancelled after that.
        """
        if not self._running:
            return

        self._running = False
        if self._stop_event:
            self._stop_event.set()

        if self._task:
            done, _ = await asyncio.wait({self._task}, timeout=self.stop_timeout)
            if not done:
                logger.warning(
                    f"{self.collector.name} still running after {self.stop_timeout}s, cancelling"
                )
                self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info(f"Stopped periodic collection for {self.collector.name}")

    async def _collection_loop(self) -> None:
        """Main collection loop."""
        loop = asyncio.get_running_loop()

        while self._running:
            started = loop.time()
            try:
                data = await self.collector.collect_with_timeout()

                if data:
                    await self._store_data(data)

            except Exception as e:
                logger.error(f"Collection loop error: {e}")

            if not self._running:
                break

            # Wait for next interval
            delay = self.interval_seconds - (loop.time() - started)
            if delay < 0:
                missed = int(-delay // self.interval_seconds) + 1
                self._skipped_ticks += missed
                logger.warning(
                    f"{self.collector.name} took longer than {self.interval_seconds}s, "
                    f"skipping {missed} tick(s)"
                )
                delay = 0

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    @abstractmethod
    async def _store_data(self, data: List) -> None:
        """
        Handle the data from one successful collection.

        Args:
            data: Collected data
        """
        pass

    @property
    def skipped_ticks(self) -> int:
        return self._skipped_ticks

    @property
    def is_running(self) -> bool:
        """Check if collector is running."""
        return self._running
