"""
Cycle orchestrator and scheduler.

One cycle fetches hosts, stacks and services concurrently. Hosts are mapped
as soon as they arrive. Services are mapped only after the stacks batch has
been mapped, because their stack_name labels come from the reference store
that the stacks step fills.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from rancher_exporter.logging_config import LogContext
from rancher_exporter.telemetry.base import CompositeCollector, PeriodicCollector
from rancher_exporter.telemetry.classifier import RecordClassifier
from rancher_exporter.telemetry.client import RancherClient
from rancher_exporter.telemetry.collectors.endpoint_collector import EndpointCollector
from rancher_exporter.telemetry.instrumentation import InternalMetrics
from rancher_exporter.telemetry.references import ReferenceStore
from rancher_exporter.telemetry.schemas import CycleReport, Endpoint, EndpointResult, RawRecord
from rancher_exporter.telemetry.sink import MetricSink

logger = logging.getLogger(__name__)


class ExporterOrchestrator(CompositeCollector[CycleReport]):
    """
    Runs complete polling cycles across all endpoints.

    Cycles are serialized by a lock, so the reference store only ever sees
    the writes and reads of one cycle at a time.
    """

    def __init__(
        self,
        client: RancherClient,
        sink: MetricSink,
        references: Optional[ReferenceStore] = None,
        hide_system: bool = True,
        metrics: Optional[InternalMetrics] = None,
        endpoint_timeout: float = 30,
        cycle_timeout: float = 60,
    ):
        """
        Initialize the orchestrator.

        Args:
            client: Rancher API client
            sink: Metric sink receiving each endpoint's batch
            references: Stack id -> name store; lives as long as the orchestrator
            hide_system: Drop records flagged as system objects
            metrics: Internal instrumentation sink
            endpoint_timeout: Upper bound for a single endpoint fetch
            cycle_timeout: Upper bound for a complete cycle
        """
        super().__init__(name="ExporterOrchestrator", timeout_seconds=cycle_timeout)

        self.client = client
        self.sink = sink
        self.references = references if references is not None else ReferenceStore()
        self.metrics = metrics or client.metrics
        self.classifier = RecordClassifier(self.references, hide_system=hide_system)
        self._cycle_lock = asyncio.Lock()

        for endpoint in Endpoint:
            self.register_collector(
                endpoint.value,
                EndpointCollector(
                    endpoint,
                    client=client,
                    classifier=self.classifier,
                    sink=sink,
                    timeout_seconds=endpoint_timeout,
                ),
            )

    def collector_for(self, endpoint: Endpoint) -> EndpointCollector:
        return self.collectors[endpoint.value]  # type: ignore[return-value]

    async def collect(self) -> List[CycleReport]:
        """
        Run one cycle.

        Returns:
            List containing the cycle report (for base class compatibility)
        """
        return [await self.run_cycle()]

    async def run_cycle(self) -> CycleReport:
        """
        Run one full fetch-classify-map pass over every endpoint.

        Never raises for endpoint failures; they are reported in the result.
        """
        async with self._cycle_lock:
            cycle_id = str(uuid.uuid4())
            started_at = datetime.now(timezone.utc)
            start = time.perf_counter()

            with LogContext(cycle_id=cycle_id):
                fetches: Dict[Endpoint, asyncio.Task] = {
                    endpoint: asyncio.create_task(
                        self.collector_for(endpoint).collect_with_timeout()
                    )
                    for endpoint in Endpoint
                }
                try:
                    hosts_result, dependent_results = await asyncio.gather(
                        self._complete(Endpoint.HOSTS, fetches[Endpoint.HOSTS], start),
                        self._complete_stacks_then_services(fetches, start),
                    )
                finally:
                    for task in fetches.values():
                        if not task.done():
                            task.cancel()

            duration = time.perf_counter() - start
            self.metrics.record_cycle(duration)

            results = [hosts_result, *dependent_results]
            for result in results:
                self.metrics.record_endpoint(result.endpoint.value, result.success)
            report = CycleReport(
                cycle_id=cycle_id,
                started_at=started_at,
                duration_ms=int(duration * 1000),
                results=results,
                errors=[f"{r.endpoint.value}: {r.error}" for r in results if r.error],
                collector_stats=self.get_all_stats()["collectors"],
            )

            logger.info(
                f"Completed cycle {report.cycle_id} in {report.duration_ms}ms "
                f"({sum(r.observations for r in results)} observations, "
                f"{len(report.errors)} errors)"
            )
            return report

    async def _complete_stacks_then_services(
        self, fetches: Dict[Endpoint, asyncio.Task], start: float
    ) -> List[EndpointResult]:
        stacks = await self._complete(Endpoint.STACKS, fetches[Endpoint.STACKS], start)
        services = await self._complete(Endpoint.SERVICES, fetches[Endpoint.SERVICES], start)
        return [stacks, services]

    async def _complete(
        self, endpoint: Endpoint, fetch: "asyncio.Task", start: float
    ) -> EndpointResult:
        """Wait for an endpoint's fetch, then classify and apply it."""
        collector = self.collector_for(endpoint)
        records: Optional[List[RawRecord]] = await fetch

        if records is None:
            logger.error(f"Skipping {endpoint.value} this cycle: {collector.last_error}")
            return EndpointResult(
                endpoint=endpoint,
                success=False,
                duration_ms=self._elapsed_ms(start),
                error=collector.last_error or "fetch failed",
            )

        try:
            with self.metrics.track("orchestrator", f"process_{endpoint.value}"):
                classified = collector.process(records)
        except Exception as e:
            logger.error(f"Failed to process {endpoint.value} records: {e}", exc_info=True)
            return EndpointResult(
                endpoint=endpoint,
                success=False,
                records_fetched=len(records),
                duration_ms=self._elapsed_ms(start),
                error=str(e),
            )

        return EndpointResult(
            endpoint=endpoint,
            success=True,
            records_fetched=len(records),
            records_skipped=classified.skipped,
            observations=len(classified.observations),
            duration_ms=self._elapsed_ms(start),
        )

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.perf_counter() - start) * 1000)


class CycleScheduler(PeriodicCollector):
    """
    Runs the orchestrator immediately and then every interval until stopped.
    """

    def __init__(
        self,
        orchestrator: ExporterOrchestrator,
        interval_seconds: float = 10,
        stop_timeout: float = 5,
    ):
        """
        Initialize the scheduler.

        Args:
            orchestrator: The exporter orchestrator
            interval_seconds: Seconds between cycle starts
            stop_timeout: Grace period for an in-flight cycle on stop()
        """
        super().__init__(
            collector=orchestrator,
            interval_seconds=interval_seconds,
            stop_timeout=stop_timeout,
        )
        self.orchestrator = orchestrator
        self._last_report: Optional[CycleReport] = None
        self._cycles_completed = 0

    async def _store_data(self, data: List[CycleReport]) -> None:
        if not data:
            return

        self._last_report = data[0]
        self._cycles_completed += 1
        for error in self._last_report.errors:
            logger.warning(f"Cycle {self._last_report.cycle_id} error: {error}")

    def get_last_report(self) -> Optional[CycleReport]:
        """Get the most recent cycle report."""
        return self._last_report

    @property
    def cycles_completed(self) -> int:
        return self._cycles_completed
