"""
Exporter service wiring the engine to its collaborators.

Builds the registry, sink, client and orchestrator from configuration,
serves the registry over HTTP for Prometheus and runs the cycle scheduler
until a shutdown signal arrives.
"""

import asyncio
import logging
import signal
from typing import Optional

from prometheus_client import CollectorRegistry, start_http_server

from rancher_exporter.config.settings import ExporterConfig
from rancher_exporter.telemetry.client import RancherClient
from rancher_exporter.telemetry.instrumentation import InternalMetrics
from rancher_exporter.telemetry.orchestrator import CycleScheduler, ExporterOrchestrator
from rancher_exporter.telemetry.references import ReferenceStore
from rancher_exporter.telemetry.schemas import CycleReport
from rancher_exporter.telemetry.sink import MetricSink

logger = logging.getLogger(__name__)


class ExporterService:
    """
    Main exporter service.

    This service:
    - Owns the metric registry and the stack reference store
    - Serves /metrics for Prometheus
    - Runs polling cycles on the configured interval
    """

    def __init__(self, config: ExporterConfig, registry: Optional[CollectorRegistry] = None):
        """
        Initialize exporter service.

        Args:
            config: Validated exporter configuration
            registry: Registry to expose; a private one is created by default
        """
        self.config = config
        self.registry = registry or CollectorRegistry()

        # Components
        self.metrics: Optional[InternalMetrics] = None
        self.sink: Optional[MetricSink] = None
        self.references: Optional[ReferenceStore] = None
        self.orchestrator: Optional[ExporterOrchestrator] = None
        self.scheduler: Optional[CycleScheduler] = None

        # Service state
        self._running = False
        self._http_server = None
        self._shutdown_event = asyncio.Event()

    def initialize(self) -> ExporterOrchestrator:
        """Initialize exporter components and return the orchestrator."""
        logger.info(f"Initializing exporter for {self.config.rancher_url}")

        self.metrics = InternalMetrics(self.registry)
        self.sink = MetricSink(self.registry)
        self.references = ReferenceStore("stacks")

        client = RancherClient(
            base_url=self.config.rancher_url,
            access_key=self.config.access_key,
            secret_key=self.config.secret_key,
            verify_ssl=self.config.verify_ssl,
            timeout_seconds=self.config.request_timeout,
            metrics=self.metrics,
        )
        orchestrator = ExporterOrchestrator(
            client=client,
            sink=self.sink,
            references=self.references,
            hide_system=self.config.hide_system,
            metrics=self.metrics,
            endpoint_timeout=self.config.request_timeout * 2,
            cycle_timeout=max(self.config.request_timeout * 4, self.config.update_interval),
        )
        self.orchestrator = orchestrator
        self.scheduler = CycleScheduler(
            orchestrator,
            interval_seconds=self.config.update_interval,
            stop_timeout=self.config.stop_timeout,
        )

        logger.info(
            f"Exporter initialized (interval={self.config.update_interval}s, "
            f"hide_system={self.config.hide_system}, verify_ssl={self.config.verify_ssl})"
        )
        return orchestrator

    def start_http_server(self) -> None:
        """Serve the registry on the configured address."""
        result = start_http_server(
            self.config.listen_port, addr=self.config.listen_address, registry=self.registry
        )
        # Newer prometheus_client releases return (server, thread)
        if isinstance(result, tuple):
            self._http_server = result[0]
        logger.info(
            f"Metrics server listening on {self.config.listen_address}:{self.config.listen_port}"
        )

    async def start(self, serve_http: bool = True) -> None:
        """Start the exporter and block until stopped."""
        if self._running:
            logger.warning("Exporter service already running")
            return

        logger.info("Starting exporter service")

        if not self.orchestrator:
            self.initialize()

        if serve_http:
            self.start_http_server()

        if self.scheduler:
            await self.scheduler.start()

        self._running = True

        self._register_signal_handlers()

        logger.info("Exporter service started")

        # Wait for shutdown signal
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the exporter service."""
        if not self._running:
            return

        logger.info("Stopping exporter service")

        if self.scheduler:
            await self.scheduler.stop()

        if self._http_server is not None:
            self._http_server.shutdown()
            self._http_server = None

        self._running = False
        self._shutdown_event.set()

        logger.info("Exporter service stopped")

    def _register_signal_handlers(self) -> None:
        """Register signal handlers for graceful shutdown."""

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown")
            asyncio.create_task(self.stop())

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    async def collect_once(self) -> CycleReport:
        """Run a single cycle without the scheduler or HTTP server."""
        orchestrator = self.orchestrator or self.initialize()
        return await orchestrator.run_cycle()

    def get_last_report(self) -> Optional[CycleReport]:
        if not self.scheduler:
            return None
        return self.scheduler.get_last_report()

    @property
    def is_running(self) -> bool:
        """Check if service is running."""
        return self._running


async def run_exporter_service(config: ExporterConfig) -> None:
    """
    Run the exporter until interrupted.

    Args:
        config: Exporter configuration with credentials present
    """
    service = ExporterService(config)

    try:
        await service.start()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    finally:
        await service.stop()
