"""
Internal instrumentation for the exporter itself.

Counts calls and records call durations (in microseconds) per component and
function, per-endpoint fetch failures and freshness, and whole-cycle
durations. These describe the exporter, not the cluster.
"""

import time
from contextlib import contextmanager
from typing import Iterator, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Microsecond buckets from 1ms to 30s
DURATION_BUCKETS_US = (
    1_000,
    5_000,
    10_000,
    50_000,
    100_000,
    250_000,
    500_000,
    1_000_000,
    2_500_000,
    5_000_000,
    10_000_000,
    30_000_000,
)


class InternalMetrics:
    """Counters and histograms describing the exporter's own work."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.function_count = Counter(
            "rancher_exporter_function_count",
            "Number of times a function has been invoked",
            ["component", "function"],
            registry=self.registry,
        )
        self.function_durations = Histogram(
            "rancher_exporter_function_durations_microseconds",
            "Function execution time in microseconds",
            ["component", "function"],
            buckets=DURATION_BUCKETS_US,
            registry=self.registry,
        )
        self.fetch_errors = Counter(
            "rancher_exporter_fetch_errors",
            "Number of failed endpoint fetches",
            ["endpoint"],
            registry=self.registry,
        )
        self.cycle_duration = Histogram(
            "rancher_exporter_cycle_duration_seconds",
            "Duration of a complete polling cycle",
            registry=self.registry,
        )
        self.endpoint_up = Gauge(
            "rancher_exporter_endpoint_up",
            "1 if the last fetch of the endpoint succeeded; 0 means its series are stale",
            ["endpoint"],
            registry=self.registry,
        )
        self.endpoint_last_success = Gauge(
            "rancher_exporter_endpoint_last_success_timestamp_seconds",
            "Unix time of the last successful fetch and mapping of the endpoint",
            ["endpoint"],
            registry=self.registry,
        )

    @contextmanager
    def track(self, component: str, function: str) -> Iterator[None]:
        """Count one invocation and observe its duration, even if it raises."""
        self.function_count.labels(component=component, function=function).inc()
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed_us = (time.perf_counter() - start) * 1_000_000
            self.function_durations.labels(component=component, function=function).observe(
                elapsed_us
            )

    def record_fetch_error(self, endpoint: str) -> None:
        self.fetch_errors.labels(endpoint=endpoint).inc()

    def record_cycle(self, duration_seconds: float) -> None:
        self.cycle_duration.observe(duration_seconds)

    def record_endpoint(self, endpoint: str, success: bool) -> None:
        self.endpoint_up.labels(endpoint=endpoint).set(1 if success else 0)
        if success:
            self.endpoint_last_success.labels(endpoint=endpoint).set_to_current_time()
