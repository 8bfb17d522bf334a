"""
Prometheus metric sink.

A custom collector holding the latest observation batch per endpoint. Each
batch replaces the previous one for that endpoint in a single locked swap, so
a scrape running on the HTTP server thread never sees a half-applied batch.
"""

import logging
import threading
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from prometheus_client import CollectorRegistry
from prometheus_client.core import GaugeMetricFamily

from rancher_exporter.telemetry.schemas import METRIC_DEFINITIONS, Endpoint, MetricObservation

logger = logging.getLogger(__name__)

SeriesKey = Tuple[str, Tuple[str, ...]]


class MetricSink:
    """Gauge registry fed by the classifier, read by Prometheus scrapes."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self._lock = threading.Lock()
        self._batches: Dict[Endpoint, Dict[SeriesKey, float]] = {}
        self.registry = registry
        if registry is not None:
            registry.register(self)

    def apply(self, endpoint: Endpoint, observations: Iterable[MetricObservation]) -> int:
        """
        Replace the endpoint's series with this batch.

        Duplicate series within a batch keep the last value.

        Returns:
            Number of distinct series now exported for the endpoint
        """
        batch: Dict[SeriesKey, float] = {}
        for observation in observations:
            batch[(observation.metric, observation.label_values())] = observation.value

        with self._lock:
            self._batches[endpoint] = batch

        logger.debug(f"Applied {len(batch)} series for {endpoint.value}")
        return len(batch)

    def series_count(self, endpoint: Optional[Endpoint] = None) -> int:
        with self._lock:
            if endpoint is not None:
                return len(self._batches.get(endpoint, {}))
            return sum(len(b) for b in self._batches.values())

    def describe(self) -> List[GaugeMetricFamily]:
        return [
            GaugeMetricFamily(d.name, d.documentation, labels=list(d.labelnames))
            for d in METRIC_DEFINITIONS.values()
        ]

    def collect(self) -> Iterator[GaugeMetricFamily]:
        with self._lock:
            batches = list(self._batches.values())

        families = {
            name: GaugeMetricFamily(name, d.documentation, labels=list(d.labelnames))
            for name, d in METRIC_DEFINITIONS.items()
        }
        for batch in batches:
            for (metric, label_values), value in batch.items():
                families[metric].add_metric(list(label_values), value)

        yield from families.values()
