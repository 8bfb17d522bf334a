"""
Per-endpoint collector.

Fetching and mapping are split so the orchestrator can start every fetch at
once and still map stacks before services.
"""

import logging
from typing import List

from rancher_exporter.telemetry.base import BaseCollector
from rancher_exporter.telemetry.classifier import RecordClassifier
from rancher_exporter.telemetry.client import RancherClient
from rancher_exporter.telemetry.schemas import ClassificationResult, Endpoint, RawRecord
from rancher_exporter.telemetry.sink import MetricSink

logger = logging.getLogger(__name__)


class EndpointCollector(BaseCollector[RawRecord]):
    """Fetches one Rancher collection and maps it into the sink."""

    def __init__(
        self,
        endpoint: Endpoint,
        client: RancherClient,
        classifier: RecordClassifier,
        sink: MetricSink,
        timeout_seconds: float = 30,
    ):
        super().__init__(name=f"{endpoint.value}Collector", timeout_seconds=timeout_seconds)
        self.endpoint = endpoint
        self.client = client
        self.classifier = classifier
        self.sink = sink

    async def collect(self) -> List[RawRecord]:
        """Fetch the raw records. Raises FetchError on failure."""
        return await self.client.fetch_records(self.endpoint)

    def process(self, records: List[RawRecord]) -> ClassificationResult:
        """Classify a fetched batch and publish it to the sink as one batch."""
        result = self.classifier.classify(self.endpoint, records)
        self.sink.apply(self.endpoint, result.observations)
        logger.info(
            f"Processed {len(records)} {self.endpoint.value} records: "
            f"{len(result.observations)} observations, {result.skipped} skipped"
        )
        return result
