"""
Rancher exporter telemetry engine.

Polls the Rancher API for hosts, stacks and services, resolves service stack
names through a reference store and exposes the result as Prometheus gauges.

Usage:
    from rancher_exporter.telemetry import ExporterService

    service = ExporterService(config)
    await service.start()
"""

from rancher_exporter.telemetry.service import ExporterService, run_exporter_service
from rancher_exporter.telemetry.orchestrator import ExporterOrchestrator, CycleScheduler
from rancher_exporter.telemetry.client import RancherClient, build_endpoint_url
from rancher_exporter.telemetry.classifier import RecordClassifier, sanitize_label_value
from rancher_exporter.telemetry.references import ReferenceStore
from rancher_exporter.telemetry.sink import MetricSink
from rancher_exporter.telemetry.schemas import (
    CycleReport,
    Endpoint,
    EndpointResult,
    MetricObservation,
    RawRecord,
    RecordCategory,
)

__all__ = [
    # Service
    "ExporterService",
    "run_exporter_service",
    # Engine
    "ExporterOrchestrator",
    "CycleScheduler",
    "RancherClient",
    "build_endpoint_url",
    "RecordClassifier",
    "sanitize_label_value",
    "ReferenceStore",
    "MetricSink",
    # Schemas
    "CycleReport",
    "Endpoint",
    "EndpointResult",
    "MetricObservation",
    "RawRecord",
    "RecordCategory",
]
