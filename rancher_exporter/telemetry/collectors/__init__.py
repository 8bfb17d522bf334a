"""
Collector implementations.
"""

from rancher_exporter.telemetry.collectors.endpoint_collector import EndpointCollector

__all__ = [
    "EndpointCollector",
]
