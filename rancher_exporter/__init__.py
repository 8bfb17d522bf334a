"""
Rancher exporter - Prometheus metrics for Rancher hosts, stacks and services.
"""

__version__ = "1.0.0"
