"""
Pytest configuration and fixtures for rancher-exporter tests.
"""

import asyncio
from typing import Dict, List, Optional

import pytest
from prometheus_client import CollectorRegistry

from rancher_exporter.errors import FetchError
from rancher_exporter.telemetry.instrumentation import InternalMetrics
from rancher_exporter.telemetry.schemas import Endpoint, RawRecord


def host_row(host_id: str, name: str = "", hostname: str = "", **fields) -> dict:
    row = {
        "id": host_id,
        "name": name,
        "hostname": hostname,
        "state": "active",
        "agentState": "active",
        "baseType": "host",
        "type": "host",
        "system": False,
    }
    row.update(fields)
    return row


def stack_row(stack_id: str, name: str, **fields) -> dict:
    row = {
        "id": stack_id,
        "name": name,
        "state": "active",
        "healthState": "healthy",
        "baseType": "",
        "type": "stack",
        "system": False,
    }
    row.update(fields)
    return row


def service_row(service_id: str, name: str, stack_id: str, **fields) -> dict:
    row = {
        "id": service_id,
        "name": name,
        "stackId": stack_id,
        "environmentId": "1a5",
        "state": "active",
        "healthState": "healthy",
        "scale": 2,
        "baseType": "service",
        "type": "service",
        "system": False,
    }
    row.update(fields)
    return row


def records(*rows: dict) -> List[RawRecord]:
    return [RawRecord.model_validate(row) for row in rows]


class FakeRancherClient:
    """Stand-in for RancherClient serving canned batches with optional delays."""

    def __init__(
        self,
        batches: Dict[Endpoint, List[RawRecord]],
        delays: Optional[Dict[Endpoint, float]] = None,
        failures: Optional[Dict[Endpoint, str]] = None,
    ):
        self.batches = batches
        self.delays = delays or {}
        self.failures = failures or {}
        self.metrics = InternalMetrics(CollectorRegistry())
        self.calls: List[Endpoint] = []

    async def fetch_records(self, endpoint: Endpoint) -> List[RawRecord]:
        self.calls.append(endpoint)
        await asyncio.sleep(self.delays.get(endpoint, 0))
        if endpoint in self.failures:
            raise FetchError(endpoint.value, self.failures[endpoint])
        return list(self.batches.get(endpoint, []))


@pytest.fixture
def registry():
    """Fresh registry per test so metric names never collide."""
    return CollectorRegistry()


@pytest.fixture
def sample_batches():
    """One host, two stacks (one system) and three services."""
    return {
        Endpoint.HOSTS: records(host_row("1h1", hostname="node-1.example.com")),
        Endpoint.STACKS: records(
            stack_row("1st5", "frontend"),
            stack_row("1st6", "healthcheck", system=True),
        ),
        Endpoint.SERVICES: records(
            service_row("1s1", "web", "1st5"),
            service_row("1s2", "worker", "1st5", state="inactive", scale=0),
            service_row("1s3", "healthcheck", "1st6", system=True),
        ),
    }


@pytest.fixture
def fake_client(sample_batches):
    return FakeRancherClient(sample_batches)
