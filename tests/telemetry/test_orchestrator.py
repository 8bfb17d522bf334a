"""
Unit tests for the cycle orchestrator and scheduler.

Uses a fake Rancher client with per-endpoint latency and failures.
"""

import asyncio

import pytest
from prometheus_client import CollectorRegistry, generate_latest

from rancher_exporter.telemetry.orchestrator import CycleScheduler, ExporterOrchestrator
from rancher_exporter.telemetry.references import ReferenceStore
from rancher_exporter.telemetry.schemas import CycleReport, Endpoint
from rancher_exporter.telemetry.sink import MetricSink

from conftest import FakeRancherClient, records, stack_row


class TestExporterOrchestrator:
    """Test ExporterOrchestrator functionality."""

    @pytest.fixture
    def sink(self, registry):
        return MetricSink(registry)

    def make_orchestrator(self, client, sink, **kwargs):
        return ExporterOrchestrator(client=client, sink=sink, endpoint_timeout=2, **kwargs)

    @pytest.mark.asyncio
    async def test_full_cycle(self, fake_client, sink, registry):
        orchestrator = self.make_orchestrator(fake_client, sink)

        report = await orchestrator.run_cycle()

        assert isinstance(report, CycleReport)
        assert report.succeeded
        assert report.errors == []
        assert [r.endpoint for r in report.results] == [
            Endpoint.HOSTS,
            Endpoint.STACKS,
            Endpoint.SERVICES,
        ]
        services = report.result_for(Endpoint.SERVICES)
        assert services.records_fetched == 3
        assert services.records_skipped == 1

        assert registry.get_sample_value(
            "rancher_host_active", {"name": "node_1_example_com"}
        ) == 1.0
        assert registry.get_sample_value(
            "rancher_service_scale", {"name": "web", "stack_name": "frontend"}
        ) == 2.0
        assert registry.get_sample_value(
            "rancher_service_active", {"name": "worker", "stack_name": "frontend"}
        ) == 0.0
        # System stack and its service are hidden
        assert registry.get_sample_value(
            "rancher_stack_active", {"name": "healthcheck", "system": "true"}
        ) is None

    @pytest.mark.asyncio
    async def test_services_wait_for_stacks(self, sample_batches, sink, registry):
        """Stacks arriving long after services still label the services."""
        client = FakeRancherClient(
            sample_batches,
            delays={Endpoint.STACKS: 0.2, Endpoint.SERVICES: 0.0, Endpoint.HOSTS: 0.05},
        )
        orchestrator = self.make_orchestrator(client, sink)

        report = await orchestrator.run_cycle()

        assert report.succeeded
        assert registry.get_sample_value(
            "rancher_service_active", {"name": "web", "stack_name": "frontend"}
        ) == 1.0
        assert registry.get_sample_value(
            "rancher_service_active", {"name": "web", "stack_name": "unknown"}
        ) is None

    @pytest.mark.asyncio
    async def test_resolution_independent_of_latency(self, sample_batches, registry):
        outputs = []
        for delays in (
            {Endpoint.STACKS: 0.1},
            {Endpoint.SERVICES: 0.1},
            {Endpoint.HOSTS: 0.1},
        ):
            fresh = CollectorRegistry()
            orchestrator = self.make_orchestrator(
                FakeRancherClient(sample_batches, delays=delays), MetricSink(fresh)
            )
            await orchestrator.run_cycle()
            outputs.append(generate_latest(fresh))

        assert outputs[0] == outputs[1] == outputs[2]

    @pytest.mark.asyncio
    async def test_fetches_run_concurrently(self, sample_batches, sink):
        client = FakeRancherClient(
            sample_batches,
            delays={Endpoint.HOSTS: 0.2, Endpoint.STACKS: 0.2, Endpoint.SERVICES: 0.2},
        )
        orchestrator = self.make_orchestrator(client, sink)

        report = await orchestrator.run_cycle()

        assert report.duration_ms < 500

    @pytest.mark.asyncio
    async def test_partial_failure_isolation(self, sample_batches, sink, registry):
        client = FakeRancherClient(sample_batches, failures={Endpoint.HOSTS: "HTTP 500"})
        orchestrator = self.make_orchestrator(client, sink)

        report = await orchestrator.run_cycle()

        hosts = report.result_for(Endpoint.HOSTS)
        assert hosts.success is False
        assert "HTTP 500" in hosts.error
        assert report.result_for(Endpoint.STACKS).success
        assert report.result_for(Endpoint.SERVICES).success
        assert len(report.errors) == 1

        assert registry.get_sample_value(
            "rancher_stack_active", {"name": "frontend", "system": "false"}
        ) == 1.0
        assert registry.get_sample_value(
            "rancher_service_active", {"name": "web", "stack_name": "frontend"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_failed_endpoint_keeps_previous_batch(self, sample_batches, sink, registry):
        client = FakeRancherClient(sample_batches)
        orchestrator = self.make_orchestrator(client, sink)
        await orchestrator.run_cycle()

        client.failures[Endpoint.HOSTS] = "connection refused"
        await orchestrator.run_cycle()

        assert registry.get_sample_value(
            "rancher_host_active", {"name": "node_1_example_com"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_stale_endpoint_is_visible(self, sample_batches, sink):
        client = FakeRancherClient(sample_batches)
        orchestrator = self.make_orchestrator(client, sink)
        internal = client.metrics.registry
        await orchestrator.run_cycle()

        last_success = internal.get_sample_value(
            "rancher_exporter_endpoint_last_success_timestamp_seconds", {"endpoint": "hosts"}
        )
        assert internal.get_sample_value(
            "rancher_exporter_endpoint_up", {"endpoint": "hosts"}
        ) == 1.0
        assert last_success > 0

        client.failures[Endpoint.HOSTS] = "connection refused"
        await orchestrator.run_cycle()

        assert internal.get_sample_value(
            "rancher_exporter_endpoint_up", {"endpoint": "hosts"}
        ) == 0.0
        assert internal.get_sample_value(
            "rancher_exporter_endpoint_up", {"endpoint": "services"}
        ) == 1.0
        assert internal.get_sample_value(
            "rancher_exporter_endpoint_last_success_timestamp_seconds", {"endpoint": "hosts"}
        ) == last_success

    @pytest.mark.asyncio
    async def test_stacks_failure_leaves_services_unknown(self, sample_batches, sink, registry):
        client = FakeRancherClient(sample_batches, failures={Endpoint.STACKS: "timeout"})
        orchestrator = self.make_orchestrator(client, sink)

        report = await orchestrator.run_cycle()

        assert report.result_for(Endpoint.SERVICES).success
        assert registry.get_sample_value(
            "rancher_service_active", {"name": "web", "stack_name": "unknown"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_references_survive_across_cycles(self, sample_batches, sink, registry):
        """A stack missing from a later poll still names its services."""
        references = ReferenceStore()
        client = FakeRancherClient(sample_batches)
        orchestrator = self.make_orchestrator(client, sink, references=references)
        await orchestrator.run_cycle()

        client.batches[Endpoint.STACKS] = []
        await orchestrator.run_cycle()

        assert references.get("1st5") == "frontend"
        assert registry.get_sample_value(
            "rancher_service_active", {"name": "web", "stack_name": "frontend"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_renamed_stack_relabels_services(self, sample_batches, sink, registry):
        client = FakeRancherClient(sample_batches)
        orchestrator = self.make_orchestrator(client, sink)
        await orchestrator.run_cycle()

        client.batches[Endpoint.STACKS] = records(stack_row("1st5", "frontend-v2"))
        await orchestrator.run_cycle()

        assert registry.get_sample_value(
            "rancher_service_active", {"name": "web", "stack_name": "frontend_v2"}
        ) == 1.0
        assert registry.get_sample_value(
            "rancher_service_active", {"name": "web", "stack_name": "frontend"}
        ) is None

    @pytest.mark.asyncio
    async def test_concurrent_cycles_are_serialized(self, sample_batches, sink):
        client = FakeRancherClient(sample_batches, delays={Endpoint.STACKS: 0.05})
        orchestrator = self.make_orchestrator(client, sink)

        first, second = await asyncio.gather(orchestrator.run_cycle(), orchestrator.run_cycle())

        assert first.cycle_id != second.cycle_id
        # Second cycle only starts fetching once the first has finished
        assert client.calls[:3].count(Endpoint.STACKS) == 1
        assert len(client.calls) == 6

    @pytest.mark.asyncio
    async def test_collect_wraps_report(self, fake_client, sink):
        orchestrator = self.make_orchestrator(fake_client, sink)

        result = await orchestrator.collect_with_timeout()

        assert len(result) == 1
        assert isinstance(result[0], CycleReport)

    @pytest.mark.asyncio
    async def test_hide_system_disabled(self, sample_batches, sink, registry):
        orchestrator = self.make_orchestrator(
            FakeRancherClient(sample_batches), sink, hide_system=False
        )

        await orchestrator.run_cycle()

        assert registry.get_sample_value(
            "rancher_service_active", {"name": "healthcheck", "stack_name": "healthcheck"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_report_carries_collector_stats(self, sample_batches, sink):
        client = FakeRancherClient(sample_batches)
        orchestrator = self.make_orchestrator(client, sink)
        await orchestrator.run_cycle()

        client.failures[Endpoint.HOSTS] = "HTTP 503"
        report = await orchestrator.run_cycle()

        hosts = report.collector_stats["hosts"]
        assert hosts["collections"] == 2
        assert hosts["errors"] == 1
        assert hosts["error_rate"] == 0.5
        assert "HTTP 503" in hosts["last_error"]
        assert report.collector_stats["services"]["errors"] == 0
        assert set(report.collector_stats) == {"hosts", "stacks", "services"}

    @pytest.mark.asyncio
    async def test_cycle_duration_recorded(self, fake_client, sink):
        orchestrator = self.make_orchestrator(fake_client, sink)

        await orchestrator.run_cycle()
        await orchestrator.run_cycle()

        assert fake_client.metrics.registry.get_sample_value(
            "rancher_exporter_cycle_duration_seconds_count"
        ) == 2.0


class TestCycleScheduler:
    """Test CycleScheduler functionality."""

    @pytest.mark.asyncio
    async def test_runs_immediately_and_keeps_report(self, fake_client, registry):
        orchestrator = ExporterOrchestrator(fake_client, MetricSink(registry))
        scheduler = CycleScheduler(orchestrator, interval_seconds=60)

        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.cycles_completed == 1
        report = scheduler.get_last_report()
        assert report is not None
        assert report.succeeded
        assert registry.get_sample_value(
            "rancher_service_scale", {"name": "web", "stack_name": "frontend"}
        ) == 2.0

    @pytest.mark.asyncio
    async def test_repeats_on_interval(self, fake_client, registry):
        orchestrator = ExporterOrchestrator(fake_client, MetricSink(registry))
        scheduler = CycleScheduler(orchestrator, interval_seconds=0.05)

        await scheduler.start()
        await asyncio.sleep(0.18)
        await scheduler.stop()

        assert scheduler.cycles_completed >= 3

    @pytest.mark.asyncio
    async def test_no_cycles_after_stop(self, fake_client, registry):
        orchestrator = ExporterOrchestrator(fake_client, MetricSink(registry))
        scheduler = CycleScheduler(orchestrator, interval_seconds=0.02)

        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()
        calls = len(fake_client.calls)
        await asyncio.sleep(0.1)

        assert len(fake_client.calls) == calls

    @pytest.mark.asyncio
    async def test_endpoint_failures_do_not_stop_scheduler(self, sample_batches, registry):
        client = FakeRancherClient(
            sample_batches,
            failures={e: "down" for e in Endpoint},
        )
        scheduler = CycleScheduler(
            ExporterOrchestrator(client, MetricSink(registry)), interval_seconds=0.02
        )

        await scheduler.start()
        await asyncio.sleep(0.1)
        assert scheduler.is_running
        await scheduler.stop()

        assert scheduler.cycles_completed >= 2
        assert len(scheduler.get_last_report().errors) == 3
