"""
Record classification and metric mapping.

Turns one endpoint's batch of RawRecords into MetricObservations:
system records are optionally dropped, records whose type does not match the
endpoint are skipped, stacks populate the reference store and services read
their stack name back from it.
"""

import logging
import re
from typing import Dict, Iterable, List, Sequence

from pydantic import ValidationError

from rancher_exporter.errors import RecordMappingError, ReferenceResolutionWarning
from rancher_exporter.telemetry.references import UNKNOWN_REFERENCE, ReferenceStore
from rancher_exporter.telemetry.schemas import (
    AGENT_STATES,
    HEALTH_STATES,
    HOST_STATES,
    SERVICE_STATES,
    STACK_STATES,
    ClassificationResult,
    Endpoint,
    MetricObservation,
    RawRecord,
    RecordCategory,
)

logger = logging.getLogger(__name__)

_UNSAFE_LABEL_CHARS = re.compile(r"[^a-zA-Z0-9_:]")

ACTIVE = "active"


def sanitize_label_value(value: str) -> str:
    """Replace every character outside [a-zA-Z0-9_:] with an underscore."""
    return _UNSAFE_LABEL_CHARS.sub("_", value)


def resolve_category(record: RawRecord) -> str:
    """Category of a record: basetype when set, otherwise type."""
    return record.base_type or record.type


def is_expected_category(endpoint: Endpoint, category: str) -> bool:
    """True if a record of this category belongs to the endpoint's collection."""
    return category == endpoint.expected_category.value


def filter_system_records(records: Iterable[RawRecord], hide_system: bool) -> List[RawRecord]:
    """Drop system records when hide_system is set, preserving order."""
    if not hide_system:
        return list(records)
    return [r for r in records if not r.system]


def _one_hot(current: str, known: Sequence[str]) -> Dict[str, float]:
    """Known states at 0 plus the current one at 1, keyed by sanitized value."""
    values = {sanitize_label_value(state): 0.0 for state in known}
    if current:
        values[sanitize_label_value(current)] = 1.0
    return values


class RecordClassifier:
    """Maps endpoint batches to metric observations."""

    def __init__(self, references: ReferenceStore, hide_system: bool = True):
        """
        Args:
            references: Store written by stacks and read by services
            hide_system: Drop records flagged as system objects
        """
        self.references = references
        self.hide_system = hide_system

    def classify(self, endpoint: Endpoint, records: Sequence[RawRecord]) -> ClassificationResult:
        """Classify a batch. Never raises for a single bad record."""
        result = ClassificationResult(endpoint=endpoint)

        kept = filter_system_records(records, self.hide_system)
        result.skipped_system = len(records) - len(kept)

        for record in kept:
            category = resolve_category(record)
            if not is_expected_category(endpoint, category):
                logger.debug(
                    f"Skipping {endpoint.value} record {record.id} of type {category!r}"
                )
                result.skipped_category += 1
                continue

            try:
                if endpoint == Endpoint.HOSTS:
                    observations = self._map_host(record)
                elif endpoint == Endpoint.STACKS:
                    observations = self._map_stack(record)
                else:
                    observations = self._map_service(record, result)
            except RecordMappingError as e:
                logger.error(
                    f"Error processing {endpoint.value} metrics: {e.describe()}",
                    extra={"record_id": e.record_id},
                )
                result.failed += 1
                continue

            result.observations.extend(observations)

        logger.debug(
            f"Classified {len(records)} {endpoint.value} records into "
            f"{len(result.observations)} observations ({result.skipped} skipped)"
        )
        return result

    def _map_host(self, record: RawRecord) -> List[MetricObservation]:
        name = record.display_name
        attempted = {"hostname": record.hostname, "state": record.state, "agent": record.agent_state}
        agent_ok = record.agent_state in ("", ACTIVE)
        active = 1.0 if record.state == ACTIVE and agent_ok else 0.0

        samples = [("rancher_host_active", {"name": name}, active)]
        for state, value in _one_hot(record.state, HOST_STATES).items():
            samples.append(("rancher_host_state", {"name": name, "state": state}, value))
        if record.agent_state:
            for state, value in _one_hot(record.agent_state, AGENT_STATES).items():
                samples.append(("rancher_host_agent_state", {"name": name, "state": state}, value))

        return self._observe(RecordCategory.HOST, record, samples, attempted)

    def _map_stack(self, record: RawRecord) -> List[MetricObservation]:
        # Services later in this cycle resolve their stack_name from here
        self.references.put(record.id, record.name)

        system = "true" if record.system else "false"
        attempted = {
            "state": record.state,
            "health_state": record.health_state,
            "system": record.system,
        }
        base = {"name": record.name, "system": system}

        samples = [("rancher_stack_active", base, 1.0 if record.state == ACTIVE else 0.0)]
        for state, value in _one_hot(record.state, STACK_STATES).items():
            samples.append(("rancher_stack_state", {**base, "state": state}, value))
        for health, value in _one_hot(record.health_state, HEALTH_STATES).items():
            samples.append(("rancher_stack_health_status", {**base, "health_state": health}, value))

        return self._observe(RecordCategory.STACK, record, samples, attempted)

    def _map_service(
        self, record: RawRecord, result: ClassificationResult
    ) -> List[MetricObservation]:
        stack_name = self.references.get(record.stack_id)
        if stack_name == UNKNOWN_REFERENCE:
            logger.warning(
                f"Failed to obtain stack_name for {record.name} from the API "
                f"(stack id {record.stack_id!r})",
                extra={
                    "record_id": record.id,
                    "warning_type": ReferenceResolutionWarning.__name__,
                },
            )
            result.unresolved.append(record.name)

        scale = record.scale or 0
        attempted = {
            "stack_name": stack_name,
            "state": record.state,
            "health_state": record.health_state,
            "scale": scale,
        }
        base = {"name": record.name, "stack_name": stack_name}

        samples = [
            ("rancher_service_active", base, 1.0 if record.state == ACTIVE else 0.0),
            ("rancher_service_scale", base, float(scale)),
        ]
        for state, value in _one_hot(record.state, SERVICE_STATES).items():
            samples.append(("rancher_service_state", {**base, "state": state}, value))
        for health, value in _one_hot(record.health_state, HEALTH_STATES).items():
            samples.append(
                ("rancher_service_health_status", {**base, "health_state": health}, value)
            )

        return self._observe(RecordCategory.SERVICE, record, samples, attempted)

    def _observe(self, category, record, samples, attempted) -> List[MetricObservation]:
        """Build sanitized observations; any rejection fails the whole record."""
        observations = []
        for metric, labels, value in samples:
            try:
                observations.append(
                    MetricObservation(
                        category=category,
                        metric=metric,
                        labels={k: sanitize_label_value(str(v)) for k, v in labels.items()},
                        value=value,
                    )
                )
            except ValidationError as e:
                raise RecordMappingError(
                    f"{metric} rejected: {e.errors()[0]['msg']}",
                    record_id=record.id,
                    record_name=record.display_name,
                    attempted=attempted,
                ) from e
        return observations
