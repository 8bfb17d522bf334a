"""
Type-safe schemas for the Rancher exporter.

RawRecord mirrors one row of a Rancher API collection. MetricObservation is
what the classifier hands to the metric sink. The metric catalogue below is
the single source of truth for metric names and their label sets.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ============================================================================
# ENUMS - No magic strings
# ============================================================================


class RecordCategory(str, Enum):
    """Record categories the exporter knows how to map."""

    HOST = "host"
    STACK = "stack"
    SERVICE = "service"


class Endpoint(str, Enum):
    """Rancher API collections polled every cycle."""

    HOSTS = "hosts"
    STACKS = "stacks"
    SERVICES = "services"

    @property
    def expected_category(self) -> RecordCategory:
        """Category a record must resolve to in order to be mapped."""
        return _EXPECTED_CATEGORIES[self]


_EXPECTED_CATEGORIES = {
    Endpoint.HOSTS: RecordCategory.HOST,
    Endpoint.STACKS: RecordCategory.STACK,
    Endpoint.SERVICES: RecordCategory.SERVICE,
}


# ============================================================================
# KNOWN STATES - used for one-hot state families
# ============================================================================

HOST_STATES: Tuple[str, ...] = (
    "activating",
    "active",
    "deactivating",
    "error",
    "erroring",
    "inactive",
    "provisioned",
    "purged",
    "purging",
    "registering",
    "removed",
    "removing",
    "requested",
    "restoring",
    "updating_active",
    "updating_inactive",
)

AGENT_STATES: Tuple[str, ...] = (
    "activating",
    "active",
    "reconnecting",
    "disconnected",
    "disconnecting",
    "finishing-reconnect",
    "reconnected",
)

STACK_STATES: Tuple[str, ...] = (
    "activating",
    "active",
    "canceled_upgrade",
    "canceling_upgrade",
    "error",
    "erroring",
    "finishing_upgrade",
    "removed",
    "removing",
    "requested",
    "restarting",
    "rolling_back",
    "updating_active",
    "upgraded",
    "upgrading",
)

SERVICE_STATES: Tuple[str, ...] = (
    "activating",
    "active",
    "canceled_upgrade",
    "canceling_upgrade",
    "deactivating",
    "finishing_upgrade",
    "inactive",
    "registering",
    "removed",
    "removing",
    "requested",
    "restarting",
    "rolling_back",
    "updating_active",
    "updating_inactive",
    "upgraded",
    "upgrading",
)

HEALTH_STATES: Tuple[str, ...] = (
    "healthy",
    "unhealthy",
    "updating-healthy",
    "updating-unhealthy",
    "initializing",
    "degraded",
)


# ============================================================================
# METRIC CATALOGUE
# ============================================================================


class MetricDefinition(BaseModel):
    """Name, help text and label names of one exported gauge."""

    model_config = ConfigDict(frozen=True)

    name: str
    documentation: str
    category: RecordCategory
    labelnames: Tuple[str, ...]


METRIC_DEFINITIONS: Dict[str, MetricDefinition] = {
    d.name: d
    for d in (
        MetricDefinition(
            name="rancher_host_active",
            documentation="Value of 1 if the host and its agent are active",
            category=RecordCategory.HOST,
            labelnames=("name",),
        ),
        MetricDefinition(
            name="rancher_host_state",
            documentation="State of defined host as reported by the Rancher API",
            category=RecordCategory.HOST,
            labelnames=("name", "state"),
        ),
        MetricDefinition(
            name="rancher_host_agent_state",
            documentation="State of defined host agent as reported by the Rancher API",
            category=RecordCategory.HOST,
            labelnames=("name", "state"),
        ),
        MetricDefinition(
            name="rancher_stack_active",
            documentation="Value of 1 if the stack is active",
            category=RecordCategory.STACK,
            labelnames=("name", "system"),
        ),
        MetricDefinition(
            name="rancher_stack_state",
            documentation="State of defined stack as reported by the Rancher API",
            category=RecordCategory.STACK,
            labelnames=("name", "state", "system"),
        ),
        MetricDefinition(
            name="rancher_stack_health_status",
            documentation="HealthState of defined stack as reported by the Rancher API",
            category=RecordCategory.STACK,
            labelnames=("name", "health_state", "system"),
        ),
        MetricDefinition(
            name="rancher_service_active",
            documentation="Value of 1 if the service is active",
            category=RecordCategory.SERVICE,
            labelnames=("name", "stack_name"),
        ),
        MetricDefinition(
            name="rancher_service_scale",
            documentation="Scale of defined service as reported by Rancher",
            category=RecordCategory.SERVICE,
            labelnames=("name", "stack_name"),
        ),
        MetricDefinition(
            name="rancher_service_state",
            documentation="State of the service, as reported by the Rancher API",
            category=RecordCategory.SERVICE,
            labelnames=("name", "stack_name", "state"),
        ),
        MetricDefinition(
            name="rancher_service_health_status",
            documentation="HealthState of the service, as reported by the Rancher API",
            category=RecordCategory.SERVICE,
            labelnames=("name", "stack_name", "health_state"),
        ),
    )
}

SAFE_LABEL_VALUE = re.compile(r"^[a-zA-Z0-9_:]*$")


# ============================================================================
# RAW RECORDS - one row of an API collection
# ============================================================================


class RawRecord(BaseModel):
    """A single row from a Rancher API collection."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = ""
    name: str = ""
    state: str = ""
    health_state: str = Field(default="", alias="healthState")
    scale: Optional[int] = Field(default=None, ge=0)
    hostname: str = ""
    agent_state: str = Field(default="", alias="agentState")
    system: bool = False
    stack_id: str = Field(default="", alias="stackId")
    environment_id: str = Field(default="", alias="environmentId")

    # Primary and fallback type attributes; the API sends the primary as baseType
    base_type: str = Field(default="", alias="basetype")
    type: str = ""

    @model_validator(mode="before")
    @classmethod
    def _case_insensitive_keys(cls, data):
        """Match API keys to aliases ignoring case; an exact key wins."""
        if not isinstance(data, dict):
            return data

        canonical = {}
        for name, field in cls.model_fields.items():
            key = field.alias or name
            canonical[key.lower()] = key

        decoded = {}
        for key, value in data.items():
            target = canonical.get(key.lower(), key) if isinstance(key, str) else key
            if target in decoded and key != target:
                continue
            decoded[target] = value
        return decoded

    @field_validator(
        "id",
        "name",
        "state",
        "health_state",
        "hostname",
        "agent_state",
        "stack_id",
        "environment_id",
        "base_type",
        "type",
        mode="before",
    )
    @classmethod
    def _null_as_empty(cls, value):
        return "" if value is None else value

    @field_validator("system", mode="before")
    @classmethod
    def _null_as_false(cls, value):
        return False if value is None else value

    @property
    def display_name(self) -> str:
        """Name to label metrics with; hosts fall back to their hostname."""
        return self.name or self.hostname


# ============================================================================
# OBSERVATIONS - what the classifier emits
# ============================================================================


class MetricObservation(BaseModel):
    """A single gauge sample produced for one record in one cycle."""

    model_config = ConfigDict(frozen=True)

    category: RecordCategory
    metric: str
    labels: Dict[str, str]
    value: float = Field(ge=0)

    @model_validator(mode="after")
    def _matches_catalogue(self) -> "MetricObservation":
        definition = METRIC_DEFINITIONS.get(self.metric)
        if definition is None:
            raise ValueError(f"unknown metric {self.metric}")
        if definition.category != self.category:
            raise ValueError(
                f"metric {self.metric} belongs to {definition.category.value}, "
                f"not {self.category.value}"
            )
        if tuple(sorted(self.labels)) != tuple(sorted(definition.labelnames)):
            raise ValueError(
                f"metric {self.metric} expects labels {definition.labelnames}, "
                f"got {tuple(self.labels)}"
            )
        for key, label_value in self.labels.items():
            if not SAFE_LABEL_VALUE.match(label_value):
                raise ValueError(f"label {key}={label_value!r} is not sanitized")
        return self

    def label_values(self) -> Tuple[str, ...]:
        """Label values ordered as the catalogue declares the label names."""
        definition = METRIC_DEFINITIONS[self.metric]
        return tuple(self.labels[name] for name in definition.labelnames)


class ClassificationResult(BaseModel):
    """Output of classifying one endpoint batch."""

    endpoint: Endpoint
    observations: List[MetricObservation] = Field(default_factory=list)
    skipped_system: int = 0
    skipped_category: int = 0
    failed: int = 0
    unresolved: List[str] = Field(default_factory=list)

    @property
    def skipped(self) -> int:
        return self.skipped_system + self.skipped_category + self.failed


# ============================================================================
# CYCLE REPORTS
# ============================================================================


class EndpointResult(BaseModel):
    """Outcome of one endpoint's fetch-classify-map stage."""

    endpoint: Endpoint
    success: bool
    records_fetched: int = Field(default=0, ge=0)
    records_skipped: int = Field(default=0, ge=0)
    observations: int = Field(default=0, ge=0)
    duration_ms: int = Field(default=0, ge=0)
    error: Optional[str] = None


class CycleReport(BaseModel):
    """Summary of one complete polling cycle."""

    cycle_id: str
    started_at: datetime
    duration_ms: int = Field(ge=0)
    results: List[EndpointResult]
    errors: List[str] = Field(default_factory=list)
    # Cumulative per-collector counters as of the end of this cycle
    collector_stats: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    def result_for(self, endpoint: Endpoint) -> Optional[EndpointResult]:
        for result in self.results:
            if result.endpoint == endpoint:
                return result
        return None

    @property
    def succeeded(self) -> bool:
        return all(r.success for r in self.results)
