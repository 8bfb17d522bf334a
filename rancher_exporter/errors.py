"""
Exception types for the Rancher exporter.

Every failure the poll-reconcile-map engine can hit is represented here.
None of them is allowed to escape a polling cycle; they are raised inside a
single endpoint or record step, logged, and turned into a skipped step.
"""

from typing import Any, Dict, Optional


class ExporterError(Exception):
    """Base class for exporter errors."""

    pass


class ConfigurationError(ExporterError):
    """Required configuration is missing or invalid. Fatal at start-up."""

    pass


class FetchError(ExporterError):
    """An endpoint could not be fetched or its body could not be decoded."""

    def __init__(self, endpoint: str, message: str, status_code: Optional[int] = None):
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(f"{endpoint}: {message}")


class RecordMappingError(ExporterError):
    """A single record could not be classified or turned into observations."""

    def __init__(
        self,
        message: str,
        record_id: str = "",
        record_name: str = "",
        attempted: Optional[Dict[str, Any]] = None,
    ):
        self.record_id = record_id
        self.record_name = record_name
        self.attempted = attempted or {}
        super().__init__(message)

    def describe(self) -> str:
        """One-line description naming the record and the values attempted."""
        values = ", ".join(f"{k}={v!r}" for k, v in self.attempted.items())
        return f"record id={self.record_id!r} name={self.record_name!r} [{values}]: {self}"


class ReferenceResolutionWarning(UserWarning):
    """A service referenced a stack id the reference store does not know."""

    pass
