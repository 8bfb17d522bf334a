"""
Rancher API client.

Fetches one collection (hosts, stacks, services) per call and decodes the
``{"data": [...]}`` body into RawRecord models. Any failure is raised as a
FetchError scoped to that endpoint.
"""

import logging
from typing import Any, List, Optional

import httpx
from pydantic import ValidationError

from rancher_exporter.errors import FetchError, RecordMappingError
from rancher_exporter.telemetry.instrumentation import InternalMetrics
from rancher_exporter.telemetry.schemas import Endpoint, RawRecord

logger = logging.getLogger(__name__)


def build_endpoint_url(base_url: str, category: str) -> str:
    """
    Build the collection URL for a category.

    The first "v1" in the URL is rewritten to "v2-beta" so that exporters
    configured against the v1 API keep working against v2-beta.
    """
    url = base_url + "/" + category + "/"
    return url.replace("v1", "v2-beta", 1)


def decode_records(endpoint: str, payload: Any) -> List[RawRecord]:
    """
    Decode a collection body into records.

    Raises FetchError if the body does not carry a "data" list. Rows that do
    not validate are logged and dropped; the rest of the batch is kept.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
        raise FetchError(endpoint, "response body has no 'data' list")

    records: List[RawRecord] = []
    for row in payload["data"]:
        try:
            records.append(RawRecord.model_validate(row))
        except ValidationError as e:
            row_fields = row if isinstance(row, dict) else {}
            error = RecordMappingError(
                f"invalid {endpoint} record: {e.error_count()} validation error(s)",
                record_id=str(row_fields.get("id", "")),
                record_name=str(row_fields.get("name", "")),
                attempted={
                    k: row_fields.get(k) for k in ("type", "baseType", "state", "scale")
                },
            )
            logger.error(f"Error decoding {endpoint} record: {error.describe()}")
    return records


class RancherClient:
    """Authenticated reader for Rancher API collections."""

    def __init__(
        self,
        base_url: str,
        access_key: str,
        secret_key: str,
        verify_ssl: bool = True,
        timeout_seconds: float = 10.0,
        metrics: Optional[InternalMetrics] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Rancher API URL, e.g. http://rancher.local:8080/v1
            access_key: API access key (Basic auth user)
            secret_key: API secret key (Basic auth password)
            verify_ssl: Verify TLS certificates; False is insecure
            timeout_seconds: Per-request timeout
            metrics: Internal instrumentation sink
        """
        self.base_url = base_url
        self._auth = (access_key, secret_key)
        self.verify_ssl = verify_ssl
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics or InternalMetrics()

        if not verify_ssl:
            logger.warning(
                "TLS certificate verification is DISABLED for the Rancher API (insecure mode)"
            )

    def endpoint_url(self, endpoint: Endpoint) -> str:
        return build_endpoint_url(self.base_url, endpoint.value)

    async def fetch_records(self, endpoint: Endpoint) -> List[RawRecord]:
        """
        Fetch and decode one collection.

        Raises:
            FetchError: network failure, non-2xx status or undecodable body
        """
        url = self.endpoint_url(endpoint)
        with self.metrics.track("client", "fetch_records"):
            try:
                return await self._fetch(endpoint, url)
            except FetchError:
                self.metrics.record_fetch_error(endpoint.value)
                raise

    async def _fetch(self, endpoint: Endpoint, url: str) -> List[RawRecord]:
        logger.info(f"Scraping: {url}")

        try:
            async with httpx.AsyncClient(
                auth=self._auth,
                verify=self.verify_ssl,
                timeout=self.timeout_seconds,
                headers={"Accept": "application/json"},
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise FetchError(endpoint.value, f"request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise FetchError(
                endpoint.value,
                f"API returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise FetchError(endpoint.value, f"malformed JSON body: {e}") from e

        records = decode_records(endpoint.value, payload)
        logger.debug(f"Fetched {len(records)} {endpoint.value} records")
        return records
