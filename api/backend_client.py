"""
HTTP client for the plant performance-test backend.

The backend owns performance records, input tag definitions and saved
manual input values. This module wraps its JSON endpoints:

- GET  /api/performance-records
- GET  /api/input-tags?datetime=&perf_id=&m_input=
- POST /api/data-analysis/save-manual-input
- GET  /api/data-analysis/data?perf_id=   (tab names)

Every endpoint answers ``{"success": bool, "message": str, ...}``. Anything
else (a redirect, a non-JSON body, a missing or false ``success``) is
treated like an HTTP error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .shared.logger import get_logger
from .shared.time_slots import coerce_tags, normalize_existing_inputs
from .shared.types import ExistingInput, InputTag, PerformanceRecord, SaveRecord, _to_int

logger = get_logger(__name__)


class BackendError(Exception):
    """Raised when the plant backend cannot be reached or rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class BackendTimeoutError(BackendError):
    """Raised when the plant backend does not answer in time."""


@dataclass
class InputTagsPayload:
    """Input tags of one tab plus the values saved for them."""
    input_tags: List[InputTag] = field(default_factory=list)
    existing_inputs: Dict[str, ExistingInput] = field(default_factory=dict)


@dataclass
class SaveResult:
    records_created: int = 0
    records_updated: int = 0
    total_processed: int = 0
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "records_created": self.records_created,
            "records_updated": self.records_updated,
            "total_processed": self.total_processed,
            "message": self.message,
        }


class BackendClient:
    """Async client for the plant backend REST API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        save_timeout: float = 30.0,
        api_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the backend client.

        Args:
            base_url: Root URL of the plant backend (without ``/api``)
            timeout: Timeout in seconds for read requests
            save_timeout: Timeout in seconds for save requests
            api_token: Optional bearer token sent with every request
            transport: Optional httpx transport (used by tests)
        """
        headers = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.save_timeout = save_timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """Send a request and return the decoded JSON body of a successful answer."""
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("Backend %s %s timed out", method, path)
            raise BackendTimeoutError(f"Backend request timed out: {path}") from e
        except httpx.HTTPError as e:
            logger.error("Backend %s %s failed: %s", method, path, e)
            raise BackendError(f"Backend unreachable: {e}") from e

        # Redirects are not followed: an expired session answers 302 to the login page
        if response.is_redirect:
            location = response.headers.get("location") or "unknown location"
            logger.error("Backend %s %s redirected to %s", method, path, location)
            raise BackendError(
                f"Backend redirected to {location}; the session may have expired",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            body = body if isinstance(body, dict) else {}
            message = body.get("message") or body.get("error") or response.reason_phrase
            logger.error("Backend %s %s returned %d: %s", method, path, response.status_code, message)
            raise BackendError(str(message), status_code=response.status_code)

        if not isinstance(body, dict):
            logger.error("Backend %s %s returned a non-JSON-object body", method, path)
            raise BackendError("Backend returned an unexpected response", status_code=response.status_code)

        if body.get("success") is not True:
            message = body.get("message") or body.get("error") or "Operation was not successful"
            raise BackendError(str(message), status_code=response.status_code)

        return body

    # ============= Performance records =============

    async def get_performance_records(self) -> List[PerformanceRecord]:
        """List performance tests of the selected unit, most recent first."""
        body = await self._request("GET", "/api/performance-records")
        records = [
            PerformanceRecord.from_dict(item)
            for item in body.get("performances") or []
            if isinstance(item, dict)
        ]
        logger.debug("Fetched %d performance records", len(records))
        return records

    async def get_tab_names(self, perf_id: int) -> Dict[int, str]:
        """Return the manual input tab names configured for the unit."""
        body = await self._request("GET", "/api/data-analysis/data", params={"perf_id": perf_id})
        names: Dict[int, str] = {}
        for key, name in (body.get("tab_names") or {}).items():
            try:
                names[int(key)] = str(name)
            except (TypeError, ValueError):
                continue
        return names

    # ============= Manual input =============

    async def get_input_tags(
        self,
        datetime: str,
        perf_id: int,
        m_input: Optional[int] = None,
    ) -> InputTagsPayload:
        """Fetch the input tags of one tab and their saved values."""
        params: Dict[str, Any] = {"datetime": datetime, "perf_id": perf_id}
        if m_input is not None:
            params["m_input"] = m_input

        body = await self._request("GET", "/api/input-tags", params=params)
        raw_tags = body.get("input_tags")
        tags = coerce_tags(raw_tags if isinstance(raw_tags, list) else [])
        existing = normalize_existing_inputs(body.get("existing_inputs"))
        logger.info(
            "Fetched %d input tags and %d saved values for perf %s (m_input=%s)",
            len(tags), len(existing), perf_id, m_input,
        )
        return InputTagsPayload(
            input_tags=tags,
            existing_inputs=existing,
        )

    async def save_manual_input(self, records: Sequence[SaveRecord]) -> SaveResult:
        """Upsert manual input values (keyed by tag_no, date_rec and perf_id)."""
        payload = {"data": [record.to_dict() for record in records]}
        body = await self._request(
            "POST",
            "/api/data-analysis/save-manual-input",
            json=payload,
            timeout=self.save_timeout,
        )
        # The values are already committed; malformed counters must not turn this into a failure
        result = SaveResult(
            records_created=_to_int(body.get("records_created")),
            records_updated=_to_int(body.get("records_updated")),
            total_processed=_to_int(body.get("total_processed")) or len(records),
            message=str(body.get("message") or ""),
        )
        logger.info(
            "Saved %d manual input records (%d created, %d updated)",
            result.total_processed, result.records_created, result.records_updated,
        )
        return result
