"""
HTTP Remote Executor

Implements the RemoteExecutor and TestCatalog protocols against the test
execution service's REST API.

Every method makes exactly one request. Retrying is left to QueryHelper so
that retry counts and delays stay under the caller's configuration.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx

from testall.common.logging import get_sanitized_logger
from testall.common.telemetry import get_tracer
from testall.contracts.core import (
    CoverageAggregate,
    ExpectedSet,
    RunRecord,
    TestItem,
    TestResult,
)

# Error bodies can echo session ids back
logger = get_sanitized_logger(__name__)
tracer = get_tracer(__name__)

# Work item statuses that still need to drain before a run is fully cancelled
OUTSTANDING_STATUSES = ("Holding", "Queued", "Preparing", "Processing")


class HttpRemoteExecutor:
    """
    Remote executor that calls the test execution service over HTTP.

    Features:
    - Bearer token authentication
    - Connection pooling: one client reused for every call
    - Timeout: Prevents hanging on slow responses

    HTTP and transport failures propagate as ``httpx.HTTPError``.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout_seconds: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the HTTP executor.

        Args:
            base_url: Base URL of the execution service
                      (e.g., "https://tests.example.com/api")
            token: Optional bearer token
            timeout_seconds: Timeout for each request
            transport: Optional transport, for tests
        """
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout_seconds = timeout_seconds
        self._transport = transport

        # HTTP client (created lazily)
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"

            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=httpx.Timeout(self._timeout_seconds),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpRemoteExecutor:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        client = await self._get_client()
        response = await client.request(method, path, **kwargs)
        if response.is_error:
            logger.warning(
                f"{method} {path} failed with {response.status_code}: {response.text[:500]}"
            )
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    # =========================================================================
    # RemoteExecutor
    # =========================================================================

    async def submit(self, items: Sequence[TestItem], skip_coverage: bool = True) -> str:
        with tracer.start_as_current_span("testall.http.submit") as span:
            span.set_attribute("testall.items", len(items))
            data = await self._request(
                "POST",
                "/runs",
                json={
                    "tests": [item.model_dump(mode="json", exclude_none=True) for item in items],
                    "skip_coverage": skip_coverage,
                },
            )
            job_id = data["job_id"]
            span.set_attribute("testall.job_id", job_id)
            return job_id

    async def status(self, job_id: str) -> list[RunRecord]:
        data = await self._request("GET", f"/runs/{job_id}")
        return [RunRecord.model_validate(r) for r in data.get("records", [])]

    async def results(
        self, job_id: str, offset: int = 0, limit: int | None = None
    ) -> list[TestResult]:
        params: dict[str, Any] = {"offset": offset}
        if limit is not None:
            params["limit"] = limit
        data = await self._request("GET", f"/runs/{job_id}/results", params=params)
        return [TestResult.model_validate(r) for r in data.get("results", [])]

    async def run_single_synchronous(self, item: TestItem) -> TestResult | None:
        data = await self._request(
            "POST",
            "/tests/run-sync",
            json={"test": item.model_dump(mode="json", exclude_none=True)},
        )
        result = (data or {}).get("result")
        return TestResult.model_validate(result) if result else None

    async def list_outstanding(self, job_id: str) -> list[str]:
        data = await self._request(
            "GET",
            f"/runs/{job_id}/queue",
            params={"status": ",".join(OUTSTANDING_STATUSES)},
        )
        return list(data.get("ids", []))

    async def mark_aborted(self, work_item_ids: Sequence[str]) -> None:
        await self._request("POST", "/queue/abort", json={"ids": list(work_item_ids)})

    async def covered_subjects(self, test_class_ids: Sequence[str]) -> list[str]:
        data = await self._request(
            "POST", "/coverage/subjects", json={"test_class_ids": list(test_class_ids)}
        )
        return list(data.get("subject_ids", []))

    async def coverage_aggregates(self, subject_ids: Sequence[str]) -> list[CoverageAggregate]:
        data = await self._request(
            "POST", "/coverage/aggregates", json={"subject_ids": list(subject_ids)}
        )
        return [CoverageAggregate.model_validate(a) for a in data.get("aggregates", [])]

    # =========================================================================
    # TestCatalog
    # =========================================================================

    async def list_classes(self, namespace: str | None, names: Sequence[str]) -> dict[str, str]:
        params: dict[str, Any] = {}
        if namespace:
            params["namespace"] = namespace
        if names:
            params["name"] = list(names)
        data = await self._request("GET", "/classes", params=params)
        return dict(data.get("classes", {}))

    async def list_test_methods(self, class_ids: Sequence[str]) -> ExpectedSet:
        data = await self._request(
            "POST", "/classes/test-methods", json={"class_ids": list(class_ids)}
        )
        return {name: set(methods) for name, methods in data.get("methods", {}).items()}


__all__ = ["HttpRemoteExecutor", "OUTSTANDING_STATUSES"]
