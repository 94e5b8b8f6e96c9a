"""HTTP schema adapter with circuit breaker protection."""

import asyncio
from collections.abc import Mapping
from typing import Any

import httpx
import pybreaker

from ..core import get_logger
from ..engine.context import DataContext, initialize_data_context
from ..spec.models import DataItem
from .schema import SchemaAdapterError

logger = get_logger(__name__)


class BreakerListener(pybreaker.CircuitBreakerListener):
    """Logs circuit breaker state changes."""

    def state_change(self, cb, old_state, new_state):
        logger.warning(
            "breaker_state_change",
            breaker=cb.name,
            from_state=str(old_state),
            to_state=str(new_state),
        )


class HttpSchemaAdapter:
    """
    Schema adapter backed by a JSON data service.

    Endpoints:
        GET {base_url}/schema            -> {source: schema descriptor}
        GET {base_url}/sources/{source}  -> [rows] or {"data": [rows]}
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 5.0,
        client: httpx.Client | None = None,
        fail_max: int = 5,
        reset_timeout: int = 30,
    ) -> None:
        """
        Initialize adapter with circuit breaker.

        Args:
            base_url: Base URL of the data service
            timeout: Request timeout in seconds
            client: Optional preconfigured httpx client
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)
        self._schema: dict[str, Any] | None = None
        self._breaker = pybreaker.CircuitBreaker(
            fail_max=fail_max,
            reset_timeout=reset_timeout,
            name="schema-http",
            listeners=[BreakerListener()],
        )
        logger.info("schema_adapter_init", url=self.base_url)

    def _get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"

        def _make_request():
            response = self._client.get(url, params=dict(params or {}))
            response.raise_for_status()
            return response

        try:
            response = self._breaker.call(_make_request)
        except pybreaker.CircuitBreakerError as e:
            logger.error("request_failed", url=url, error="Circuit breaker open - data service unavailable")
            raise SchemaAdapterError("Data service unavailable (circuit open)") from e
        except httpx.HTTPError as e:
            logger.warning("http_error", url=url, error=str(e))
            raise SchemaAdapterError(f"Request to {url} failed: {e}") from e
        return response.json()

    def fetch_schema(self) -> dict[str, Any]:
        """
        Raises:
            SchemaAdapterError: Service unreachable or response malformed
        """
        data = self._get("/schema")
        if not isinstance(data, dict):
            logger.error("invalid_response", type=type(data).__name__)
            raise SchemaAdapterError("Schema response must be an object")
        self._schema = data
        logger.info("schema_fetched", sources=len(data))
        return data

    def get_schema(self) -> dict[str, Any]:
        if self._schema is None:
            return self.fetch_schema()
        return self._schema

    def _fetch_rows(self, source: str, query: Mapping[str, Any] | None) -> list[DataItem]:
        params = {k: v for k, v in (query or {}).items() if isinstance(v, (str, int, float, bool))}
        data = self._get(f"/sources/{source}", params)
        if isinstance(data, dict):
            data = data.get("data")
        if not isinstance(data, list):
            raise SchemaAdapterError(f"Rows for '{source}' must be a list")
        return data

    async def query(self, source: str, query: Mapping[str, Any] | None = None) -> list[DataItem]:
        return await asyncio.to_thread(self._fetch_rows, source, query)

    async def initialize_data_context(self, user_context: Mapping[str, Any] | None = None) -> DataContext:
        schema = await asyncio.to_thread(self.get_schema)
        context = initialize_data_context(schema, user_context)
        for source in context.source_names():
            if context.entry(source).data:
                continue
            rows = await self.query(source)
            context = context.set_path([source, "data"], rows)
        return context

    def health_check(self) -> bool:
        """Check if the data service is reachable (bypasses circuit breaker)."""
        try:
            response = self._client.get(f"{self.base_url}/health", timeout=2.0)
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def close(self) -> None:
        self._client.close()


__all__ = ["HttpSchemaAdapter", "BreakerListener"]
