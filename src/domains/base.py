"""Base classes for domain adapters.

All adapters must:
- Declare their tools with an input schema
- Translate tool calls to the knowledge base or the backing store
- Return a ToolResult, a dict, or a string
- Never make cross-domain calls
- Never decide access themselves (the dispatcher enforces policy)
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from shared.errors import BackingStoreError
from shared.logging import get_logger
from shared.models import ExecutionContext, ToolDefinition, ToolResult

logger = get_logger(__name__)


class BaseAdapter(ABC):
    """
    Base class for domain adapters.

    Each adapter:
    - Handles one domain only
    - Owns the tool definitions of that domain
    - Is stateless between calls
    """

    def __init__(self, domain: str) -> None:
        self.domain = domain
        self._tools: dict[str, ToolDefinition] = {}

    @property
    def tools(self) -> list[ToolDefinition]:
        """Return all tool definitions for this domain."""
        return list(self._tools.values())

    @abstractmethod
    async def execute(
        self,
        action: str,
        arguments: dict[str, Any],
        context: ExecutionContext
    ) -> ToolResult | dict[str, Any] | str:
        """
        Execute a tool action.

        Args:
            action: Tool name
            arguments: Schema-validated arguments
            context: Execution context with requester info

        Returns:
            Tool execution result
        """

    def _text(self, action: str, text: str) -> ToolResult:
        return ToolResult.plain_text(action, text)

    def _error(self, action: str, message: str, code: str = "ERROR") -> ToolResult:
        return ToolResult.failure(action, message, code)


class AuditScope(BaseModel):
    """Request details copied into the audit record of a gated call."""
    corpus: Optional[str] = None
    doc_ids: Optional[list[str]] = None
    query: Optional[str] = None
    format: Optional[str] = None


class GatedAdapter(BaseAdapter):
    """
    Adapter whose tools read corpus content and are subject to access policy.

    The dispatcher asks the adapter which corpora a call touches, enforces the
    policy for each, and passes the allowed corpora in the execution context.
    """

    @abstractmethod
    def audit_scope(self, action: str, arguments: dict[str, Any]) -> AuditScope:
        """Describe the request for auditing. Must not raise on malformed arguments."""

    @abstractmethod
    def gate_corpora(self, action: str, arguments: dict[str, Any]) -> list[str]:
        """Corpora the call would read. May raise NotFound."""

    def audited_doc_ids(self, action: str, value: Any) -> Optional[list[str]]:
        """Document ids actually returned by a successful call."""
        return None


class PostgrestClient:
    """
    Minimal async client for a PostgREST (Supabase) data API.

    Provides exactly what the gateway needs: insert returning columns,
    exact row counts, and single-row lookups by equality filters.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @staticmethod
    def _eq_filters(filters: Optional[dict[str, Any]]) -> dict[str, str]:
        return {column: f"eq.{value}" for column, value in (filters or {}).items()}

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict):
            return body.get("message") or body.get("error") or str(body)
        return str(body)

    async def _request(self, method: str, table: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, f"/{table}", **kwargs)
        except httpx.HTTPError as e:
            logger.error("Backing store unreachable", table=table, error=str(e))
            raise BackingStoreError(f"{table}: {e}") from e

        if response.is_error:
            message = self._error_message(response)
            logger.error(
                "Backing store request failed",
                table=table,
                status=response.status_code,
                error=message
            )
            raise BackingStoreError(message, {"table": table, "status": response.status_code})
        return response

    async def insert(
        self,
        table: str,
        row: dict[str, Any],
        returning: str = "id,created_at"
    ) -> dict[str, Any]:
        """Insert one row and return the requested columns of the stored row."""
        response = await self._request(
            "POST",
            table,
            json=row,
            params={"select": returning},
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        if not rows:
            raise BackingStoreError(f"{table}: insert returned no row", {"table": table})
        return rows[0]

    async def count(self, table: str, filters: Optional[dict[str, Any]] = None) -> int:
        """Exact number of rows matching equality filters."""
        params = {"select": "id", **self._eq_filters(filters)}
        response = await self._request(
            "HEAD",
            table,
            params=params,
            headers={"Prefer": "count=exact"},
        )
        content_range = response.headers.get("content-range", "")
        _, _, total = content_range.partition("/")
        if not total.isdigit():
            raise BackingStoreError(
                f"{table}: missing exact count in Content-Range '{content_range}'",
                {"table": table},
            )
        return int(total)

    async def select_one(
        self,
        table: str,
        filters: dict[str, Any],
        columns: str = "*"
    ) -> Optional[dict[str, Any]]:
        """First row matching equality filters, or None."""
        params = {"select": columns, "limit": "1", **self._eq_filters(filters)}
        response = await self._request("GET", table, params=params)
        rows = response.json()
        return rows[0] if rows else None

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
