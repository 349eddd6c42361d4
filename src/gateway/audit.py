"""Audit logging for gated tool calls.

Every gated call produces exactly one record, whether it was allowed or
denied, succeeded or failed. Writing the record never fails the call:
sink errors are wrapped as AuditWriteError and reported through the
operational log only.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import aiofiles

from shared.errors import AuditWriteError
from shared.logging import get_logger
from shared.models import AuditRecord, ExecutionContext
from domains.base import AuditScope, PostgrestClient

logger = get_logger(__name__)


class AuditSink(ABC):
    """Append-only destination for audit records."""

    @abstractmethod
    async def append(self, record: AuditRecord) -> None:
        """Append one record. May raise; the AuditLogger contains failures."""

    async def close(self) -> None:
        return None


class FileAuditSink(AuditSink):
    """JSON lines file, one record per line."""

    def __init__(self, log_path: str = "logs/kb_audit.log") -> None:
        self.log_path = Path(log_path)
        self._lock = asyncio.Lock()
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    async def append(self, record: AuditRecord) -> None:
        line = record.model_dump_json() + "\n"
        async with self._lock:
            async with aiofiles.open(self.log_path, "a") as f:
                await f.write(line)

    async def read_all(self) -> list[AuditRecord]:
        """Read back every record in append order."""
        if not self.log_path.exists():
            return []
        async with aiofiles.open(self.log_path, "r") as f:
            content = await f.read()
        return [AuditRecord(**json.loads(line)) for line in content.splitlines() if line.strip()]


class PostgrestAuditSink(AuditSink):
    """Rows in the ``kb_audit_log`` table."""

    def __init__(self, client: PostgrestClient, table: str = "kb_audit_log") -> None:
        self.client = client
        self.table = table

    async def append(self, record: AuditRecord) -> None:
        await self.client.insert(self.table, record.model_dump(mode="json"), returning="id")


class LogAuditSink(AuditSink):
    """Audit records go to the structured log only."""

    async def append(self, record: AuditRecord) -> None:
        logger.info("Audit record", **record.model_dump(mode="json"))


class MemoryAuditSink(AuditSink):
    """Keeps records in a list."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    async def append(self, record: AuditRecord) -> None:
        self.records.append(record)


class AuditLogger:
    """
    Records the outcome of gated tool calls.

    ``record`` never raises back to the caller.
    """

    def __init__(self, sink: AuditSink, source: str = "via-mcp-server", enabled: bool = True) -> None:
        self.sink = sink
        self.source = source
        self.enabled = enabled

    def create_record(
        self,
        tool_name: str,
        context: ExecutionContext,
        scope: AuditScope,
        ok: bool,
        error: Optional[str] = None,
    ) -> AuditRecord:
        """Build the audit record for one gated call."""
        return AuditRecord(
            requester_type=context.requester.requester_type,
            requester_id=context.requester.requester_id,
            session_id=context.session_id,
            tool_name=tool_name,
            corpus=scope.corpus,
            doc_ids=scope.doc_ids,
            query=scope.query,
            format=scope.format,
            ok=ok,
            error=error,
            source=self.source,
        )

    async def record(self, record: AuditRecord) -> None:
        """
        Append a record to the sink.

        Failures are logged as AuditWriteError and never propagate.
        """
        if not self.enabled:
            return

        logger.info(
            "KB access audited",
            tool=record.tool_name,
            requester_type=record.requester_type,
            requester_id=record.requester_id,
            corpus=record.corpus,
            ok=record.ok,
            error=record.error
        )

        try:
            await self.sink.append(record)
        except Exception as e:
            failure = AuditWriteError(f"Failed to write audit record: {e}", {"tool": record.tool_name})
            logger.error(
                "Failed to write audit log",
                code=failure.code,
                error=failure.message,
                sink=type(self.sink).__name__
            )

    async def close(self) -> None:
        try:
            await self.sink.close()
        except Exception as e:
            logger.error("Failed to close audit sink", error=str(e))


def create_audit_sink(kind: str, log_path: str, client: Optional[PostgrestClient] = None, table: str = "kb_audit_log") -> AuditSink:
    """Build the configured sink."""
    if kind == "file":
        return FileAuditSink(log_path)
    if kind == "postgrest":
        if client is None:
            raise ValueError("postgrest audit sink requires a PostgREST client")
        return PostgrestAuditSink(client, table)
    if kind == "log":
        return LogAuditSink()
    raise ValueError(f"Unknown audit sink '{kind}'")
