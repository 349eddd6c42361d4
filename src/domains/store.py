"""Backing store for the merchant and intent record collections.

The gateway needs two operations from the data service: insert a record and
get its generated identifier and timestamp back, and count records matching a
filter. Transactions and consistency are the data service's concern.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional

from shared.errors import BackingStoreError
from shared.logging import get_logger
from shared.models import InsertedRow, utcnow
from domains.base import PostgrestClient

logger = get_logger(__name__)

MERCHANTS = "merchants"
INTENTS = "intents"
RECORD_KINDS = (MERCHANTS, INTENTS)


class BackingStore(ABC):
    """Insert-with-id and count over the merchant and intent collections."""

    @abstractmethod
    async def insert(self, kind: str, row: dict[str, Any]) -> InsertedRow:
        """Persist ``row`` and return its generated id and creation time."""

    @abstractmethod
    async def count(self, kind: str, filters: Optional[dict[str, Any]] = None) -> int:
        """Number of records of ``kind`` matching all equality filters."""

    async def close(self) -> None:
        return None

    @staticmethod
    def _check_kind(kind: str) -> None:
        if kind not in RECORD_KINDS:
            raise BackingStoreError(f"Unknown record kind '{kind}'", {"kind": kind})


class PostgrestStore(BackingStore):
    """Backing store on a PostgREST / Supabase project."""

    def __init__(self, client: PostgrestClient, tables: Optional[dict[str, str]] = None) -> None:
        self.client = client
        self.tables = {MERCHANTS: MERCHANTS, INTENTS: INTENTS, **(tables or {})}

    async def insert(self, kind: str, row: dict[str, Any]) -> InsertedRow:
        self._check_kind(kind)
        stored = await self.client.insert(self.tables[kind], row)
        return InsertedRow(id=str(stored.get("id", "n/a")), created_at=str(stored.get("created_at", "n/a")))

    async def count(self, kind: str, filters: Optional[dict[str, Any]] = None) -> int:
        self._check_kind(kind)
        return await self.client.count(self.tables[kind], filters)

    async def close(self) -> None:
        await self.client.close()


class InMemoryStore(BackingStore):
    """
    Non-persistent store.

    Used for local demos and tests; records are lost on restart.
    """

    def __init__(self) -> None:
        self._records: dict[str, list[dict[str, Any]]] = {kind: [] for kind in RECORD_KINDS}
        self._lock = asyncio.Lock()

    async def insert(self, kind: str, row: dict[str, Any]) -> InsertedRow:
        self._check_kind(kind)
        inserted = InsertedRow(id=str(uuid.uuid4()), created_at=utcnow().isoformat())
        async with self._lock:
            self._records[kind].insert(0, {**row, "id": inserted.id, "created_at": inserted.created_at})
        return inserted

    async def count(self, kind: str, filters: Optional[dict[str, Any]] = None) -> int:
        self._check_kind(kind)
        filters = filters or {}
        return sum(
            1 for record in self._records[kind]
            if all(record.get(k) == v for k, v in filters.items())
        )
