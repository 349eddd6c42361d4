"""Merchants Domain - merchant registration and purchase intents.

Write tools persist to the backing store and return the generated id and
creation time. The summary tool is a read-only count over both collections.
"""

import asyncio
import math
from typing import TYPE_CHECKING, Any

from shared.errors import BackingStoreError, ValidationError
from shared.logging import get_logger
from shared.models import ExecutionContext, ExecutionType, ToolDefinition, ToolResult
from domains.base import BaseAdapter
from domains.store import INTENTS, MERCHANTS, BackingStore

if TYPE_CHECKING:
    from gateway.dispatcher import ToolDispatcher

logger = get_logger(__name__)

DOMAIN = "merchants"


def _required_string(description: str) -> dict[str, Any]:
    return {"type": "string", "minLength": 1, "description": description}


class MerchantsAdapter(BaseAdapter):
    """
    Merchants Domain Adapter.

    Provides tools for:
    - Registering merchants
    - Capturing user purchase intents
    - Summarizing both collections
    """

    def __init__(self, store: BackingStore) -> None:
        super().__init__(DOMAIN)
        self.store = store
        self._define_tools()

    def _define_tools(self) -> None:
        """Define all merchant tools."""

        self._tools["register_merchant"] = ToolDefinition(
            name="register_merchant",
            domain=DOMAIN,
            description="Register a merchant (writes to the merchants table).",
            input_schema={
                "type": "object",
                "properties": {
                    "name": _required_string("Merchant display name"),
                    "category": _required_string("Merchant category, e.g. groceries"),
                    "country": _required_string("Country the merchant operates in"),
                },
                "required": ["name", "category", "country"],
                "additionalProperties": False,
            },
            execution_type=ExecutionType.WRITE,
        )

        self._tools["create_intent"] = ToolDefinition(
            name="create_intent",
            domain=DOMAIN,
            description="Create a user intent to buy something from a merchant (writes to the intents table).",
            input_schema={
                "type": "object",
                "properties": {
                    "user_name": _required_string("Who wants to buy"),
                    "merchant_name": _required_string("Merchant to buy from"),
                    "description": _required_string("What the user wants"),
                    "value": {
                        "type": "number",
                        "minimum": 0,
                        "description": "Intended spend, a finite non-negative number",
                    },
                },
                "required": ["user_name", "merchant_name", "description", "value"],
                "additionalProperties": False,
            },
            execution_type=ExecutionType.WRITE,
        )

        self._tools["via_summary"] = ToolDefinition(
            name="via_summary",
            domain=DOMAIN,
            description="Return counts of merchants and intents.",
            input_schema={"type": "object", "properties": {}, "additionalProperties": False},
            execution_type=ExecutionType.READ,
        )

    async def execute(
        self,
        action: str,
        arguments: dict[str, Any],
        context: ExecutionContext
    ) -> ToolResult:
        handlers = {
            "register_merchant": self._register_merchant,
            "create_intent": self._create_intent,
            "via_summary": self._summary,
        }
        handler = handlers.get(action)
        if handler is None:
            return self._error(action, f"Action '{action}' not found in domain '{DOMAIN}'", "ACTION_NOT_FOUND")
        return await handler(arguments)

    async def _register_merchant(self, args: dict[str, Any]) -> ToolResult:
        row = {"name": args["name"], "category": args["category"], "country": args["country"]}
        inserted = await self.store.insert(MERCHANTS, row)

        logger.info("Merchant registered", merchant_id=inserted.id, name=row["name"])
        return self._text(
            "register_merchant",
            "Merchant registered\n"
            f"Name: {row['name']}\n"
            f"Category: {row['category']}\n"
            f"Country: {row['country']}\n"
            f"ID: {inserted.id}\n"
            f"Created: {inserted.created_at}",
        )

    async def _create_intent(self, args: dict[str, Any]) -> ToolResult:
        value = args["value"]
        if isinstance(value, bool) or not math.isfinite(value):
            raise ValidationError(["value: must be a finite number"])

        row = {
            "user_name": args["user_name"],
            "merchant_name": args["merchant_name"],
            "description": args["description"],
            "value": value,
        }
        inserted = await self.store.insert(INTENTS, row)

        logger.info("Intent recorded", intent_id=inserted.id, merchant=row["merchant_name"])
        return self._text(
            "create_intent",
            "Intent recorded\n"
            f"User: {row['user_name']}\n"
            f"Merchant: {row['merchant_name']}\n"
            f"Description: {row['description']}\n"
            f"Value: {value}\n"
            f"ID: {inserted.id}\n"
            f"Created: {inserted.created_at}",
        )

    async def _summary(self, args: dict[str, Any]) -> ToolResult:
        merchants, intents = await asyncio.gather(
            self.store.count(MERCHANTS),
            self.store.count(INTENTS),
            return_exceptions=True,
        )

        failures = [r for r in (merchants, intents) if isinstance(r, BaseException)]
        for failure in failures:
            if not isinstance(failure, BackingStoreError):
                raise failure
        if failures:
            merchants_error = merchants if isinstance(merchants, BaseException) else "none"
            intents_error = intents if isinstance(intents, BaseException) else "none"
            return self._error(
                "via_summary",
                f"Merchants error: {merchants_error}\nIntents error: {intents_error}",
                BackingStoreError.code,
            )

        return self._text(
            "via_summary",
            f"VIA Summary\nMerchants: {merchants}\nIntents: {intents}",
        )


def register_merchants_domain(dispatcher: "ToolDispatcher", store: BackingStore) -> MerchantsAdapter:
    """Register merchant tools and adapter with the dispatcher."""
    adapter = MerchantsAdapter(store)
    dispatcher.registry.register_many(adapter.tools)
    dispatcher.register_adapter(DOMAIN, adapter)

    logger.info("Merchants domain registered", tools=len(adapter.tools))
    return adapter
