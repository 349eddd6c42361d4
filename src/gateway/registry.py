"""Tool Registry for the gateway.

Manages registration, discovery, and lookup of tools from all domains.
Tools are registered once at startup.
"""

from typing import Any, Optional

from shared.logging import get_logger
from shared.models import ToolDefinition
from shared.schema import require_valid

logger = get_logger(__name__)


class ToolRegistry:
    """
    Central registry for all tools.

    Responsibilities:
    - Register tools from domains
    - Lookup tools by name
    - Validate arguments against the tool's input schema
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, tool: ToolDefinition) -> None:
        """
        Register a tool in the registry.

        Raises:
            ValueError: If tool name is already registered
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")

        self._tools[tool.name] = tool

        logger.info(
            "Tool registered",
            tool=tool.name,
            domain=tool.domain,
            execution_type=tool.execution_type.value,
            gated=tool.gated
        )

    def register_many(self, tools: list[ToolDefinition]) -> None:
        """Register multiple tools at once."""
        for tool in tools:
            self.register(tool)

    def get(self, tool_name: str) -> Optional[ToolDefinition]:
        return self._tools.get(tool_name)

    def list_domains(self) -> list[str]:
        return sorted({t.domain for t in self._tools.values()})

    def validate_arguments(self, tool: ToolDefinition, arguments: Any) -> dict[str, Any]:
        """
        Validate arguments against the tool's input schema.

        Returns:
            Arguments with schema defaults filled in

        Raises:
            ValidationError: If arguments do not match the schema
        """
        return require_valid(arguments, tool.input_schema)

    def to_wire(self) -> list[dict[str, Any]]:
        """Tool catalogue in tools/list format."""
        return [tool.to_wire() for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)
