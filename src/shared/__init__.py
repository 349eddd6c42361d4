"""Shared utilities and base classes for the VIA MCP gateway."""

from shared.models import (
    AccessDecision,
    AuditRecord,
    Document,
    ExecutionContext,
    RequesterIdentity,
    Session,
    ToolCall,
    ToolDefinition,
    ToolResult,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "AccessDecision",
    "AuditRecord",
    "Document",
    "ExecutionContext",
    "RequesterIdentity",
    "Session",
    "ToolCall",
    "ToolDefinition",
    "ToolResult",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
