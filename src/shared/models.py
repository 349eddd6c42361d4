"""Core data models for the VIA MCP gateway.

This module defines all shared data structures used across the gateway,
ensuring type safety and validation throughout the system.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionType(str, Enum):
    """Type of tool execution - read operations vs write operations."""
    READ = "read"
    WRITE = "write"


class ToolDefinition(BaseModel):
    """
    Complete definition of an MCP tool.

    Tools are declarative and discoverable. Gated tools are subject to the
    corpus access policy and produce exactly one audit record per call.
    """
    name: str = Field(..., description="Tool name as exposed on the wire")
    domain: str = Field(..., description="Domain whose adapter executes the tool")
    description: str = Field(..., description="Clear description for LLM usage")
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON Schema for input validation"
    )
    execution_type: ExecutionType = Field(default=ExecutionType.READ)
    gated: bool = Field(default=False)

    def to_wire(self) -> dict[str, Any]:
        """Return the tools/list representation."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
            "annotations": {"readOnlyHint": self.execution_type == ExecutionType.READ},
        }


class RequesterIdentity(BaseModel):
    """Who is calling: resolved once per session at initialize time."""
    model_config = ConfigDict(frozen=True)

    requester_type: str = "anonymous"
    requester_id: str = "anonymous"


class ExecutionContext(BaseModel):
    """Context for a single tool execution."""
    request_id: str = Field(..., description="JSON-RPC request id or generated id")
    session_id: Optional[str] = None
    requester: RequesterIdentity = Field(default_factory=RequesterIdentity)
    timestamp: datetime = Field(default_factory=utcnow)
    source: str = Field(default="mcp")
    allowed_corpora: Optional[tuple[str, ...]] = Field(
        default=None,
        description="Corpora the requester may read; set by the dispatcher for gated tools"
    )


class ToolCall(BaseModel):
    """A request to execute a specific tool."""
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    context: ExecutionContext


class ResultKind(str, Enum):
    """Tag of a tool result variant."""
    TEXT = "text"
    STRUCTURED = "structured"
    ERROR = "error"


class ToolResult(BaseModel):
    """
    Result of a tool execution.

    A tagged variant over plain text, a structured value, or a tool-level
    error. Conversion to the wire format happens in ``gateway.protocol``.
    """
    tool_name: str
    kind: ResultKind
    text: Optional[str] = None
    value: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    execution_time_ms: float = 0

    @property
    def ok(self) -> bool:
        return self.kind != ResultKind.ERROR

    @classmethod
    def plain_text(cls, tool_name: str, text: str) -> "ToolResult":
        return cls(tool_name=tool_name, kind=ResultKind.TEXT, text=text)

    @classmethod
    def structured(cls, tool_name: str, value: Any) -> "ToolResult":
        return cls(tool_name=tool_name, kind=ResultKind.STRUCTURED, value=value)

    @classmethod
    def failure(cls, tool_name: str, message: str, code: str = "ERROR") -> "ToolResult":
        return cls(tool_name=tool_name, kind=ResultKind.ERROR, error=message, error_code=code)


class SessionStatus(str, Enum):
    """Lifecycle of a transport session."""
    CREATED = "created"
    ACTIVE = "active"
    CLOSED = "closed"


class Session(BaseModel):
    """Stateful binding between an initialize call and its follow-up calls."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    created_at: datetime = Field(default_factory=utcnow)
    last_seen_at: datetime = Field(default_factory=utcnow)
    status: SessionStatus = SessionStatus.CREATED
    requester: RequesterIdentity = Field(default_factory=RequesterIdentity)
    client_info: dict[str, Any] = Field(default_factory=dict)
    protocol_version: Optional[str] = None
    binding: Any = Field(default=None, exclude=True)


class CorpusMode(str, Enum):
    PUBLIC = "public"
    GATED = "gated"
    INTERNAL = "internal"


class CorpusPolicy(BaseModel):
    """Access threshold for one corpus."""
    model_config = ConfigDict(frozen=True)

    corpus: str
    min_trust: float = 0
    mode: CorpusMode = CorpusMode.PUBLIC

    @field_validator("min_trust", mode="before")
    @classmethod
    def _null_min_trust(cls, value: Any) -> Any:
        return 0 if value is None else value


class RequesterStatus(str, Enum):
    ACTIVE = "active"
    BLOCKED = "blocked"


class RequesterTrust(BaseModel):
    """Reputation of one requester identity."""
    model_config = ConfigDict(frozen=True)

    requester_type: str
    requester_id: str
    trust_score: float = 0
    status: RequesterStatus = RequesterStatus.ACTIVE

    @field_validator("trust_score", mode="before")
    @classmethod
    def _null_trust_score(cls, value: Any) -> Any:
        return 0 if value is None else value


class AccessDecision(BaseModel):
    """Outcome of a policy evaluation. Pure value."""
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: str


class Heading(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: int = Field(..., ge=1, le=6)
    text: str


class Document(BaseModel):
    """One markdown document of a corpus. Immutable once indexed."""
    model_config = ConfigDict(frozen=True)

    id: str
    corpus: str
    title: str
    tags: tuple[str, ...] = ()
    file: str
    raw_content: str
    plain_text: str
    outline: tuple[Heading, ...] = ()

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "corpus": self.corpus,
            "tags": list(self.tags),
            "file": self.file,
        }


class ManifestEntry(BaseModel):
    """One document reference in a corpus manifest."""
    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    file: str = Field(..., min_length=1)
    tags: list[str] = Field(default_factory=list)


class CorpusManifest(BaseModel):
    documents: list[ManifestEntry]


class AuditRecord(BaseModel):
    """
    Audit record for a gated tool invocation.

    Append-only: one record per gated call, success or failure.
    """
    requester_type: str
    requester_id: str
    session_id: Optional[str] = None
    tool_name: str
    corpus: Optional[str] = None
    doc_ids: Optional[list[str]] = None
    query: Optional[str] = None
    format: Optional[str] = None
    ok: bool
    error: Optional[str] = None
    source: str
    timestamp: datetime = Field(default_factory=utcnow)


class InsertedRow(BaseModel):
    """Identifier and creation time returned by a backing store insert."""
    id: str
    created_at: str
