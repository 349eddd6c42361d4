"""Error taxonomy for the gateway.

Every failure the gateway reports carries a stable machine-readable ``code``.
Tool-level errors (validation, not found, access denied, backing store) are
returned to the caller as a tool result flagged as an error; protocol errors
are rejected before any tool is dispatched.
"""

from typing import Any, Optional


class GatewayError(Exception):
    """Base gateway exception with a stable error code."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data

    def __str__(self) -> str:
        return self.message


class ValidationError(GatewayError):
    """Malformed or missing tool arguments."""

    code = "VALIDATION_ERROR"

    def __init__(self, errors: list[str]) -> None:
        super().__init__(f"Validation failed: {'; '.join(errors)}", {"errors": errors})
        self.errors = errors


class NotFound(GatewayError):
    """Unknown document id, tool, or session."""

    code = "NOT_FOUND"


class AccessDenied(GatewayError):
    """Requester is blocked or below the corpus trust threshold."""

    code = "ACCESS_DENIED"

    def __init__(self, reason: str, corpus: Optional[str] = None) -> None:
        super().__init__(f"Access denied: {reason}", {"reason": reason, "corpus": corpus})
        self.reason = reason
        self.corpus = corpus


class BackingStoreError(GatewayError):
    """A call to the external data service failed."""

    code = "BACKING_STORE_ERROR"


class AuditWriteError(GatewayError):
    """Appending to the audit sink failed. Never surfaced to callers."""

    code = "AUDIT_WRITE_ERROR"


class CorpusLoadError(GatewayError):
    """A manifest or referenced document could not be loaded."""

    code = "CORPUS_LOAD_ERROR"


class ConfigurationError(GatewayError):
    """Required configuration is missing or invalid."""

    code = "CONFIGURATION_ERROR"


# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SERVER_ERROR = -32000
SESSION_NOT_FOUND = -32001


class ProtocolError(GatewayError):
    """Envelope or session error, rejected before tool dispatch."""

    code = "PROTOCOL_ERROR"

    def __init__(
        self,
        message: str,
        rpc_code: int = INVALID_REQUEST,
        http_status: int = 400,
        request_id: Any = None,
    ) -> None:
        super().__init__(message)
        self.rpc_code = rpc_code
        self.http_status = http_status
        self.request_id = request_id

    def to_rpc(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "error": {"code": self.rpc_code, "message": self.message},
            "id": self.request_id,
        }
