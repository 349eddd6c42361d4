"""JSON-RPC envelope handling for the streamable HTTP endpoint.

Resolves the session for each inbound payload, answers the MCP lifecycle
methods, and hands ``tools/call`` to the dispatcher. This is the only place
where tool results are serialized to the wire format.
"""

import json
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from shared.config import ServerSettings
from shared.errors import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    ProtocolError,
)
from shared.logging import get_logger, request_context
from shared.models import ExecutionContext, ResultKind, Session, ToolCall, ToolResult
from gateway.auth import RequesterAuthenticator
from gateway.dispatcher import ToolDispatcher
from gateway.sessions import SessionRegistry, is_initialize_request

logger = get_logger(__name__)

SESSION_HEADER = "mcp-session-id"
SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")


@dataclass
class ProtocolResponse:
    """What the HTTP layer should send back."""
    status_code: int
    body: Optional[Any] = None
    session_id: Optional[str] = None


def result_to_wire(result: ToolResult) -> dict[str, Any]:
    """Serialize a tool result to the MCP ``CallToolResult`` shape."""
    if result.kind == ResultKind.ERROR:
        return {"content": [{"type": "text", "text": result.error or "Unknown error"}], "isError": True}

    if result.kind == ResultKind.STRUCTURED:
        return {
            "content": [{"type": "text", "text": json.dumps(result.value, indent=2, ensure_ascii=False)}],
            "structuredContent": result.value,
            "isError": False,
        }

    return {"content": [{"type": "text", "text": result.text or ""}], "isError": False}


def _valid_envelope(message: Any) -> bool:
    return isinstance(message, dict) and message.get("jsonrpc") == "2.0" and isinstance(message.get("method"), str)


def _rpc_result(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _rpc_error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


class McpProtocol:
    """
    Streamable HTTP endpoint logic, independent of the web framework.

    Responsibilities:
    - Reject malformed envelopes and session errors before dispatch
    - Create sessions for initialize calls
    - Answer lifecycle methods and route tool calls
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        dispatcher: ToolDispatcher,
        authenticator: RequesterAuthenticator,
        settings: ServerSettings,
    ) -> None:
        self.sessions = sessions
        self.dispatcher = dispatcher
        self.authenticator = authenticator
        self.settings = settings

    async def handle_post(self, payload: Any, headers: Mapping[str, str]) -> ProtocolResponse:
        """
        Handle one inbound message or batch.

        Raises:
            ProtocolError: For malformed envelopes and session errors
        """
        if not isinstance(payload, (dict, list)) or (isinstance(payload, list) and not payload):
            raise ProtocolError("Invalid Request: expected a JSON-RPC message or batch", INVALID_REQUEST, 400)

        token = _header(headers, SESSION_HEADER)
        messages = payload if isinstance(payload, list) else [payload]
        if is_initialize_request(payload):
            if not all(_valid_envelope(m) for m in messages):
                raise ProtocolError("Invalid Request: malformed initialize message", INVALID_REQUEST, 400)
            requester = self.authenticator.resolve(headers)
            session = await self.sessions.create(payload, token, requester)
        else:
            session = await self.sessions.require(token)

        responses = []
        for message in messages:
            response = await self._handle_message(message, session)
            if response is not None:
                responses.append(response)

        if not responses:
            return ProtocolResponse(status_code=202, session_id=session.id)

        body = responses if isinstance(payload, list) else responses[0]
        return ProtocolResponse(status_code=200, body=body, session_id=session.id)

    async def handle_delete(self, headers: Mapping[str, str]) -> ProtocolResponse:
        """Explicit session teardown. Idempotent."""
        token = _header(headers, SESSION_HEADER)
        if not token:
            raise ProtocolError("Bad Request: No valid session ID provided", INVALID_REQUEST, 400)

        await self.sessions.dispose(token)
        return ProtocolResponse(status_code=204)

    async def _handle_message(self, message: Any, session: Session) -> Optional[dict[str, Any]]:
        if not _valid_envelope(message):
            request_id = message.get("id") if isinstance(message, dict) else None
            return _rpc_error(request_id, INVALID_REQUEST, "Invalid Request")

        is_notification = "id" not in message
        request_id = message.get("id")
        method = message["method"]
        params = message.get("params") or {}

        with request_context(session_id=session.id, request_id=str(request_id)):
            try:
                result = await self._dispatch_method(method, params, session, request_id)
            except ProtocolError as e:
                if is_notification:
                    return None
                return _rpc_error(request_id, e.rpc_code, e.message)

        if is_notification:
            return None
        return _rpc_result(request_id, result)

    async def _dispatch_method(self, method: str, params: Any, session: Session, request_id: Any) -> Any:
        if not isinstance(params, dict):
            raise ProtocolError("Invalid params", INVALID_PARAMS)

        if method == "initialize":
            return self._initialize(params, session)
        if method.startswith("notifications/"):
            return None
        if method == "ping":
            return {}
        if method == "tools/list":
            return {"tools": self.dispatcher.registry.to_wire()}
        if method == "tools/call":
            return await self._call_tool(params, session, request_id)

        raise ProtocolError(f"Method not found: {method}", METHOD_NOT_FOUND)

    def _initialize(self, params: dict[str, Any], session: Session) -> dict[str, Any]:
        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else self.settings.protocol_version

        session.protocol_version = version
        client_info = params.get("clientInfo")
        session.client_info = client_info if isinstance(client_info, dict) else {}

        logger.info("Client initialized", client=session.client_info.get("name"), protocol_version=version)
        return {
            "protocolVersion": version,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": self.settings.name, "version": self.settings.version},
        }

    async def _call_tool(self, params: dict[str, Any], session: Session, request_id: Any) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise ProtocolError("Invalid params: tool name is required", INVALID_PARAMS)
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise ProtocolError("Invalid params: arguments must be an object", INVALID_PARAMS)

        call = ToolCall(
            tool_name=name,
            arguments=arguments,
            context=ExecutionContext(
                request_id=str(request_id) if request_id is not None else str(uuid.uuid4()),
                session_id=session.id,
                requester=session.requester,
            ),
        )
        result = await self.dispatcher.execute(call)
        return result_to_wire(result)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value or None
    return None
