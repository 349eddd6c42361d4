"""Tool Dispatcher for the gateway.

Routes tool calls to domain adapters.
Handles validation, access policy, execution, and auditing.
"""

import asyncio
import time
from typing import Any, Optional

from shared.errors import INVALID_PARAMS, AccessDenied, GatewayError, ProtocolError
from shared.logging import get_logger
from shared.models import ToolCall, ToolDefinition, ToolResult
from domains.base import AuditScope, BaseAdapter, GatedAdapter
from gateway.audit import AuditLogger
from gateway.policy import AccessPolicyEngine
from gateway.registry import ToolRegistry

logger = get_logger(__name__)


class ToolDispatcher:
    """
    Routes tool calls to the adapter of the tool's domain.

    Responsibilities:
    - Validate arguments against the tool's schema before any side effect
    - Enforce the corpus access policy for gated tools
    - Route to the adapter
    - Write exactly one audit record per gated call
    """

    def __init__(
        self,
        registry: ToolRegistry,
        policy: AccessPolicyEngine,
        audit_logger: AuditLogger
    ) -> None:
        self.registry = registry
        self.policy = policy
        self.audit_logger = audit_logger
        self._adapters: dict[str, BaseAdapter] = {}

    def register_adapter(self, domain: str, adapter: BaseAdapter) -> None:
        """Register the adapter executing all tools of ``domain``."""
        self._adapters[domain] = adapter
        logger.info("Adapter registered", domain=domain)

    async def execute(self, call: ToolCall) -> ToolResult:
        """
        Execute a tool call.

        Tool-level failures are returned as error results; an unknown tool
        name is a protocol error.

        Args:
            call: Tool call request

        Returns:
            Tool execution result
        """
        tool = self.registry.get(call.tool_name)
        if tool is None:
            raise ProtocolError(f"Tool {call.tool_name} not found", rpc_code=INVALID_PARAMS, http_status=200)

        adapter = self._adapters.get(tool.domain)
        if adapter is None and not tool.gated:
            return ToolResult.failure(tool.name, f"No adapter registered for domain '{tool.domain}'", "NO_ADAPTER")

        logger.debug("Executing tool", tool=tool.name, gated=tool.gated)

        start_time = time.monotonic()
        if tool.gated:
            result = await self._execute_gated(tool, adapter, call)
        else:
            result = await self._execute_ungated(tool, adapter, call)
        result.execution_time_ms = (time.monotonic() - start_time) * 1000
        return result

    async def _execute_ungated(self, tool: ToolDefinition, adapter: BaseAdapter, call: ToolCall) -> ToolResult:
        try:
            arguments = self.registry.validate_arguments(tool, call.arguments)
            return self._normalize(tool, await adapter.execute(tool.name, arguments, call.context))
        except GatewayError as e:
            logger.warning("Tool failed", tool=tool.name, code=e.code, error=e.message)
            return ToolResult.failure(tool.name, e.message, e.code)
        except Exception as e:
            logger.error("Tool execution failed", tool=tool.name, error=str(e), exc_info=True)
            return ToolResult.failure(tool.name, str(e), "EXECUTION_ERROR")

    async def _authorize(self, call: ToolCall, corpora: list[str]) -> list[str]:
        """Corpora the requester may read; raises AccessDenied if there are none."""
        requester = call.context.requester
        decisions = await asyncio.gather(*(
            self.policy.enforce(requester.requester_type, requester.requester_id, corpus)
            for corpus in corpora
        ))

        allowed = [corpus for corpus, decision in zip(corpora, decisions) if decision.allowed]
        if allowed:
            return allowed

        corpus, decision = next(
            (c, d) for c, d in zip(corpora, decisions) if not d.allowed
        )
        logger.warning(
            "Access denied",
            requester_type=requester.requester_type,
            requester_id=requester.requester_id,
            corpus=corpus,
            reason=decision.reason
        )
        raise AccessDenied(decision.reason, corpus)

    async def _execute_gated(self, tool: ToolDefinition, adapter: Optional[BaseAdapter], call: ToolCall) -> ToolResult:
        raw_arguments = call.arguments if isinstance(call.arguments, dict) else {}
        scope = adapter.audit_scope(tool.name, raw_arguments) if isinstance(adapter, GatedAdapter) else AuditScope()
        result: Optional[ToolResult] = None
        error: Optional[str] = None

        try:
            if not isinstance(adapter, GatedAdapter):
                # Gated tools never run without policy enforcement
                logger.error("No gated adapter for gated tool", tool=tool.name, domain=tool.domain)
                error = f"No gated adapter registered for domain '{tool.domain}'"
                result = ToolResult.failure(tool.name, error, "NO_ADAPTER")
                return result

            arguments = self.registry.validate_arguments(tool, call.arguments)
            corpora = adapter.gate_corpora(tool.name, arguments)
            if scope.corpus is None and len(corpora) == 1:
                scope.corpus = corpora[0]

            allowed = await self._authorize(call, corpora)
            context = call.context.model_copy(update={"allowed_corpora": tuple(allowed)})

            result = self._normalize(tool, await adapter.execute(tool.name, arguments, context))
            if result.ok:
                doc_ids = adapter.audited_doc_ids(tool.name, result.value)
                if doc_ids is not None:
                    scope.doc_ids = doc_ids
            else:
                error = result.error
        except AccessDenied as e:
            error = e.reason
            result = ToolResult.failure(tool.name, e.message, e.code)
        except GatewayError as e:
            error = e.message
            result = ToolResult.failure(tool.name, e.message, e.code)
        except Exception as e:
            logger.error("Tool execution failed", tool=tool.name, error=str(e), exc_info=True)
            error = str(e)
            result = ToolResult.failure(tool.name, str(e), "EXECUTION_ERROR")
        finally:
            ok = result is not None and result.ok
            if result is None and error is None:
                error = "cancelled"
            await self.audit_logger.record(
                self.audit_logger.create_record(tool.name, call.context, scope, ok, error)
            )

        return result

    @staticmethod
    def _normalize(tool: ToolDefinition, result: Any) -> ToolResult:
        if isinstance(result, ToolResult):
            result.tool_name = tool.name
            return result
        if isinstance(result, str):
            return ToolResult.plain_text(tool.name, result)
        return ToolResult.structured(tool.name, result)
