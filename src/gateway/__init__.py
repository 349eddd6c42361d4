"""Gateway - sessions, access policy, dispatch, and auditing.

The gateway is the authoritative component for tool execution. It binds
calls to sessions, enforces the corpus access policy, routes calls to
domains, and audits every gated call.
"""

from gateway.audit import AuditLogger
from gateway.dispatcher import ToolDispatcher
from gateway.policy import AccessPolicyEngine
from gateway.registry import ToolRegistry
from gateway.sessions import SessionRegistry

__all__ = [
    "AccessPolicyEngine",
    "AuditLogger",
    "SessionRegistry",
    "ToolDispatcher",
    "ToolRegistry",
]
