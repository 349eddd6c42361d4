"""VIA MCP gateway - FastAPI application.

Exposes the streamable HTTP endpoint at ``/mcp``. Process wiring lives here:
settings, logging, the knowledge base snapshot, the backing store, the
policy store, the audit sink, and the session registry.
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel

from shared.config import Settings, get_settings
from shared.errors import PARSE_ERROR, ProtocolError
from shared.logging import get_logger, setup_logging
from domains import load_all_domains
from domains.base import PostgrestClient
from domains.store import INTENTS, MERCHANTS, BackingStore, InMemoryStore, PostgrestStore
from gateway.audit import AuditLogger, AuditSink, create_audit_sink
from gateway.auth import RequesterAuthenticator
from gateway.dispatcher import ToolDispatcher
from gateway.policy import AccessPolicyEngine, InMemoryPolicyStore, PolicyStore, PostgrestPolicyStore
from gateway.protocol import McpProtocol, ProtocolResponse
from gateway.registry import ToolRegistry
from gateway.sessions import SessionRegistry
from knowledge.index import KnowledgeBase

logger = get_logger(__name__)

SESSION_PRUNE_INTERVAL_SECONDS = 60


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    documents: int
    tool_count: int
    open_sessions: int


@dataclass
class Gateway:
    """All long-lived components of one running server."""
    settings: Settings
    knowledge_base: KnowledgeBase
    store: BackingStore
    policy_store: PolicyStore
    audit_logger: AuditLogger
    registry: ToolRegistry
    dispatcher: ToolDispatcher
    sessions: SessionRegistry
    protocol: McpProtocol
    client: Optional[PostgrestClient] = None

    async def close(self) -> None:
        await self.sessions.close_all()
        await self.audit_logger.close()
        await self.store.close()
        await self.policy_store.close()
        if self.client is not None:
            await self.client.close()


def build_gateway(
    settings: Settings,
    store: Optional[BackingStore] = None,
    policy_store: Optional[PolicyStore] = None,
    audit_sink: Optional[AuditSink] = None,
) -> Gateway:
    """
    Wire all components from settings.

    Explicitly passed collaborators take precedence over configured ones.

    Raises:
        CorpusLoadError: If the knowledge base cannot be built
        ConfigurationError: If PostgREST is configured without credentials
    """
    knowledge_base = KnowledgeBase(settings.kb.root, settings.kb.corpora)
    knowledge_base.load()

    needs_client = settings.store.backend == "postgrest" and (
        store is None or policy_store is None
        or (audit_sink is None and settings.audit.sink == "postgrest")
    )
    client = None
    if needs_client:
        url, api_key = settings.require_store_credentials()
        client = PostgrestClient(url, api_key, timeout=settings.store.timeout_seconds)

    if store is None:
        store = PostgrestStore(
            client,
            {MERCHANTS: settings.store.merchants_table, INTENTS: settings.store.intents_table},
        ) if client else InMemoryStore()

    if policy_store is None:
        policy_store = PostgrestPolicyStore(
            client, settings.store.policies_table, settings.store.trust_table
        ) if client else InMemoryPolicyStore()

    if audit_sink is None:
        audit_sink = create_audit_sink(
            settings.audit.sink, settings.audit.log_path, client, settings.store.audit_table
        )

    audit_logger = AuditLogger(audit_sink, source=settings.audit.source, enabled=settings.audit.enabled)
    registry = ToolRegistry()
    dispatcher = ToolDispatcher(registry, AccessPolicyEngine(policy_store), audit_logger)
    load_all_domains(dispatcher, store, knowledge_base, settings.kb)

    sessions = SessionRegistry(ttl_minutes=settings.server.session_ttl_minutes)
    protocol = McpProtocol(sessions, dispatcher, RequesterAuthenticator(settings.auth), settings.server)

    return Gateway(
        settings=settings,
        knowledge_base=knowledge_base,
        store=store,
        policy_store=policy_store,
        audit_logger=audit_logger,
        registry=registry,
        dispatcher=dispatcher,
        sessions=sessions,
        protocol=protocol,
        client=client,
    )


async def _prune_sessions(sessions: SessionRegistry) -> None:
    while True:
        await asyncio.sleep(SESSION_PRUNE_INTERVAL_SECONDS)
        await sessions.prune_expired()


def _to_http(response: ProtocolResponse) -> Response:
    headers = {"Mcp-Session-Id": response.session_id} if response.session_id else {}
    if response.body is None:
        return Response(status_code=response.status_code, headers=headers)
    return JSONResponse(response.body, status_code=response.status_code, headers=headers)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[BackingStore] = None,
    policy_store: Optional[PolicyStore] = None,
    audit_sink: Optional[AuditSink] = None,
) -> FastAPI:
    """Create the FastAPI application. Components are built at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_settings = settings or get_settings()
        setup_logging(app_settings.log_level, json_output=app_settings.environment == "production")

        logger.info("Starting VIA MCP gateway")
        gateway = build_gateway(app_settings, store, policy_store, audit_sink)
        app.state.gateway = gateway
        pruner = asyncio.create_task(_prune_sessions(gateway.sessions))

        logger.info(
            "VIA MCP gateway started",
            documents=len(gateway.knowledge_base.index),
            tools=len(gateway.registry),
            domains=gateway.registry.list_domains()
        )

        yield

        logger.info("Shutting down VIA MCP gateway")
        pruner.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await pruner
        await gateway.close()

    app = FastAPI(
        title="VIA MCP Gateway",
        description="Merchant registration and trust-gated knowledge base tools over MCP",
        version="0.1.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=(settings.server.cors_origins if settings else ["*"]),
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Mcp-Session-Id"],
    )

    @app.exception_handler(ProtocolError)
    async def protocol_error_handler(request: Request, exc: ProtocolError) -> JSONResponse:
        logger.warning("Protocol error", status=exc.http_status, error=exc.message)
        return JSONResponse(exc.to_rpc(), status_code=exc.http_status)

    @app.get("/", response_class=PlainTextResponse, tags=["System"])
    async def root() -> str:
        return "OK"

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check(request: Request) -> HealthResponse:
        gateway: Gateway = request.app.state.gateway
        return HealthResponse(
            status="healthy",
            version=gateway.settings.server.version,
            documents=len(gateway.knowledge_base.index),
            tool_count=len(gateway.registry),
            open_sessions=len(gateway.sessions),
        )

    @app.post("/mcp", tags=["MCP"])
    async def mcp_post(request: Request) -> Response:
        """Handle one JSON-RPC message or batch."""
        gateway: Gateway = request.app.state.gateway
        try:
            payload = await request.json()
        except ValueError:
            raise ProtocolError("Parse error: Invalid JSON", PARSE_ERROR, 400)

        response = await gateway.protocol.handle_post(payload, request.headers)
        return _to_http(response)

    @app.delete("/mcp", tags=["MCP"])
    async def mcp_delete(request: Request) -> Response:
        """Terminate a session."""
        gateway: Gateway = request.app.state.gateway
        response = await gateway.protocol.handle_delete(request.headers)
        return _to_http(response)

    return app


app = create_app()


def main():
    """Run the gateway."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "gateway.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.environment == "development"
    )


if __name__ == "__main__":
    main()
