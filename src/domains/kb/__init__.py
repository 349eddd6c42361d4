"""Knowledge Base Domain - gated read tools over the curated corpora.

Every tool here is gated: the dispatcher enforces the corpus access policy
before execution and writes one audit record per call.
"""

from typing import TYPE_CHECKING, Any, Optional

from shared.config import KnowledgeBaseSettings
from shared.errors import NotFound
from shared.logging import get_logger
from shared.models import ExecutionContext, ToolDefinition, ToolResult
from domains.base import AuditScope, GatedAdapter
from knowledge.index import DocumentFormat, KnowledgeBase

if TYPE_CHECKING:
    from gateway.dispatcher import ToolDispatcher

logger = get_logger(__name__)

DOMAIN = "kb"


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


class KnowledgeAdapter(GatedAdapter):
    """
    Knowledge Base Domain Adapter.

    Provides tools for:
    - Listing documents with pagination
    - Fetching a document as markdown, plain text or outline
    - Lexical search with pagination
    - Rendering deterministic answer packs
    """

    def __init__(self, knowledge_base: KnowledgeBase, settings: KnowledgeBaseSettings) -> None:
        super().__init__(DOMAIN)
        self.kb = knowledge_base
        self.settings = settings
        self._define_tools()

    def _page_properties(self) -> dict[str, Any]:
        return {
            "limit": {
                "type": "integer",
                "minimum": 1,
                "maximum": self.settings.max_limit,
                "default": self.settings.default_limit,
            },
            "offset": {"type": "integer", "minimum": 0, "default": 0},
        }

    def _define_tools(self) -> None:
        """Define all knowledge base tools."""
        corpus = {
            "type": "string",
            "enum": list(self.kb.corpora),
            "description": "Restrict to one corpus",
        }

        self._tools["kb_list"] = ToolDefinition(
            name="kb_list",
            domain=DOMAIN,
            description="List knowledge base documents, optionally for one corpus, with pagination.",
            input_schema={
                "type": "object",
                "properties": {"corpus": corpus, **self._page_properties()},
                "additionalProperties": False,
            },
            gated=True,
        )

        self._tools["kb_get"] = ToolDefinition(
            name="kb_get",
            domain=DOMAIN,
            description="Get a document by id as markdown, plain text, or a heading outline.",
            input_schema={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "format": {
                        "type": "string",
                        "enum": [f.value for f in DocumentFormat],
                        "default": DocumentFormat.MARKDOWN.value,
                    },
                },
                "required": ["id"],
                "additionalProperties": False,
            },
            gated=True,
        )

        self._tools["kb_search"] = ToolDefinition(
            name="kb_search",
            domain=DOMAIN,
            description="Search documents by keyword. Results are ranked by number of matches.",
            input_schema={
                "type": "object",
                "properties": {
                    "query": {"type": "string"},
                    "corpus": corpus,
                    **self._page_properties(),
                },
                "required": ["query"],
                "additionalProperties": False,
            },
            gated=True,
        )

        self._tools["kb_render"] = ToolDefinition(
            name="kb_render",
            domain=DOMAIN,
            description="Return the top matching source documents for a query and audience.",
            input_schema={
                "type": "object",
                "properties": {
                    "query": {"type": "string"},
                    "audience": {**corpus, "description": "Corpus the answer is written for"},
                    "include_excerpts": {"type": "boolean", "default": False},
                },
                "required": ["query", "audience"],
                "additionalProperties": False,
            },
            gated=True,
        )

    def audit_scope(self, action: str, arguments: dict[str, Any]) -> AuditScope:
        doc_id = _as_str(arguments.get("id"))
        if action == "kb_get":
            return AuditScope(
                doc_ids=[doc_id] if doc_id else None,
                format=_as_str(arguments.get("format")) or DocumentFormat.MARKDOWN.value,
            )
        if action == "kb_render":
            return AuditScope(
                corpus=_as_str(arguments.get("audience")),
                query=_as_str(arguments.get("query")),
            )
        return AuditScope(
            corpus=_as_str(arguments.get("corpus")),
            query=_as_str(arguments.get("query")),
        )

    def gate_corpora(self, action: str, arguments: dict[str, Any]) -> list[str]:
        if action == "kb_get":
            doc = self.kb.index.lookup(arguments["id"])
            if doc is None:
                raise NotFound(f"Unknown document id: {arguments['id']}", {"id": arguments["id"]})
            return [doc.corpus]
        if action == "kb_render":
            return [arguments["audience"]]
        if arguments.get("corpus"):
            return [arguments["corpus"]]
        return list(self.kb.corpora)

    def audited_doc_ids(self, action: str, value: Any) -> Optional[list[str]]:
        if not isinstance(value, dict):
            return None
        if action == "kb_get":
            return [value["id"]]
        if action == "kb_render":
            return list(value["sources"])
        return [item["id"] for item in value.get("results", [])]

    async def execute(
        self,
        action: str,
        arguments: dict[str, Any],
        context: ExecutionContext
    ) -> ToolResult:
        index = self.kb.index
        allowed = context.allowed_corpora

        if action == "kb_list":
            value = index.list(
                arguments.get("corpus"),
                limit=arguments["limit"],
                offset=arguments["offset"],
                restrict_to=allowed,
            )
        elif action == "kb_get":
            value = index.get(arguments["id"], arguments["format"])
        elif action == "kb_search":
            value = index.search(
                arguments["query"],
                arguments.get("corpus"),
                limit=arguments["limit"],
                offset=arguments["offset"],
                restrict_to=allowed,
            )
        elif action == "kb_render":
            value = index.render(
                arguments["query"],
                arguments["audience"],
                top_k=self.settings.render_top_k,
                excerpt_chars=self.settings.excerpt_chars if arguments["include_excerpts"] else None,
            )
        else:
            return self._error(action, f"Action '{action}' not found in domain '{DOMAIN}'", "ACTION_NOT_FOUND")

        return ToolResult.structured(action, value)


def register_kb_domain(
    dispatcher: "ToolDispatcher",
    knowledge_base: KnowledgeBase,
    settings: KnowledgeBaseSettings,
) -> KnowledgeAdapter:
    """Register knowledge base tools and adapter with the dispatcher."""
    adapter = KnowledgeAdapter(knowledge_base, settings)
    dispatcher.registry.register_many(adapter.tools)
    dispatcher.register_adapter(DOMAIN, adapter)

    logger.info("Knowledge base domain registered", tools=len(adapter.tools), corpora=list(knowledge_base.corpora))
    return adapter
