"""Application Domains.

Each domain contains:
- Tool definitions
- Adapter implementation

Domains are isolated by design with no cross-domain calls or shared state.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gateway.dispatcher import ToolDispatcher
    from domains.store import BackingStore
    from knowledge.index import KnowledgeBase
    from shared.config import KnowledgeBaseSettings


def load_all_domains(
    dispatcher: "ToolDispatcher",
    store: "BackingStore",
    knowledge_base: "KnowledgeBase",
    kb_settings: "KnowledgeBaseSettings",
) -> None:
    """
    Load and register all application domains.

    This is called at startup to register all domain tools and adapters.
    """
    from domains.kb import register_kb_domain
    from domains.merchants import register_merchants_domain

    register_merchants_domain(dispatcher, store)
    register_kb_domain(dispatcher, knowledge_base, kb_settings)


__all__ = ["load_all_domains"]
