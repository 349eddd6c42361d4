"""Shared fixtures: small on-disk corpora and fully wired dispatchers."""

import json
from pathlib import Path
from typing import Optional

import pytest

from shared.config import KnowledgeBaseSettings
from shared.models import ExecutionContext, RequesterIdentity, ToolCall
from domains.kb import register_kb_domain
from domains.merchants import register_merchants_domain
from domains.store import BackingStore, InMemoryStore
from gateway.audit import AuditLogger, AuditSink, MemoryAuditSink
from gateway.dispatcher import ToolDispatcher
from gateway.policy import AccessPolicyEngine, InMemoryPolicyStore, PolicyStore
from gateway.registry import ToolRegistry
from knowledge.index import KnowledgeBase

SAMPLE_CORPORA = {
    "human": [
        ("h-intro", "Welcome", ["intro"], "# Welcome\n\nAgents help humans buy things.\n"),
        ("h-agent", "Agent guide", ["agent"], "# Agent guide\n\n## Setup\n\nAn agent needs a merchant.\n"),
    ],
    "technical": [
        ("t-policy", "Policy internals", ["trust"], "# Policy internals\n\nTrust scores gate the agent.\n"),
    ],
}


def write_corpus(root: Path, corpus: str, documents: list[tuple]) -> None:
    """Write ``documents`` (id, title, tags, markdown) as a corpus folder with a manifest."""
    corpus_dir = root / corpus
    corpus_dir.mkdir(parents=True, exist_ok=True)

    entries = []
    for doc_id, title, tags, body in documents:
        file_name = f"{doc_id}.md"
        (corpus_dir / file_name).write_text(body, encoding="utf-8")
        entries.append({"id": doc_id, "title": title, "file": file_name, "tags": tags})

    (corpus_dir / "manifest.json").write_text(json.dumps({"documents": entries}), encoding="utf-8")


def write_corpora(root: Path, corpora: dict[str, list[tuple]]) -> Path:
    for corpus, documents in corpora.items():
        write_corpus(root, corpus, documents)
    return root


@pytest.fixture
def kb_root(tmp_path: Path) -> Path:
    return write_corpora(tmp_path / "kb", SAMPLE_CORPORA)


@pytest.fixture
def knowledge_base(kb_root: Path) -> KnowledgeBase:
    kb = KnowledgeBase(kb_root, list(SAMPLE_CORPORA))
    kb.load()
    return kb


@pytest.fixture
def policy_store() -> InMemoryPolicyStore:
    return InMemoryPolicyStore()


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


def make_dispatcher(
    knowledge_base: KnowledgeBase,
    policy_store: PolicyStore,
    audit_sink: AuditSink,
    store: Optional[BackingStore] = None,
    kb_settings: Optional[KnowledgeBaseSettings] = None,
) -> ToolDispatcher:
    dispatcher = ToolDispatcher(
        ToolRegistry(),
        AccessPolicyEngine(policy_store),
        AuditLogger(audit_sink, source="tests"),
    )
    register_merchants_domain(dispatcher, store or InMemoryStore())
    register_kb_domain(dispatcher, knowledge_base, kb_settings or KnowledgeBaseSettings(corpora=list(knowledge_base.corpora)))
    return dispatcher


@pytest.fixture
def dispatcher(knowledge_base, policy_store, audit_sink, store) -> ToolDispatcher:
    return make_dispatcher(knowledge_base, policy_store, audit_sink, store)


def make_call(
    tool_name: str,
    arguments: Optional[dict] = None,
    requester_type: str = "agent",
    requester_id: str = "A1",
) -> ToolCall:
    return ToolCall(
        tool_name=tool_name,
        arguments=arguments or {},
        context=ExecutionContext(
            request_id="req-1",
            session_id="session-1",
            requester=RequesterIdentity(requester_type=requester_type, requester_id=requester_id),
        ),
    )
