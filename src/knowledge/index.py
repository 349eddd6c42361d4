"""In-memory document index for the curated knowledge base.

The index is built once from ``<root>/<corpus>/manifest.json`` files and is
read-only afterwards. A reload builds a complete new snapshot and swaps it in;
a failed build leaves the previous snapshot in place.
"""

import json
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Collection, Iterable, Optional, Sequence

import pydantic

from shared.errors import CorpusLoadError, NotFound
from shared.logging import get_logger
from shared.models import CorpusManifest, Document
from knowledge.markdown import build_outline, strip_markdown

logger = get_logger(__name__)

MANIFEST_NAME = "manifest.json"
ELLIPSIS = "..."


class DocumentFormat(str, Enum):
    """Representation returned by ``DocumentIndex.get``."""
    MARKDOWN = "markdown"
    TEXT = "text"
    OUTLINE = "outline_json"


def load_corpus(root: Path, corpus: str) -> list[Document]:
    """
    Load every document listed in one corpus manifest.

    Args:
        root: Knowledge base root directory
        corpus: Corpus folder name

    Returns:
        Documents in manifest order

    Raises:
        CorpusLoadError: If the manifest or any referenced file is unusable
    """
    corpus_dir = (root / corpus).resolve()
    manifest_path = corpus_dir / MANIFEST_NAME

    try:
        raw = json.loads(manifest_path.read_text(encoding="utf-8"))
        manifest = CorpusManifest.model_validate(raw)
    except (OSError, ValueError, pydantic.ValidationError) as e:
        raise CorpusLoadError(
            f"Invalid manifest for corpus '{corpus}': {e}",
            {"corpus": corpus, "path": str(manifest_path)},
        ) from e

    documents = []
    for entry in manifest.documents:
        file_path = (corpus_dir / entry.file).resolve()
        if not file_path.is_relative_to(corpus_dir):
            raise CorpusLoadError(
                f"Document '{entry.id}' points outside corpus '{corpus}'",
                {"corpus": corpus, "file": entry.file},
            )
        try:
            markdown = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise CorpusLoadError(
                f"Cannot read document '{entry.id}' of corpus '{corpus}': {e}",
                {"corpus": corpus, "file": entry.file},
            ) from e

        documents.append(Document(
            id=entry.id,
            corpus=corpus,
            title=entry.title,
            tags=tuple(entry.tags),
            file=entry.file,
            raw_content=markdown,
            plain_text=strip_markdown(markdown),
            outline=build_outline(markdown),
        ))

    logger.info("Corpus loaded", corpus=corpus, documents=len(documents))
    return documents


def _paginate(items: Sequence[Any], limit: int, offset: int) -> Sequence[Any]:
    return items[offset:offset + limit]


class DocumentIndex:
    """
    Immutable, load-ordered collection of documents.

    Responsibilities:
    - List documents with composable pagination
    - Fetch a document in one of three formats
    - Lexical search with deterministic ranking
    - Build answer packs from the top search hits
    """

    def __init__(self, documents: Iterable[Document], corpora: Sequence[str] = ()) -> None:
        docs = tuple(documents)
        by_id: dict[str, Document] = {}
        for doc in docs:
            if doc.id in by_id:
                raise CorpusLoadError(
                    f"Duplicate document id '{doc.id}'",
                    {"corpora": [by_id[doc.id].corpus, doc.corpus]},
                )
            by_id[doc.id] = doc

        self._documents = docs
        self._by_id = MappingProxyType(by_id)
        self._corpora = tuple(corpora) or tuple(dict.fromkeys(d.corpus for d in docs))

    @classmethod
    def build(cls, root: str | Path, corpora: Sequence[str]) -> "DocumentIndex":
        """Load all corpora; any failure aborts the whole build."""
        root = Path(root)
        documents: list[Document] = []
        for corpus in corpora:
            documents.extend(load_corpus(root, corpus))
        return cls(documents, corpora)

    @property
    def corpora(self) -> tuple[str, ...]:
        return self._corpora

    @property
    def documents(self) -> tuple[Document, ...]:
        return self._documents

    def __len__(self) -> int:
        return len(self._documents)

    def lookup(self, doc_id: str) -> Optional[Document]:
        return self._by_id.get(doc_id)

    def _candidates(
        self,
        corpus: Optional[str],
        restrict_to: Optional[Collection[str]],
    ) -> list[Document]:
        return [
            d for d in self._documents
            if (corpus is None or d.corpus == corpus)
            and (restrict_to is None or d.corpus in restrict_to)
        ]

    def list(
        self,
        corpus: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
        restrict_to: Optional[Collection[str]] = None,
    ) -> dict[str, Any]:
        """
        List documents in load order.

        Args:
            corpus: Only documents of this corpus
            limit: Page size
            offset: Number of documents to skip
            restrict_to: Only documents whose corpus is in this collection

        Returns:
            Page with the total count of matching documents
        """
        filtered = self._candidates(corpus, restrict_to)
        return {
            "total": len(filtered),
            "limit": limit,
            "offset": offset,
            "results": [d.summary() for d in _paginate(filtered, limit, offset)],
        }

    def get(self, doc_id: str, format: DocumentFormat | str = DocumentFormat.MARKDOWN) -> dict[str, Any]:
        """
        Get one document.

        Raises:
            NotFound: If no document has this id
        """
        doc = self._by_id.get(doc_id)
        if doc is None:
            raise NotFound(f"Unknown document id: {doc_id}", {"id": doc_id})

        fmt = DocumentFormat(format)
        if fmt == DocumentFormat.MARKDOWN:
            content: Any = doc.raw_content
        elif fmt == DocumentFormat.TEXT:
            content = doc.plain_text
        else:
            content = {"headings": [h.model_dump() for h in doc.outline]}

        return {
            "id": doc.id,
            "title": doc.title,
            "corpus": doc.corpus,
            "format": fmt.value,
            "content": content,
        }

    def _score(self, needle: str, doc: Document) -> int:
        haystack = f"{doc.title} {' '.join(doc.tags)} {doc.plain_text}".lower()
        return haystack.count(needle)

    def search(
        self,
        query: str,
        corpus: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
        restrict_to: Optional[Collection[str]] = None,
    ) -> dict[str, Any]:
        """
        Rank documents by occurrences of the query.

        The score is the number of non-overlapping, case-insensitive
        occurrences of the trimmed query in title, tags and plain text.
        Equal scores keep load order.
        """
        needle = query.strip().lower()
        page: dict[str, Any] = {
            "query": query,
            "corpus": corpus or "all",
            "total": 0,
            "limit": limit,
            "offset": offset,
            "results": [],
        }
        if not needle:
            return page

        scored = []
        for doc in self._candidates(corpus, restrict_to):
            score = self._score(needle, doc)
            if score > 0:
                scored.append((doc, score))
        scored.sort(key=lambda item: -item[1])

        page["total"] = len(scored)
        page["results"] = [
            {
                "id": doc.id,
                "title": doc.title,
                "corpus": doc.corpus,
                "tags": list(doc.tags),
                "score": score,
            }
            for doc, score in _paginate(scored, limit, offset)
        ]
        return page

    def excerpt(self, doc_id: str, query: str, max_chars: int) -> str:
        """Window of plain text around the first query match, at most ``max_chars`` long."""
        doc = self._by_id[doc_id]
        text = doc.plain_text
        if len(text) <= max_chars:
            return text

        position = text.lower().find(query.strip().lower())
        start = max(0, position - max_chars // 4) if position > 0 else 0
        start = min(start, len(text) - max_chars)

        # Truncation markers count towards max_chars
        prefix = ELLIPSIS if start > 0 else ""
        end = start + max_chars - len(prefix)
        suffix = ELLIPSIS if end < len(text) else ""
        end -= len(suffix)
        return prefix + text[start:end].strip() + suffix

    def render(
        self,
        query: str,
        audience: str,
        top_k: int = 3,
        excerpt_chars: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        Build an answer pack: the ids of the best matches in ``audience``.

        Excerpts are included only when ``excerpt_chars`` is given.
        """
        hits = self.search(query, audience, limit=top_k, offset=0)["results"]
        sources = [hit["id"] for hit in hits]

        pack: dict[str, Any] = {"audience": audience, "query": query, "sources": sources}
        if excerpt_chars is not None:
            pack["excerpts"] = [
                {"id": doc_id, "text": self.excerpt(doc_id, query, excerpt_chars)}
                for doc_id in sources
            ]
        return pack


class KnowledgeBase:
    """Holds the current index snapshot and replaces it on reload."""

    def __init__(self, root: str | Path, corpora: Sequence[str]) -> None:
        self.root = Path(root)
        self.corpora = tuple(corpora)
        self._index: Optional[DocumentIndex] = None

    @property
    def index(self) -> DocumentIndex:
        if self._index is None:
            raise RuntimeError("Knowledge base not loaded. Call load() first.")
        return self._index

    def load(self) -> DocumentIndex:
        """Build a fresh snapshot and make it current."""
        index = DocumentIndex.build(self.root, self.corpora)
        self._index = index
        logger.info("Knowledge base ready", documents=len(index), corpora=list(self.corpora))
        return index

    reload = load
