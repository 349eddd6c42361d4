"""Knowledge base: corpus loading, markdown normalization, lexical search."""

from knowledge.index import DocumentFormat, DocumentIndex, KnowledgeBase
from knowledge.markdown import build_outline, strip_markdown

__all__ = [
    "DocumentFormat",
    "DocumentIndex",
    "KnowledgeBase",
    "build_outline",
    "strip_markdown",
]
