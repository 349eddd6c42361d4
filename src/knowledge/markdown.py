"""Markdown normalization and outline extraction."""

import re

from shared.models import Heading

_FENCED_CODE = re.compile(r"```[\s\S]*?```")
_INLINE_CODE = re.compile(r"`([^`]+)`")
_LINK = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
_HEADING_MARKER = re.compile(r"^#{1,6}\s+", re.MULTILINE)
_BOLD = re.compile(r"\*\*([^*]+)\*\*")
_ITALIC = re.compile(r"\*([^*]+)\*")
_BLANK_RUN = re.compile(r"\n{3,}")

_HEADING_LINE = re.compile(r"^(#{1,6})\s+(.+)$")


def strip_markdown(markdown: str) -> str:
    """Reduce markdown to plain text. Output is trimmed and never has 3+ consecutive newlines."""
    text = _FENCED_CODE.sub("", markdown)
    text = _INLINE_CODE.sub(r"\1", text)
    text = _LINK.sub(r"\1", text)
    text = _HEADING_MARKER.sub("", text)
    text = _BOLD.sub(r"\1", text)
    text = _ITALIC.sub(r"\1", text)
    text = _BLANK_RUN.sub("\n\n", text)
    return text.strip()


def build_outline(markdown: str) -> tuple[Heading, ...]:
    """Collect ATX headings (levels 1-6) in file order."""
    headings = []
    for line in markdown.split("\n"):
        match = _HEADING_LINE.match(line.strip())
        if match:
            headings.append(Heading(level=len(match.group(1)), text=match.group(2).strip()))
    return tuple(headings)
