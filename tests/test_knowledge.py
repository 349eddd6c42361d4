"""Tests for corpus loading, markdown normalization, and the document index."""

import json

import pytest

from shared.errors import CorpusLoadError, NotFound
from knowledge.index import DocumentIndex, KnowledgeBase
from knowledge.markdown import build_outline, strip_markdown

from conftest import write_corpus


class TestMarkdown:
    """Tests for markdown normalization."""

    def test_strip_markdown(self):
        """Formatting, code fences and link targets are removed."""
        markdown = (
            "# Title\n\nSome **bold** and *it* with `code` and [link](http://x).\n\n\n\n"
            "```py\nx = 1\n```\nEnd"
        )

        assert strip_markdown(markdown) == "Title\n\nSome bold and it with code and link.\n\nEnd"

    def test_outline_levels_and_order(self):
        """Only headings of level 1-6 followed by text are collected, in file order."""
        outline = build_outline("# A\ntext\n  ## B  \n####### too deep\n#nospace\n###### F")

        assert [(h.level, h.text) for h in outline] == [(1, "A"), (2, "B"), (6, "F")]


class TestBuild:
    """Tests for building the index from manifests."""

    def test_load_order_follows_corpora_then_manifest(self, knowledge_base):
        ids = [d.id for d in knowledge_base.index.documents]
        assert ids == ["h-intro", "h-agent", "t-policy"]

    def test_derived_fields(self, knowledge_base):
        doc = knowledge_base.index.lookup("h-agent")

        assert doc.corpus == "human"
        assert doc.tags == ("agent",)
        assert "#" not in doc.plain_text
        assert [(h.level, h.text) for h in doc.outline] == [(1, "Agent guide"), (2, "Setup")]

    def test_tags_default_to_empty(self, tmp_path):
        corpus_dir = tmp_path / "human"
        corpus_dir.mkdir()
        (corpus_dir / "a.md").write_text("hello", encoding="utf-8")
        (corpus_dir / "manifest.json").write_text(
            json.dumps({"documents": [{"id": "a", "title": "A", "file": "a.md"}]})
        )

        index = DocumentIndex.build(tmp_path, ["human"])
        assert index.lookup("a").tags == ()

    def test_missing_manifest_fails_build(self, tmp_path):
        with pytest.raises(CorpusLoadError):
            DocumentIndex.build(tmp_path, ["human"])

    def test_empty_title_fails_build(self, tmp_path):
        corpus_dir = tmp_path / "human"
        corpus_dir.mkdir()
        (corpus_dir / "a.md").write_text("hello", encoding="utf-8")
        (corpus_dir / "manifest.json").write_text(
            json.dumps({"documents": [{"id": "a", "title": "", "file": "a.md"}]})
        )

        with pytest.raises(CorpusLoadError):
            DocumentIndex.build(tmp_path, ["human"])

    def test_missing_document_file_fails_build(self, tmp_path):
        write_corpus(tmp_path, "human", [("a", "A", [], "ok")])
        (tmp_path / "human" / "a.md").unlink()

        with pytest.raises(CorpusLoadError):
            DocumentIndex.build(tmp_path, ["human"])

    def test_duplicate_ids_across_corpora_fail_build(self, tmp_path):
        write_corpus(tmp_path, "human", [("same", "A", [], "a")])
        write_corpus(tmp_path, "technical", [("same", "B", [], "b")])

        with pytest.raises(CorpusLoadError, match="Duplicate"):
            DocumentIndex.build(tmp_path, ["human", "technical"])

    def test_failed_reload_keeps_previous_snapshot(self, kb_root):
        kb = KnowledgeBase(kb_root, ["human", "technical"])
        first = kb.load()

        (kb_root / "technical" / "manifest.json").write_text("{not json")
        with pytest.raises(CorpusLoadError):
            kb.reload()

        assert kb.index is first
        assert len(kb.index) == 3


@pytest.fixture
def paged_index(tmp_path) -> DocumentIndex:
    docs = [(f"d{i:02d}", f"Doc {i}", [], f"body {i}") for i in range(25)]
    write_corpus(tmp_path, "human", docs)
    write_corpus(tmp_path, "technical", [("t0", "Tech", [], "tech body")])
    return DocumentIndex.build(tmp_path, ["human", "technical"])


class TestList:
    """Tests for listing with pagination."""

    def test_last_partial_page(self, paged_index):
        page = paged_index.list("human", limit=10, offset=20)

        assert page["total"] == 25
        assert len(page["results"]) == 5
        assert page["results"][0]["id"] == "d20"

    def test_pages_reproduce_every_document_once(self, paged_index):
        seen = []
        offset = 0
        while True:
            page = paged_index.list(limit=7, offset=offset)
            if not page["results"]:
                break
            seen.extend(r["id"] for r in page["results"])
            offset += 7

        assert seen == [d.id for d in paged_index.documents]
        assert len(seen) == page["total"] == 26

    def test_restrict_to(self, paged_index):
        page = paged_index.list(limit=100, restrict_to={"technical"})
        assert [r["id"] for r in page["results"]] == ["t0"]


class TestGet:
    """Tests for fetching documents."""

    def test_formats(self, knowledge_base):
        index = knowledge_base.index

        markdown = index.get("h-agent", "markdown")
        text = index.get("h-agent", "text")
        outline = index.get("h-agent", "outline_json")

        assert markdown["content"].startswith("# Agent guide")
        assert text["content"].startswith("Agent guide")
        assert outline["content"] == {
            "headings": [{"level": 1, "text": "Agent guide"}, {"level": 2, "text": "Setup"}]
        }
        assert outline["corpus"] == "human"

    def test_unknown_id_not_found(self, knowledge_base):
        index = knowledge_base.index

        with pytest.raises(NotFound):
            index.get("missing")

        assert len(index) == 3
        assert index.lookup("missing") is None


class TestSearch:
    """Tests for lexical search."""

    def test_empty_query(self, knowledge_base):
        for corpus in (None, "human", "technical"):
            page = knowledge_base.index.search("   ", corpus)
            assert page["total"] == 0
            assert page["results"] == []

    def test_scoring_and_corpus_label(self, knowledge_base):
        page = knowledge_base.index.search("  AGENT ")

        assert page["corpus"] == "all"
        assert [(r["id"], r["score"]) for r in page["results"]] == [
            ("h-agent", 4),
            ("h-intro", 1),
            ("t-policy", 1),
        ]

    def test_ties_keep_manifest_order(self, tmp_path):
        counts = [1, 3, 1, 3, 2]
        docs = [(f"d{i}", f"Doc {i}", [], " ".join(["agent"] * n)) for i, n in enumerate(counts)]
        write_corpus(tmp_path, "human", docs)
        index = DocumentIndex.build(tmp_path, ["human"])

        page = index.search("agent", "human", limit=3, offset=0)

        assert page["total"] == 5
        assert [r["id"] for r in page["results"]] == ["d1", "d3", "d4"]

    def test_non_overlapping_count(self, tmp_path):
        write_corpus(tmp_path, "human", [("a", "X", [], "aaaa")])
        index = DocumentIndex.build(tmp_path, ["human"])

        assert index.search("aa")["results"][0]["score"] == 2

    def test_repeated_search_is_identical(self, knowledge_base):
        first = knowledge_base.index.search("agent", limit=2, offset=1)
        second = knowledge_base.index.search("agent", limit=2, offset=1)
        assert first == second


class TestRender:
    """Tests for answer packs."""

    def test_top_sources_for_audience(self, knowledge_base):
        pack = knowledge_base.index.render("agent", "human")

        assert pack == {"audience": "human", "query": "agent", "sources": ["h-agent", "h-intro"]}

    def test_excerpts_are_bounded(self, tmp_path):
        body = "x" * 100 + " agent " + "y" * 100
        write_corpus(tmp_path, "human", [("long", "Long", [], body)])
        index = DocumentIndex.build(tmp_path, ["human"])

        pack = index.render("agent", "human", excerpt_chars=20)
        excerpt = pack["excerpts"][0]

        assert excerpt["id"] == "long"
        assert "agent" in excerpt["text"]
        assert excerpt["text"].startswith("...") and excerpt["text"].endswith("...")
        assert len(excerpt["text"]) <= 20

    @pytest.mark.parametrize("position", [0, 100, 200])
    def test_excerpt_never_exceeds_limit(self, tmp_path, position):
        body = "x" * position + " agent " + "y" * (300 - position)
        write_corpus(tmp_path, "human", [("long", "Long", [], body)])
        index = DocumentIndex.build(tmp_path, ["human"])

        text = index.excerpt("long", "agent", 40)

        assert len(text) <= 40
        assert "agent" in text
