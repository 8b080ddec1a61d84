"""Unit tests for markdown chunking."""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from vault_rag.chunking import ChunkingConfig, MarkdownChunker


def _line_ranges(chunks):
    return [(int(c.metadata["startLine"]), int(c.metadata["endLine"])) for c in chunks]


class TestChunkingConfig:
    """Tests for ChunkingConfig validation."""

    def test_defaults(self):
        """Default sizes match the documented values."""
        config = ChunkingConfig()
        assert config.target_tokens == 350
        assert config.min_tokens == 200
        assert config.max_tokens == 400
        assert config.overlap_tokens == 50
        assert config.chars_per_token == 4

    def test_min_above_max_rejected(self):
        with pytest.raises(ValueError, match="min_tokens"):
            ChunkingConfig(min_tokens=500, max_tokens=400)

    def test_target_above_max_rejected(self):
        with pytest.raises(ValueError, match="target_tokens"):
            ChunkingConfig(target_tokens=450, max_tokens=400)

    def test_overlap_must_be_smaller_than_max(self):
        with pytest.raises(ValueError, match="overlap_tokens"):
            ChunkingConfig(overlap_tokens=400, max_tokens=400)

    def test_non_positive_rejected(self):
        with pytest.raises(ValueError, match="chars_per_token must be positive"):
            ChunkingConfig(chars_per_token=0)


class TestMarkdownChunker:
    """Tests for MarkdownChunker."""

    def test_blank_content_yields_no_chunks(self):
        """Empty or whitespace-only notes produce nothing."""
        chunker = MarkdownChunker()
        assert chunker.chunk("a.md", "") == []
        assert chunker.chunk("a.md", "   \n\n  ") == []

    def test_sections_split_at_headings(self):
        """Short sections become one chunk each with a heading path."""
        content = "# Title\nIntro text.\n\n## Sub\nMore text."
        chunks = MarkdownChunker().chunk("notes/a.md", content)

        assert len(chunks) == 2
        assert chunks[0].text == "# Title\nIntro text."
        assert chunks[0].id == "notes/a.md:1:3"
        assert chunks[0].metadata["sectionTitle"] == "notes/a.md#Title"
        assert chunks[1].text == "## Sub\nMore text."
        assert chunks[1].id == "notes/a.md:4:5"
        assert chunks[1].metadata["sectionTitle"] == "notes/a.md#Title > Sub"

    def test_preamble_has_no_section_title(self):
        """Text before the first heading is its own chunk without a title."""
        chunks = MarkdownChunker().chunk("x.md", "Preamble line\n# H\nbody")

        assert chunks[0].text == "Preamble line"
        assert chunks[0].id == "x.md:1:1"
        assert "sectionTitle" not in chunks[0].metadata
        assert chunks[1].metadata["sectionTitle"] == "x.md#H"

    def test_level_three_headings_do_not_split(self):
        chunks = MarkdownChunker().chunk("x.md", "# H\nintro\n### Detail\nmore")
        assert len(chunks) == 1
        assert "### Detail" in chunks[0].text

    def test_metadata_fields(self):
        chunk = MarkdownChunker().chunk("dir/note.md", "hello world")[0]
        assert chunk.metadata == {"filePath": "dir/note.md", "startLine": "1", "endLine": "1"}
        assert chunk.embedding is None

    def test_chunk_id_normalizes_path(self):
        """Backslashes and colons in the path are normalized in the id."""
        chunk = MarkdownChunker().chunk("C:\\vault\\a.md", "hello")[0]
        assert chunk.id == "C_/vault/a.md:1:1"
        assert chunk.metadata["filePath"] == "C:\\vault\\a.md"

    def test_deterministic(self):
        """Same input produces identical chunks."""
        content = "# A\n\n" + "\n\n".join(f"Paragraph {i} " * 30 for i in range(20))
        chunker = MarkdownChunker()
        assert chunker.chunk("a.md", content) == chunker.chunk("a.md", content)

    def test_long_section_split_by_paragraphs(self):
        """Long sections are packed into chunks of about the target size."""
        config = ChunkingConfig(
            target_tokens=20, min_tokens=10, max_tokens=40, overlap_tokens=0, chars_per_token=4
        )
        paragraphs = [chr(ord("a") + i) * 39 + "." for i in range(6)]
        content = "# H\n\n" + "\n\n".join(paragraphs)

        chunks = MarkdownChunker(config).chunk("a.md", content)

        assert len(chunks) == 3
        assert chunks[0].text == "# H\n\n" + "\n\n".join(paragraphs[:2])
        assert chunks[1].text == "\n\n".join(paragraphs[2:4])
        assert chunks[2].text == "\n\n".join(paragraphs[4:])
        assert all(len(c.text) // 4 <= config.max_tokens for c in chunks)
        assert _line_ranges(chunks) == [(1, 5), (6, 8), (9, 11)]

    def test_code_block_prevents_target_flush(self):
        """A chunk is not closed right after a code block."""
        config = ChunkingConfig(
            target_tokens=20, min_tokens=10, max_tokens=40, overlap_tokens=0, chars_per_token=4
        )
        p1 = "a" * 39 + "."
        code = "```\n" + "x" * 40 + "\n```"
        p3 = "c" * 39 + "."
        p4 = "d" * 39 + "."
        content = "\n\n".join([p1, code, p3, p4])

        chunks = MarkdownChunker(config).chunk("a.md", content)

        assert len(chunks) == 2
        assert chunks[0].text == "\n\n".join([p1, code, p3])
        assert chunks[1].text == p4

    def test_overlap_carries_last_sentence(self):
        """The next chunk starts with the trailing sentence of the previous one."""
        config = ChunkingConfig(
            target_tokens=40, min_tokens=10, max_tokens=40, overlap_tokens=10, chars_per_token=4
        )
        p1 = ("word " * 20).strip() + ". Tail sentence."
        p2 = "b" * 60
        chunks = MarkdownChunker(config).chunk("a.md", p1 + "\n\n" + p2)

        assert len(chunks) == 2
        assert chunks[0].text == p1
        assert chunks[1].text == "Tail sentence.\n\n" + p2
        assert _line_ranges(chunks) == [(1, 1), (2, 3)]

    def test_no_overlap_when_disabled(self):
        config = ChunkingConfig(
            target_tokens=40, min_tokens=10, max_tokens=40, overlap_tokens=0, chars_per_token=4
        )
        p1 = ("word " * 20).strip() + ". Tail sentence."
        p2 = "b" * 60
        chunks = MarkdownChunker(config).chunk("a.md", p1 + "\n\n" + p2)

        assert [c.text for c in chunks] == [p1, p2]


_words = st.text(alphabet="abcdefghij", min_size=1, max_size=12)
_paragraph = st.lists(_words, min_size=1, max_size=30).map(lambda ws: " ".join(ws) + ".")
_heading = _words.flatmap(lambda w: st.sampled_from([f"# {w}", f"## {w}"]))
_block = st.one_of(_paragraph, _paragraph, _heading)


class TestChunkingProperties:
    """Property-based tests for chunk line ranges."""

    @settings(max_examples=50, deadline=None)
    @given(blocks=st.lists(_block, min_size=1, max_size=25))
    def test_line_ranges_monotonic_and_disjoint(self, blocks):
        """Line ranges never overlap and never go backwards."""
        config = ChunkingConfig(
            target_tokens=15, min_tokens=5, max_tokens=30, overlap_tokens=5, chars_per_token=4
        )
        chunks = MarkdownChunker(config).chunk("p.md", "\n\n".join(blocks))

        ranges = _line_ranges(chunks)
        for start, end in ranges:
            assert 1 <= start <= end
        for (_, previous_end), (next_start, _) in zip(ranges, ranges[1:]):
            assert next_start > previous_end
        assert all(c.text.strip() for c in chunks)
