"""Heading-aware markdown chunking.

Splits a note into sections at level-1/level-2 headings, then packs each
section's paragraphs into chunks sized by an approximate token count
(characters / chars_per_token). Code blocks and lists are never split.
All chunking is deterministic: same input + config -> same chunks.
"""

import re
from dataclasses import dataclass
from typing import Protocol

from vault_rag.models import Chunk, make_chunk_id

_LINE_BREAK = re.compile(r"\r\n|\r|\n")
_SENTENCE_END = re.compile(r"[.!?]\s+")
_ORDINAL_ITEM = re.compile(r"^\d+\.\s")


@dataclass(frozen=True)
class ChunkingConfig:
    """Configuration for markdown chunking.

    Attributes:
        target_tokens: Flush a chunk once it reaches this size and more
            paragraphs remain
        min_tokens: Sections smaller than this are kept whole
        max_tokens: Never grow a chunk past this by adding a paragraph
        overlap_tokens: Budget for sentences carried into the next chunk
        chars_per_token: Divisor used to estimate tokens from characters
    """

    target_tokens: int = 350
    min_tokens: int = 200
    max_tokens: int = 400
    overlap_tokens: int = 50
    chars_per_token: int = 4

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        for name in ("target_tokens", "min_tokens", "max_tokens", "chars_per_token"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.min_tokens > self.max_tokens:
            raise ValueError(
                f"min_tokens ({self.min_tokens}) must not exceed max_tokens ({self.max_tokens})"
            )
        if self.target_tokens > self.max_tokens:
            raise ValueError(
                f"target_tokens ({self.target_tokens}) must not exceed "
                f"max_tokens ({self.max_tokens})"
            )
        if self.overlap_tokens < 0:
            raise ValueError(f"overlap_tokens must be non-negative, got {self.overlap_tokens}")
        if self.overlap_tokens >= self.max_tokens:
            raise ValueError(
                f"overlap_tokens ({self.overlap_tokens}) must be less than "
                f"max_tokens ({self.max_tokens})"
            )


class Chunker(Protocol):
    """Protocol for document chunking implementations."""

    def chunk(self, file_path: str, content: str) -> list[Chunk]:
        """Split one document into chunks (without embeddings).

        Args:
            file_path: Path of the document, used for ids and metadata
            content: Document text

        Returns:
            Chunks in document order
        """
        ...


@dataclass
class _Heading:
    line: int
    text: str
    level: int


@dataclass
class _Draft:
    text: str
    start_line: int
    end_line: int


def _is_atomic(paragraph: str) -> bool:
    """Code fences and list paragraphs are kept whole."""
    stripped = paragraph.lstrip()
    return (
        stripped.startswith("```")
        or stripped.startswith("- ")
        or stripped.startswith("* ")
        or _ORDINAL_ITEM.match(stripped) is not None
    )


def _line_count(text: str) -> int:
    return len(_LINE_BREAK.split(text))


class MarkdownChunker:
    """Chunker for markdown notes.

    Sections are bounded by ``# `` and ``## `` headings. Short sections
    become a single chunk; longer ones are split on blank-line paragraphs.
    Line numbers are 1-indexed and inclusive; for split sections they are
    estimated from each chunk's own line count.
    """

    def __init__(self, config: ChunkingConfig | None = None):
        """Initialize chunker.

        Args:
            config: Chunking configuration (uses defaults if None)
        """
        self.config = config or ChunkingConfig()

    def estimate_tokens(self, text: str) -> int:
        """Approximate token count for text."""
        return len(text) // self.config.chars_per_token

    def chunk(self, file_path: str, content: str) -> list[Chunk]:
        """Split a markdown document into chunks.

        Args:
            file_path: Path of the document
            content: Markdown text

        Returns:
            Chunks in document order; empty for blank content
        """
        if not content or not content.strip():
            return []

        lines = _LINE_BREAK.split(content)
        headings = self._find_headings(lines)
        boundaries = [h.line for h in headings] + [len(lines)]

        chunks: list[Chunk] = []
        for section_index, section_end in enumerate(boundaries):
            section_start = boundaries[section_index - 1] if section_index > 0 else 0
            if section_start >= section_end:
                continue

            section_text = "\n".join(lines[section_start:section_end])
            section_title = self._section_title(headings, section_index, file_path)

            if self.estimate_tokens(section_text) < self.config.min_tokens:
                if section_text.strip():
                    drafts = [_Draft(section_text.strip(), section_start + 1, section_end)]
                else:
                    drafts = []
            else:
                drafts = self._split_section(section_text, section_start, section_end)

            for draft in drafts:
                chunks.append(self._to_chunk(file_path, draft, section_title))

        return chunks

    @staticmethod
    def _find_headings(lines: list[str]) -> list[_Heading]:
        headings: list[_Heading] = []
        for i, raw in enumerate(lines):
            line = raw.strip()
            if line.startswith("# "):
                headings.append(_Heading(i, line[2:].strip(), 1))
            elif line.startswith("## "):
                headings.append(_Heading(i, line[3:].strip(), 2))
        return headings

    @staticmethod
    def _section_title(headings: list[_Heading], section_index: int, file_path: str) -> str | None:
        """Build ``path#h1 > h2`` for the heading that opens a section."""
        if section_index == 0:
            return None

        current = headings[section_index - 1]
        parts = [current.text]
        if current.level == 2:
            for previous in reversed(headings[: section_index - 1]):
                if previous.level == 1:
                    parts.insert(0, previous.text)
                    break
        return f"{file_path}#{' > '.join(parts)}"

    def _split_section(self, text: str, section_start: int, section_end: int) -> list[_Draft]:
        """Pack a long section's paragraphs into drafts.

        Args:
            text: Section text
            section_start: 0-indexed first line of the section
            section_end: 0-indexed exclusive end of the section, which is
                also the 1-indexed last line

        Returns:
            Drafts with estimated line ranges
        """
        paragraphs = [p for p in text.split("\n\n") if p.strip()]
        drafts: list[_Draft] = []

        buffer: list[str] = []
        tokens = 0
        line_start = section_start + 1
        # lines at the head of the buffer copied from the previous chunk
        seed_lines = 0

        def flush() -> _Draft | None:
            chunk_text = "\n\n".join(buffer).strip()
            if not chunk_text:
                return None
            own_lines = max(_line_count(chunk_text) - seed_lines, 1)
            end_line = min(line_start + own_lines - 1, section_end)
            draft = _Draft(chunk_text, line_start, max(end_line, line_start))
            drafts.append(draft)
            return draft

        for position, paragraph in enumerate(paragraphs, start=1):
            paragraph_tokens = self.estimate_tokens(paragraph)
            atomic = _is_atomic(paragraph)

            if tokens > 0 and tokens + paragraph_tokens > self.config.max_tokens:
                flushed = flush()
                buffer, tokens, seed_lines = [], 0, 0
                if flushed is not None:
                    line_start = flushed.end_line + 1
                    seed = self._overlap_seed(flushed.text)
                    if seed:
                        buffer = [seed]
                        tokens = self.estimate_tokens(seed)
                        seed_lines = _line_count(seed)

            buffer.append(paragraph)
            tokens += paragraph_tokens

            more_remaining = position < len(paragraphs)
            if tokens >= self.config.target_tokens and more_remaining and not atomic:
                flushed = flush()
                if flushed is not None:
                    buffer, tokens, seed_lines = [], 0, 0
                    line_start = flushed.end_line + 1

        if buffer:
            flush()

        return drafts

    def _overlap_seed(self, previous_text: str) -> str | None:
        """Trailing sentence(s) of the previous chunk, if within the overlap budget."""
        if self.config.overlap_tokens <= 0:
            return None

        boundaries = [m.end() for m in _SENTENCE_END.finditer(previous_text)]
        if not boundaries or boundaries[-1] < len(previous_text):
            boundaries.append(len(previous_text))
        if len(boundaries) <= 1:
            return None

        seed = previous_text[boundaries[-2] :].strip()
        if not seed or self.estimate_tokens(seed) > self.config.overlap_tokens:
            return None
        return seed

    @staticmethod
    def _to_chunk(file_path: str, draft: _Draft, section_title: str | None) -> Chunk:
        metadata = {
            "filePath": file_path,
            "startLine": str(draft.start_line),
            "endLine": str(draft.end_line),
        }
        if section_title is not None:
            metadata["sectionTitle"] = section_title
        return Chunk(
            id=make_chunk_id(file_path, draft.start_line, draft.end_line),
            text=draft.text,
            metadata=metadata,
        )
