"""Safety net that keeps stored chunks under an embedding provider's hard limit.

The sanitizer truncates whatever is sent in a single call; this module
instead splits oversized chunks before they are embedded and stored, so
no note content is silently dropped. The limit accounts for the task
prefix the embedder prepends (e.g. ``"search_document: "``).
"""

import re
from dataclasses import dataclass

from loguru import logger

from vault_rag.models import Chunk

MAX_EMBEDDING_CONTEXT_CHARS = 2000
SMALL_CONTEXT_MAX_CONTENT_CHARS = 1700
DOCUMENT_PREFIX_LENGTH = 18
QUERY_PREFIX_LENGTH = 16
CHUNK_OVERLAP_CHARS = 150

# a fallback window is only trimmed back to a newline found at least this far in
_MIN_NEWLINE_TRIM_OFFSET = 200
_MIN_SPLIT_RATIO = 0.7
_SENTENCE_END = re.compile(r"[.!?]\s+")
_LINE_BREAK = re.compile(r"\r\n|\r|\n")

_SMALL_CONTEXT_MARKERS = ("512", "mxbai-embed-large", "bge-small", "e5-small")


def estimate_max_content_chars(model_name: str) -> int:
    """Guess a safe per-chunk character ceiling for an embedding model.

    Args:
        model_name: Embedding model name (e.g. "mxbai-embed-large:335m")

    Returns:
        1700 for known 512-token models, otherwise 2000
    """
    lower = model_name.lower()
    if any(marker in lower for marker in _SMALL_CONTEXT_MARKERS):
        return SMALL_CONTEXT_MAX_CONTENT_CHARS
    return MAX_EMBEDDING_CONTEXT_CHARS


def _line_count(text: str) -> int:
    return len(_LINE_BREAK.split(text))


@dataclass
class _Window:
    content: str
    start: int
    end: int


def find_split_point(text: str, max_chars: int) -> int:
    """Find the furthest good cut point at or before max_chars.

    Preference order: sentence end, paragraph break, newline, space. A
    candidate is accepted only at >= 70% of max_chars.

    Returns:
        Cut offset, ``len(text)`` if the text already fits, 0 if no
        acceptable boundary exists
    """
    if len(text) <= max_chars:
        return len(text)

    floor = max_chars * _MIN_SPLIT_RATIO

    last_sentence_end = 0
    for match in _SENTENCE_END.finditer(text):
        if match.end() > max_chars:
            break
        last_sentence_end = match.end()
    if last_sentence_end > 0 and last_sentence_end >= floor:
        return last_sentence_end

    for separator in ("\n\n", "\n", " "):
        pos = text.rfind(separator, 0, max_chars)
        if pos > 0 and pos >= floor:
            return pos + len(separator)

    return 0


def fixed_size_windows(text: str, max_chars: int, overlap_chars: int) -> list[_Window]:
    """Sliding windows of at most max_chars with overlap_chars of overlap."""
    if not text.strip():
        return []

    windows: list[_Window] = []
    start = 0
    while start < len(text):
        end = min(start + max_chars, len(text))
        content = text[start:end]
        last_newline = content.rfind("\n")
        if _MIN_NEWLINE_TRIM_OFFSET <= last_newline < len(content):
            content = content[:last_newline]
        actual_end = start + len(content)
        windows.append(_Window(content, start, actual_end))
        if actual_end >= len(text):
            break
        start = max(actual_end - overlap_chars, start + 1)
    return windows


class EmbeddingValidator:
    """Splits chunks whose text would exceed the embedding character limit.

    Attributes:
        max_chars: Provider ceiling including the task prefix
        prefix_length: Length of the prefix the embedder prepends
        overlap_chars: Overlap between fixed-size fallback windows
    """

    def __init__(
        self,
        max_chars: int = MAX_EMBEDDING_CONTEXT_CHARS,
        prefix_length: int = DOCUMENT_PREFIX_LENGTH,
        overlap_chars: int = CHUNK_OVERLAP_CHARS,
    ):
        if max_chars <= prefix_length:
            raise ValueError(
                f"max_chars ({max_chars}) must exceed prefix_length ({prefix_length})"
            )
        if overlap_chars < 0:
            raise ValueError(f"overlap_chars must be non-negative, got {overlap_chars}")
        self.max_chars = max_chars
        self.prefix_length = prefix_length
        self.overlap_chars = overlap_chars

    @classmethod
    def for_model(cls, model_name: str) -> "EmbeddingValidator":
        """Validator sized for a specific embedding model."""
        return cls(max_chars=estimate_max_content_chars(model_name))

    def validate_and_split(
        self,
        chunk: Chunk,
        max_chars: int | None = None,
        prefix_length: int | None = None,
    ) -> list[Chunk]:
        """Return the chunk unchanged if it fits, else its split children.

        Args:
            chunk: Chunk to check
            max_chars: Override of the provider ceiling
            prefix_length: Override of the prefix length

        Returns:
            One chunk if it fits, otherwise two or more children each
            within ``max_chars - prefix_length``
        """
        limit = (max_chars or self.max_chars) - (
            self.prefix_length if prefix_length is None else prefix_length
        )
        if len(chunk.text) <= limit:
            return [chunk]

        file_path = chunk.metadata.get("filePath", "unknown")
        original_length = len(chunk.text)
        logger.warning(
            f"Chunk exceeds embedding limit: file={file_path}, "
            f"length={original_length}, max_content_chars={limit}. Splitting..."
        )

        children = self._split_at_boundaries(chunk, limit)
        if children is None:
            logger.warning(
                f"Falling back to fixed-size windows for chunk from file={file_path} "
                f"(length={original_length}, max_content_chars={limit})"
            )
            children = self._split_fixed(chunk, limit)

        logger.info(
            f"Split chunk from file={file_path}: {original_length} chars -> "
            f"{len(children)} chunks"
        )
        return children

    def validate_and_split_chunks(
        self,
        chunks: list[Chunk],
        max_chars: int | None = None,
        prefix_length: int | None = None,
    ) -> list[Chunk]:
        """Apply validate_and_split to every chunk, preserving order."""
        validated: list[Chunk] = []
        split_count = 0
        for chunk in chunks:
            pieces = self.validate_and_split(chunk, max_chars, prefix_length)
            if len(pieces) > 1:
                split_count += 1
            validated.extend(pieces)

        if split_count:
            file_path = chunks[0].metadata.get("filePath", "unknown")
            logger.info(
                f"Validated {len(chunks)} chunks from file={file_path}: "
                f"{split_count} split, {len(validated)} after validation"
            )
        return validated

    def _split_at_boundaries(self, chunk: Chunk, limit: int) -> list[Chunk] | None:
        """Repeatedly cut at natural boundaries; None when no boundary qualifies."""
        start_line, end_line = _line_range(chunk)
        children: list[Chunk] = []
        remaining = chunk.text
        current_line = start_line

        while remaining:
            if len(remaining) <= limit:
                children.append(_split_child(chunk, remaining, len(children), current_line, end_line))
                break

            split_point = find_split_point(remaining, limit)
            if split_point <= 0:
                return None

            piece = remaining[:split_point].strip()
            if len(piece) > limit:
                return None

            children.append(_split_child(chunk, piece, len(children), current_line, end_line))
            remaining = remaining[split_point:].lstrip()
            current_line += _line_count(piece)

        return children

    def _split_fixed(self, chunk: Chunk, limit: int) -> list[Chunk]:
        text = chunk.text
        start_line, end_line = _line_range(chunk)
        children: list[Chunk] = []
        for index, window in enumerate(fixed_size_windows(text, limit, self.overlap_chars)):
            window_start = start_line + _line_count(text[: window.start]) - 1
            window_end = start_line + _line_count(text[: window.end]) - 1
            children.append(
                _split_child(
                    chunk,
                    window.content,
                    index,
                    max(window_start, start_line),
                    min(window_end, end_line),
                )
            )
        return children


def _line_range(chunk: Chunk) -> tuple[int, int]:
    try:
        start_line = int(chunk.metadata.get("startLine", "1"))
    except ValueError:
        start_line = 1
    try:
        end_line = int(chunk.metadata.get("endLine", str(start_line)))
    except ValueError:
        end_line = start_line
    return start_line, end_line


def _split_child(original: Chunk, text: str, index: int, start_line: int, end_line: int) -> Chunk:
    """Child keeps the parent's metadata; children after the first are tagged."""
    metadata = dict(original.metadata)
    metadata["startLine"] = str(start_line)
    metadata["endLine"] = str(end_line)
    if index == 0:
        return Chunk(id=original.id, text=text, metadata=metadata)

    metadata["splitFrom"] = original.id
    metadata["splitIndex"] = str(index)
    return Chunk(id=f"{original.id}:split{index}", text=text, metadata=metadata)
