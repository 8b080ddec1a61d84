"""Pydantic models for the indexing and retrieval pipeline.

Chunks and search results are plain values; vault metadata is replaced
wholesale after each indexing run rather than mutated in place.
"""

import math
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


def normalize_path_for_id(file_path: str) -> str:
    """Normalize a file path for use inside a chunk id.

    Backslashes become forward slashes and colons become underscores so that
    the ``path:start:end`` id format stays unambiguous.
    """
    return file_path.replace("\\", "/").replace(":", "_")


def make_chunk_id(file_path: str, start_line: int, end_line: int) -> str:
    """Build the deterministic id for a line range of a file (1-indexed, inclusive)."""
    return f"{normalize_path_for_id(file_path)}:{start_line}:{end_line}"


class Chunk(BaseModel):
    """A bounded text segment of one markdown file.

    Attributes:
        id: Deterministic id, ``{path}:{start}:{end}`` or ``{id}:split{n}``
        text: Chunk text
        metadata: String metadata (filePath, startLine, endLine, sectionTitle,
            splitFrom, splitIndex)
        embedding: Embedding vector, None until embedded
    """

    id: str = Field(min_length=1)
    text: str
    metadata: dict[str, str] = Field(default_factory=dict)
    embedding: list[float] | None = None

    @field_validator("embedding")
    @classmethod
    def validate_embedding_values(cls, v: list[float] | None) -> list[float] | None:
        """Ensure embedding contains finite floats."""
        if v is None:
            return v
        for i, val in enumerate(v):
            if not math.isfinite(val):
                raise ValueError(f"Embedding contains non-finite value at index {i}: {val}")
        return v

    @property
    def file_path(self) -> str | None:
        return self.metadata.get("filePath")

    @property
    def section_title(self) -> str | None:
        return self.metadata.get("sectionTitle")


class SearchResult(BaseModel):
    """A chunk returned by similarity search.

    Attributes:
        chunk: The matched chunk
        similarity: Similarity score, higher is more relevant
    """

    chunk: Chunk
    similarity: float


class SyncStatus(str, Enum):
    """Relationship between a vault on disk and its index."""

    NOT_INDEXED = "not_indexed"
    SYNCED = "synced"
    OUT_OF_SYNC = "out_of_sync"
    UNAVAILABLE = "unavailable"


class VaultMetadata(BaseModel):
    """Record of the last indexing run for a vault.

    Attributes:
        vault_path: Root path of the vault
        last_indexed_time: When the record was written
        indexed_file_hashes: Relative file path -> ``sha256:<hex>`` hash
    """

    vault_path: str
    last_indexed_time: datetime
    indexed_file_hashes: dict[str, str] = Field(default_factory=dict)


class VaultChanges(BaseModel):
    """Files that differ between the vault and its last indexing run."""

    new_files: list[str] = Field(default_factory=list)
    modified_files: list[str] = Field(default_factory=list)
    deleted_files: list[str] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.new_files or self.modified_files or self.deleted_files)

    @property
    def files_to_reindex(self) -> list[str]:
        return sorted(set(self.new_files) | set(self.modified_files))


class IndexedFile(BaseModel):
    """A file that was successfully indexed.

    Attributes:
        path: Path relative to the vault root
        hash: Content hash at indexing time
        indexed_at: Completion timestamp
        chunk_count: Number of chunks stored for the file
    """

    path: str
    hash: str
    indexed_at: datetime
    chunk_count: int = Field(ge=0)


class IndexingReport(BaseModel):
    """Outcome of a vault indexing run."""

    vault_path: str
    indexed: list[IndexedFile] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)

    @property
    def indexed_file_hashes(self) -> dict[str, str]:
        return {f.path: f.hash for f in self.indexed}

    @property
    def chunk_count(self) -> int:
        return sum(f.chunk_count for f in self.indexed)


class DeleteOutcome(BaseModel):
    """Result of a best-effort delete.

    Attributes:
        file_path: Path whose chunks were targeted
        ok: False when the delete failed and the caller continued anyway
        error: Failure description when ok is False
    """

    file_path: str
    ok: bool
    error: str | None = None


class RagResult(BaseModel):
    """Answer produced from retrieved note context."""

    answer: str
    chunks: list[Chunk] = Field(default_factory=list)
    used_reranker: bool = False
    metadata: dict[str, str] = Field(default_factory=dict)
