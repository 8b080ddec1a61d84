"""Pytest configuration for test discovery and shared fixtures.

This file ensures that:
- `src/` is importable without installing the package
- Tests never pick up a vault or API key from the developer's environment
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure src directory is in path for imports
repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from vault_rag.models import Chunk, SearchResult  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Unset variables interpolated by conf/vault_rag/default.yaml."""
    for name in ("VAULT_RAG_VAULT", "OLLAMA_BASE_URL", "CHROMA_BASE_URL", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)


def _search_result(chunk_id: str, similarity: float, text: str | None = None) -> SearchResult:
    return SearchResult(
        chunk=Chunk(
            id=chunk_id,
            text=text if text is not None else f"text of {chunk_id}",
            metadata={"filePath": f"{chunk_id}.md"},
        ),
        similarity=similarity,
    )


@pytest.fixture
def make_result():
    """Factory for a SearchResult of a chunk in file ``{chunk_id}.md``."""
    return _search_result
