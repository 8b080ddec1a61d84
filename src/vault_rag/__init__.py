"""Local retrieval-augmented generation over a markdown vault.

This package turns a folder of markdown notes into a semantic index and
retrieves ranked note excerpts for natural-language questions.

Architecture:
    - chunking: Heading-aware markdown splitting
    - sanitizer / validation: Embedding input size guards
    - embedding: Ollama and OpenAI embedders with retries
    - index: Vector store interface and Chroma implementation
    - preprocessing / reranking: LLM query rewriting and reranking
    - retrieval / answering: Retrieval pipeline and answer generation
    - indexer / sync: Incremental vault indexing and change detection
    - models: Pydantic schemas for chunks, results and vault metadata

Usage:
    >>> from vault_rag.config import load_config
    >>> from vault_rag.components import build_components
    >>> components = await build_components(load_config("default"))
    >>> chunks = await components.retriever.retrieve_chunks("backup plan")
"""

__version__ = "0.1.0"

from vault_rag.models import Chunk, SearchResult, SyncStatus, VaultMetadata

__all__ = [
    "Chunk",
    "SearchResult",
    "SyncStatus",
    "VaultMetadata",
]
