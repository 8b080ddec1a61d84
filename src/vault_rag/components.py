"""Wiring of the pipeline components from a RagConfig."""

from dataclasses import dataclass

import httpx

from vault_rag.answering import RagService
from vault_rag.chunking import MarkdownChunker
from vault_rag.completion import OllamaCompletionClient
from vault_rag.config import RagConfig
from vault_rag.embedding import Embedder, create_embedder
from vault_rag.index import ChromaVectorStore, VectorStore
from vault_rag.indexer import VaultIndexer
from vault_rag.metadata import VaultMetadataStore
from vault_rag.preprocessing import QueryPreprocessor
from vault_rag.reranking import create_reranker
from vault_rag.retrieval import RagRetriever
from vault_rag.sync import VaultSyncService
from vault_rag.validation import EmbeddingValidator


@dataclass
class RagComponents:
    """All long-lived objects of one configured engine, sharing one HTTP client."""

    config: RagConfig
    http_client: httpx.AsyncClient
    embedder: Embedder
    vector_store: VectorStore
    generator: OllamaCompletionClient
    metadata_store: VaultMetadataStore
    indexer: VaultIndexer
    retriever: RagRetriever
    rag_service: RagService
    sync_service: VaultSyncService

    async def aclose(self) -> None:
        self.indexer.close()
        close = getattr(self.embedder, "aclose", None)
        if close is not None:
            await close()
        await self.http_client.aclose()


async def build_components(config: RagConfig, http_client: httpx.AsyncClient | None = None) -> RagComponents:
    """Construct the engine described by config.

    Args:
        config: Validated configuration
        http_client: HTTP client to share (one is created if None)
    """
    client = http_client or httpx.AsyncClient(timeout=config.vector_store.timeout_seconds)
    generation = config.generation

    embedder = create_embedder(config.embedding, client=client)
    vector_store = ChromaVectorStore(
        base_url=config.vector_store.base_url,
        collection_name=config.vector_store.collection_name,
        tenant=config.vector_store.tenant,
        database=config.vector_store.database,
        client=client,
    )

    def completion_client(model: str) -> OllamaCompletionClient:
        return OllamaCompletionClient(
            generation.base_url, model, client=client, timeout_seconds=generation.timeout_seconds
        )

    generator = completion_client(generation.model)
    metadata_store = VaultMetadataStore(config.metadata.directory)

    def record_indexing(vault_path: str, indexed_files: dict[str, int], hashes: dict[str, str]) -> None:
        metadata_store.record_indexing(vault_path, hashes)

    indexer = VaultIndexer(
        embedder=embedder,
        vector_store=vector_store,
        chunker=MarkdownChunker(config.chunking.to_config()),
        validator=EmbeddingValidator.for_model(config.embedding.model),
        max_concurrency=config.vault.max_concurrent_files,
        on_indexing_complete=record_indexing,
        vault_path=config.vault.path,
    )

    reranker = await create_reranker(
        model_name=generation.reranker_model,
        generator=generator,
        client_factory=completion_client,
        model_available=generator.has_model,
    )
    retriever = RagRetriever(
        embedder=embedder,
        vector_store=vector_store,
        query_preprocessor=QueryPreprocessor(generator),
        reranker=reranker,
        settings_provider=lambda: config.retrieval,
    )

    return RagComponents(
        config=config,
        http_client=client,
        embedder=embedder,
        vector_store=vector_store,
        generator=generator,
        metadata_store=metadata_store,
        indexer=indexer,
        retriever=retriever,
        rag_service=RagService(retriever, generator),
        sync_service=VaultSyncService(vector_store, metadata_store),
    )
