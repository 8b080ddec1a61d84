"""Retrieval orchestration: rewrite, search, rerank, filter, select.

Settings are read once per call, so changes made between calls take
effect on the next retrieval without rebuilding the retriever.
"""

from dataclasses import dataclass

from loguru import logger

from vault_rag.config import RetrievalSettings, SettingsProvider
from vault_rag.embedding import Embedder
from vault_rag.errors import EmbeddingError, RetrievalError, VectorStoreError
from vault_rag.index import VectorStore
from vault_rag.models import Chunk, SearchResult
from vault_rag.preprocessing import QueryPreprocessor
from vault_rag.reranking import NoopReranker, Reranker


def dedupe_by_chunk_id(results: list[SearchResult]) -> list[SearchResult]:
    """Keep one result per chunk id, the one with the highest similarity.

    First-seen order is preserved.
    """
    best: dict[str, SearchResult] = {}
    for result in results:
        current = best.get(result.chunk.id)
        if current is None or result.similarity > current.similarity:
            best[result.chunk.id] = result
    return list(best.values())


@dataclass
class RetrievalOutcome:
    """Intermediate and final results of one retrieval."""

    query: str
    candidates: list[SearchResult]
    filtered: list[SearchResult]
    selected: list[SearchResult]


def _top_similarities(results: list[SearchResult], n: int = 3) -> str:
    return ", ".join(f"{r.similarity:.3f}" for r in results[:n]) or "-"


class RagRetriever:
    """Turns a natural-language question into ranked context chunks."""

    def __init__(
        self,
        embedder: Embedder,
        vector_store: VectorStore,
        query_preprocessor: QueryPreprocessor | None = None,
        reranker: Reranker | None = None,
        settings_provider: SettingsProvider | None = None,
    ):
        """Initialize retriever.

        Args:
            embedder: Query embedder
            vector_store: Store to search
            query_preprocessor: Needed for rewriting and multi-query
            reranker: Reranker variant (no-op if None)
            settings_provider: Returns the current settings; called once per
                retrieval that does not pass settings explicitly
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.query_preprocessor = query_preprocessor
        self.reranker = reranker or NoopReranker()
        self.settings_provider = settings_provider or RetrievalSettings

    async def retrieve(
        self, question: str, settings: RetrievalSettings | None = None
    ) -> RetrievalOutcome:
        """Run the full pipeline and return intermediate results.

        Raises:
            RetrievalError: If embedding or vector search fails
        """
        snapshot = settings or self.settings_provider()

        query = question
        if snapshot.query_rewriting_enabled and self.query_preprocessor is not None:
            query = await self.query_preprocessor.rewrite_query(question)

        try:
            candidates = await self._search(query, snapshot)
        except (EmbeddingError, VectorStoreError) as e:
            raise RetrievalError(f"Retrieval failed for query {query!r}: {e}") from e
        logger.info(
            f"Retrieved {len(candidates)} candidates for {query!r} "
            f"(top similarities: {_top_similarities(candidates)})"
        )

        ranked = await self._rerank(query, candidates, snapshot)

        kept = [r for r in ranked if r.similarity >= snapshot.similarity_threshold]
        selected = sorted(kept, key=lambda r: r.similarity, reverse=True)[: snapshot.display_k]
        logger.info(
            f"Kept {len(kept)}/{len(ranked)} candidates at threshold "
            f"{snapshot.similarity_threshold}; returning {len(selected)} "
            f"(similarities: {_top_similarities(selected, snapshot.display_k)})"
        )
        return RetrievalOutcome(query, candidates, kept, selected)

    async def retrieve_chunks(
        self, question: str, settings: RetrievalSettings | None = None
    ) -> list[Chunk]:
        """Return the context chunks for a question, most relevant first."""
        outcome = await self.retrieve(question, settings)
        return [r.chunk for r in outcome.selected]

    def uses_reranker(self, settings: RetrievalSettings) -> bool:
        return settings.reranking_enabled and not isinstance(self.reranker, NoopReranker)

    async def _search(self, query: str, settings: RetrievalSettings) -> list[SearchResult]:
        if settings.multi_query_enabled and self.query_preprocessor is not None:
            queries = await self.query_preprocessor.generate_alternative_queries(query)
            logger.info(f"Multi-query mode: searching with {len(queries)} queries")
            results: list[SearchResult] = []
            for q in queries:
                embedding = await self.embedder.embed_query(q)
                results.extend(
                    await self.vector_store.search(embedding, settings.max_k, settings.filters)
                )
            return dedupe_by_chunk_id(results)

        embedding = await self.embedder.embed_query(query)
        return await self.vector_store.search(embedding, settings.max_k, settings.filters)

    async def _rerank(
        self, query: str, candidates: list[SearchResult], settings: RetrievalSettings
    ) -> list[SearchResult]:
        if not self.uses_reranker(settings) or not candidates:
            return candidates
        try:
            reranked = await self.reranker.rerank(query, candidates)
        except Exception as e:
            logger.warning(f"Reranking failed, using original order: {e}")
            return candidates
        logger.debug(f"Reranked {len(candidates)} candidates")
        return reranked
