"""Unit tests for engine wiring and logging setup."""

import sys
from unittest.mock import AsyncMock

import pytest
import respx
from httpx import Response
from loguru import logger

from vault_rag.components import build_components
from vault_rag.config import RagConfig, RetrievalSettings
from vault_rag.embedding import HttpEmbedder
from vault_rag.logging_setup import configure_logging
from vault_rag.reranking import DedicatedModelReranker, GeneratorFallbackReranker

TAGS_URL = "http://ollama.test/api/tags"


@pytest.fixture
def make_config(tmp_path):
    def _make(**sections) -> RagConfig:
        return RagConfig(metadata={"directory": str(tmp_path)}, **sections)

    return _make


class TestBuildComponents:
    """Tests for build_components."""

    @pytest.mark.asyncio
    async def test_components_share_one_client(self, make_config):
        components = await build_components(make_config())

        assert isinstance(components.embedder, HttpEmbedder)
        assert components.embedder.client is components.http_client
        assert components.vector_store.client is components.http_client
        await components.aclose()

    @pytest.mark.asyncio
    async def test_reranking_enabled_per_call(self, make_config, make_result):
        components = await build_components(make_config(retrieval={"reranking_enabled": False}))
        retriever = components.retriever
        retriever.embedder = AsyncMock()
        retriever.embedder.embed_query.return_value = [0.1, 0.2]
        retriever.vector_store = AsyncMock()
        retriever.vector_store.search.return_value = [make_result("a", 0.9), make_result("b", 0.5)]
        components.generator.complete = AsyncMock(return_value='{"a": 0.3, "b": 0.95}')

        plain = await retriever.retrieve_chunks("q", RetrievalSettings())
        reranked = await retriever.retrieve_chunks("q", RetrievalSettings(reranking_enabled=True))

        assert isinstance(retriever.reranker, GeneratorFallbackReranker)
        assert [c.id for c in plain] == ["a", "b"]
        assert [c.id for c in reranked] == ["b", "a"]
        components.generator.complete.assert_awaited_once()
        await components.aclose()

    @pytest.mark.asyncio
    @respx.mock
    async def test_dedicated_reranker_selected_when_installed(self, make_config):
        respx.get(TAGS_URL).mock(
            return_value=Response(200, json={"models": [{"name": "bge-reranker:latest"}]})
        )
        config = make_config(generation={"base_url": "http://ollama.test", "reranker_model": "bge-reranker"})

        components = await build_components(config)

        assert isinstance(components.retriever.reranker, DedicatedModelReranker)
        assert components.retriever.reranker.model_name == "bge-reranker"
        await components.aclose()

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_reranker_model_falls_back_to_generator(self, make_config):
        respx.get(TAGS_URL).mock(return_value=Response(200, json={"models": [{"name": "llama3.1:8b"}]}))
        config = make_config(generation={"base_url": "http://ollama.test", "reranker_model": "bge-reranker"})

        components = await build_components(config)

        reranker = components.retriever.reranker
        assert isinstance(reranker, GeneratorFallbackReranker)
        assert reranker.completion_client is components.generator
        await components.aclose()

    @pytest.mark.asyncio
    async def test_indexing_callback_records_metadata(self, make_config):
        components = await build_components(make_config())

        components.indexer.on_indexing_complete("/v", {"a.md": 2}, {"a.md": "sha256:1"})

        record = components.metadata_store.load("/v")
        assert record is not None
        assert record.indexed_file_hashes == {"a.md": "sha256:1"}
        await components.aclose()

    @pytest.mark.asyncio
    async def test_aclose_closes_shared_client(self, make_config):
        components = await build_components(make_config())

        await components.aclose()

        assert components.http_client.is_closed


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_log_file_receives_debug(self, tmp_path):
        log_file = tmp_path / "vault-rag.log"
        try:
            configure_logging(level="WARNING", log_file=str(log_file))
            logger.debug("indexing a.md")
            logger.remove()
            assert "indexing a.md" in log_file.read_text()
        finally:
            logger.remove()
            logger.add(sys.stderr)
