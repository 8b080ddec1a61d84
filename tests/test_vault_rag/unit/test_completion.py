"""Unit tests for the Ollama completion client."""

import json

import httpx
import pytest
import respx
from httpx import Response

from vault_rag.completion import OllamaCompletionClient
from vault_rag.errors import CompletionError

GENERATE_URL = "http://ollama.test/api/generate"
TAGS_URL = "http://ollama.test/api/tags"


@pytest.fixture
def client() -> OllamaCompletionClient:
    return OllamaCompletionClient("http://ollama.test/", "llama3.1:8b")


class TestOllamaCompletionClient:
    """Tests for OllamaCompletionClient."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_complete(self, client):
        route = respx.post(GENERATE_URL).mock(
            return_value=Response(200, json={"model": "llama3.1:8b", "response": "  an answer \n", "done": True})
        )

        assert await client.complete("question?") == "an answer"
        payload = json.loads(route.calls[0].request.content)
        assert payload == {"model": "llama3.1:8b", "prompt": "question?", "stream": False}

    @pytest.mark.asyncio
    @respx.mock
    async def test_newline_delimited_fragments_joined(self, client):
        body = "\n".join(
            json.dumps(fragment)
            for fragment in (
                {"response": "Hello", "done": False},
                {"response": ", world", "done": False},
                {"response": "", "done": True},
            )
        )
        respx.post(GENERATE_URL).mock(return_value=Response(200, text=body))

        assert await client.complete("hi") == "Hello, world"

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_error(self, client):
        respx.post(GENERATE_URL).mock(return_value=Response(500, text="model crashed"))

        with pytest.raises(CompletionError, match="HTTP 500"):
            await client.complete("hi")

    @pytest.mark.asyncio
    @respx.mock
    async def test_error_field(self, client):
        respx.post(GENERATE_URL).mock(return_value=Response(200, json={"error": "model not found"}))

        with pytest.raises(CompletionError, match="model not found"):
            await client.complete("hi")

    @pytest.mark.asyncio
    @respx.mock
    @pytest.mark.parametrize("text", ["", "   ", '{"response": "   ", "done": true}', "not json"])
    async def test_unusable_body(self, client, text):
        respx.post(GENERATE_URL).mock(return_value=Response(200, text=text))

        with pytest.raises(CompletionError):
            await client.complete("hi")

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error(self, client):
        respx.post(GENERATE_URL).mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(CompletionError, match="failed"):
            await client.complete("hi")


class TestHasModel:
    """Tests for the installed-model check."""

    TAGS = {"models": [{"name": "llama3.1:8b"}, {"name": "bge-reranker:latest"}]}

    @pytest.mark.asyncio
    @respx.mock
    async def test_installed_model(self, client):
        respx.get(TAGS_URL).mock(return_value=Response(200, json=self.TAGS))

        assert await client.has_model() is True
        assert await client.has_model("bge-reranker") is True

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_model(self, client):
        respx.get(TAGS_URL).mock(return_value=Response(200, json=self.TAGS))

        assert await client.has_model("mxbai-rerank") is False
        assert await client.has_model("llama3.1:70b") is False

    @pytest.mark.asyncio
    @respx.mock
    @pytest.mark.parametrize(
        "response",
        [Response(500, text="boom"), Response(200, text="<html>proxy</html>"), Response(200, json={"x": 1})],
    )
    async def test_unlistable_models_count_as_missing(self, client, response):
        respx.get(TAGS_URL).mock(return_value=response)

        assert await client.has_model() is False

    @pytest.mark.asyncio
    @respx.mock
    async def test_unreachable_server(self, client):
        respx.get(TAGS_URL).mock(side_effect=httpx.ConnectError("refused"))

        assert await client.has_model() is False
