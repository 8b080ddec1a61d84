"""Embedding client abstraction for document and query vectors.

Supports Ollama-style HTTP embedding endpoints and the OpenAI API. Document
and query texts are embedded with different task prefixes. All calls are
batched and retried with exponential backoff; failures surface as a
classified EmbeddingError.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Literal, Protocol

import httpx
from loguru import logger
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI
from pydantic import BaseModel, Field

from vault_rag.errors import EmbeddingError, EmbeddingErrorKind
from vault_rag.sanitizer import EmbeddingTextSanitizer

DOCUMENT_PREFIX = "search_document: "
QUERY_PREFIX = "search_query: "


class EmbeddingConfig(BaseModel):
    """Configuration for embedding generation.

    Attributes:
        provider: Backend ("ollama" or "openai")
        model: Model identifier (e.g., "nomic-embed-text:v1.5")
        base_url: Base URL of the embedding service
        api_path: Endpoint path appended to base_url (Ollama only)
        dimensions: Expected embedding dimensionality, if known
        batch_size: Number of texts to embed per API call
        max_retries: Maximum attempts for transient failures
        retry_base_delay: First backoff delay in seconds, doubled per attempt
        timeout_seconds: API request timeout
        max_tokens: Sanitizer token ceiling per input
        max_chars: Sanitizer character ceiling per input
        api_key: API key for hosted services (set via env var)
    """

    provider: Literal["ollama", "openai"] = "ollama"
    model: str = "nomic-embed-text:v1.5"
    base_url: str = "http://localhost:11434"
    api_path: str = "/api/embed"
    dimensions: int | None = Field(default=None, ge=8, le=8192)
    batch_size: int = Field(default=32, ge=1, le=500)
    max_retries: int = Field(default=3, ge=1, le=10)
    retry_base_delay: float = Field(default=0.5, ge=0.0, le=60.0)
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)
    max_tokens: int = Field(default=500, ge=1)
    max_chars: int = Field(default=2000, ge=1)
    api_key: str | None = None


class Embedder(Protocol):
    """Protocol for embedding client implementations."""

    async def embed_document(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for document texts.

        Args:
            texts: Input texts

        Returns:
            Embedding vectors in input order

        Raises:
            EmbeddingError: After retries are exhausted or on a final failure
        """
        ...

    async def embed_query(self, text: str) -> list[float]:
        """Generate an embedding for a search query.

        Args:
            text: Query text

        Returns:
            Embedding vector
        """
        ...


async def call_with_retries(
    operation: Callable[[], Awaitable[list[list[float]]]],
    *,
    max_retries: int,
    base_delay: float,
    label: str,
) -> list[list[float]]:
    """Run an embedding call, retrying retryable EmbeddingErrors.

    The delay before retry n (0-indexed) is ``base_delay * 2**n``.
    """
    for attempt in range(max_retries):
        try:
            return await operation()
        except EmbeddingError as e:
            if not e.retryable:
                logger.error(f"{label} failed ({e.kind.value}): {e}")
                raise
            logger.warning(
                f"{label} failed ({e.kind.value}) "
                f"(attempt {attempt + 1}/{max_retries}): {e}"
            )
            if attempt < max_retries - 1:
                await asyncio.sleep(base_delay * 2**attempt)
            else:
                raise

    raise RuntimeError("Exhausted all retry attempts")


def _check_dimensions(vectors: list[list[float]], expected: int | None, model: str) -> None:
    """Log a dimension mismatch; the vectors stay usable."""
    if expected is None:
        return
    for i, vector in enumerate(vectors):
        if len(vector) != expected:
            logger.warning(
                f"Embedding dimension mismatch for {model}: expected {expected}, "
                f"got {len(vector)} for text {i}"
            )
            return


def _batches(texts: list[str], size: int) -> list[list[str]]:
    return [texts[i : i + size] for i in range(0, len(texts), size)]


class HttpEmbedder:
    """Embedding client for Ollama-compatible ``/api/embed`` endpoints."""

    def __init__(
        self,
        config: EmbeddingConfig,
        client: httpx.AsyncClient | None = None,
        sanitizer: EmbeddingTextSanitizer | None = None,
    ):
        """Initialize HTTP embedder.

        Args:
            config: Embedding configuration
            client: Shared HTTP client (a private one is created if None)
            sanitizer: Input size guard (built from config if None)
        """
        self.config = config
        self.url = f"{config.base_url.rstrip('/')}{config.api_path}"
        self.client = client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._owns_client = client is None
        self.sanitizer = sanitizer or EmbeddingTextSanitizer(
            max_tokens=config.max_tokens, max_chars=config.max_chars
        )

    async def embed_document(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors: list[list[float]] = []
        for batch in _batches(texts, self.config.batch_size):
            vectors.extend(await self._embed([DOCUMENT_PREFIX + t for t in batch]))
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        vectors = await self._embed([QUERY_PREFIX + text])
        return vectors[0]

    async def _embed(self, inputs: list[str]) -> list[list[float]]:
        payload = {"model": self.config.model, "input": self.sanitizer.sanitize_all(inputs)}

        async def attempt() -> list[list[float]]:
            return await self._post(payload, expected=len(inputs))

        vectors = await call_with_retries(
            attempt,
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_base_delay,
            label=f"Embedding {len(inputs)} texts with {self.config.model}",
        )
        _check_dimensions(vectors, self.config.dimensions, self.config.model)
        logger.debug(f"Embedded {len(inputs)} texts with {self.config.model}")
        return vectors

    async def _post(self, payload: dict[str, Any], expected: int) -> list[list[float]]:
        try:
            response = await self.client.post(
                self.url, json=payload, timeout=self.config.timeout_seconds
            )
        except httpx.TimeoutException as e:
            raise EmbeddingError(f"Embedding request timed out: {e}", EmbeddingErrorKind.TIMEOUT) from e
        except httpx.TransportError as e:
            raise EmbeddingError(
                f"Embedding request failed: {e}", EmbeddingErrorKind.TRANSPORT
            ) from e

        if response.status_code in (401, 403):
            raise EmbeddingError(
                f"Embedding service rejected credentials (HTTP {response.status_code})",
                EmbeddingErrorKind.AUTH,
                status_code=response.status_code,
            )
        if not response.is_success:
            raise EmbeddingError(
                f"Embedding service returned HTTP {response.status_code}: {response.text[:200]}",
                EmbeddingErrorKind.HTTP,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise EmbeddingError(
                f"Embedding response is not JSON: {e}", EmbeddingErrorKind.MALFORMED_RESPONSE
            ) from e

        if not isinstance(body, dict):
            raise EmbeddingError(
                "Embedding response is not a JSON object", EmbeddingErrorKind.MALFORMED_RESPONSE
            )
        if body.get("error"):
            raise EmbeddingError(
                f"Embedding service error: {body['error']}", EmbeddingErrorKind.MALFORMED_RESPONSE
            )

        embeddings = body.get("embeddings")
        if not isinstance(embeddings, list) or not embeddings:
            raise EmbeddingError(
                "Embedding response contains no embeddings", EmbeddingErrorKind.MALFORMED_RESPONSE
            )
        if len(embeddings) != expected:
            raise EmbeddingError(
                f"Expected {expected} embeddings, got {len(embeddings)}",
                EmbeddingErrorKind.MALFORMED_RESPONSE,
            )
        try:
            return [[float(v) for v in vector] for vector in embeddings]
        except (TypeError, ValueError) as e:
            raise EmbeddingError(
                f"Embedding response contains non-numeric values: {e}",
                EmbeddingErrorKind.MALFORMED_RESPONSE,
            ) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class OpenAIEmbedding:
    """OpenAI embedding client with retry logic and batching."""

    def __init__(self, config: EmbeddingConfig):
        """Initialize OpenAI client.

        Args:
            config: Embedding configuration with API key
        """
        self.config = config
        # retries are handled here so backoff and classification match HttpEmbedder
        self.client = AsyncOpenAI(
            api_key=config.api_key, timeout=config.timeout_seconds, max_retries=0
        )
        self.model_name = config.model.removeprefix("openai/")
        self.sanitizer = EmbeddingTextSanitizer(
            max_tokens=config.max_tokens, max_chars=config.max_chars
        )

    async def embed_document(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors: list[list[float]] = []
        for batch in _batches(texts, self.config.batch_size):
            vectors.extend(await self._embed(batch))
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        vectors = await self._embed([text])
        return vectors[0]

    async def _embed(self, texts: list[str]) -> list[list[float]]:
        inputs = self.sanitizer.sanitize_all(texts)

        async def attempt() -> list[list[float]]:
            try:
                response = await self.client.embeddings.create(model=self.model_name, input=inputs)
            except APITimeoutError as e:
                raise EmbeddingError(str(e), EmbeddingErrorKind.TIMEOUT) from e
            except APIConnectionError as e:
                raise EmbeddingError(str(e), EmbeddingErrorKind.TRANSPORT) from e
            except APIStatusError as e:
                kind = (
                    EmbeddingErrorKind.AUTH
                    if e.status_code in (401, 403)
                    else EmbeddingErrorKind.HTTP
                )
                raise EmbeddingError(str(e), kind, status_code=e.status_code) from e

            embeddings = [item.embedding for item in response.data]
            if len(embeddings) != len(inputs):
                raise EmbeddingError(
                    f"Expected {len(inputs)} embeddings, got {len(embeddings)}",
                    EmbeddingErrorKind.MALFORMED_RESPONSE,
                )
            return embeddings

        vectors = await call_with_retries(
            attempt,
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_base_delay,
            label=f"Embedding {len(texts)} texts with {self.model_name}",
        )
        _check_dimensions(vectors, self.config.dimensions, self.model_name)
        logger.debug(f"Embedded {len(texts)} texts with {self.model_name}")
        return vectors

    async def aclose(self) -> None:
        await self.client.close()


def create_embedder(config: EmbeddingConfig, client: httpx.AsyncClient | None = None) -> Embedder:
    """Factory function to create an embedder based on config.

    Args:
        config: Embedding configuration
        client: Shared HTTP client for HTTP-based providers

    Returns:
        Embedder implementation

    Example:
        >>> config = EmbeddingConfig(provider="ollama", model="nomic-embed-text:v1.5")
        >>> embedder = create_embedder(config)
    """
    if config.provider == "ollama":
        return HttpEmbedder(config, client=client)
    elif config.provider == "openai":
        return OpenAIEmbedding(config)
    else:
        raise ValueError(f"Unknown embedding provider {config.provider!r}")
