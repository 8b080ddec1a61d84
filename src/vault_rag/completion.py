"""Text completion clients used for query rewriting, reranking and answers."""

import json
from typing import Protocol

import httpx
from loguru import logger

from vault_rag.errors import CompletionError


class CompletionClient(Protocol):
    """Protocol for prompt-in, text-out language model clients."""

    async def complete(self, prompt: str) -> str:
        """Generate a completion for a prompt.

        Raises:
            CompletionError: If the model call fails or returns nothing
        """
        ...


class OllamaCompletionClient:
    """Client for Ollama's ``/api/generate`` endpoint (non-streaming)."""

    def __init__(
        self,
        base_url: str,
        model: str,
        api_path: str = "/api/generate",
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 120.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.url = f"{self.base_url}{api_path}"
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = client is None

    async def complete(self, prompt: str) -> str:
        try:
            response = await self.client.post(
                self.url,
                json={"model": self.model, "prompt": prompt, "stream": False},
                timeout=self.timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise CompletionError(f"Completion request to {self.model} failed: {e}") from e

        if not response.is_success:
            raise CompletionError(
                f"Completion API returned HTTP {response.status_code}: {response.text[:200]}"
            )

        # Ollama may still answer with newline-delimited JSON fragments
        lines = [line for line in response.text.strip().splitlines() if line.strip()]
        if not lines:
            raise CompletionError("Completion API returned an empty response")

        parts: list[str] = []
        for line in lines:
            try:
                fragment = json.loads(line)
            except json.JSONDecodeError as e:
                raise CompletionError(f"Completion API returned invalid JSON: {e}") from e
            if fragment.get("error"):
                raise CompletionError(f"Completion API error: {fragment['error']}")
            parts.append(fragment.get("response", ""))

        text = "".join(parts).strip()
        if not text:
            raise CompletionError("Completion API returned empty response text")
        logger.debug(f"Completion from {self.model}: {len(text)} chars")
        return text

    async def has_model(self, model: str | None = None) -> bool:
        """Whether the Ollama server has a model pulled (checked via ``/api/tags``).

        A name without a tag also matches its ``:latest`` variant. Any failure
        to list the models counts as unavailable.
        """
        name = model or self.model
        try:
            response = await self.client.get(f"{self.base_url}/api/tags", timeout=self.timeout_seconds)
            response.raise_for_status()
            available = {entry["name"] for entry in response.json()["models"]}
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Could not list models at {self.base_url}: {e}")
            return False

        candidates = {name} if ":" in name else {name, f"{name}:latest"}
        return bool(candidates & available)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
