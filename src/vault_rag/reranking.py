"""LLM-based reranking of vector search candidates.

Rerankers only reorder; they never drop candidates. A candidate the model
did not score keeps its vector similarity as its sort key. Any failure
returns the candidates in their original order.
"""

import json
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from vault_rag.completion import CompletionClient
from vault_rag.models import SearchResult

DEFAULT_RERANKER_MODEL = "xitao/bge-reranker-v2-m3"

RERANK_INSTRUCTION = (
    "You are a reranker. Given a query and candidate documents, return a JSON object "
    "mapping document IDs to relevance scores (0.0 to 1.0, where 1.0 is most relevant)."
)
RERANK_RESPONSE_FORMAT = (
    'Return only a JSON object in this format: {"id1": 0.95, "id2": 0.87, ...}\n'
    "Do not include any explanation or additional text, only the JSON object."
)
MAX_CANDIDATE_TEXT_CHARS = 500

_TRAILING_COMMA_OBJECT = re.compile(r",\s*}")
_TRAILING_COMMA_ARRAY = re.compile(r",\s*]")


def build_rerank_prompt(query: str, candidates: list[SearchResult]) -> str:
    """Serialize the query and candidates into a scoring prompt."""
    lines = [RERANK_INSTRUCTION, "", f"Query: {query}", "", "Candidate documents:"]
    for result in candidates:
        text = result.chunk.text
        if len(text) > MAX_CANDIDATE_TEXT_CHARS:
            text = text[:MAX_CANDIDATE_TEXT_CHARS] + "..."
        lines.append("")
        lines.append(f"ID: {result.chunk.id}")
        lines.append(f"Text: {text}")
        if result.chunk.metadata:
            metadata = ", ".join(f"{k}={v}" for k, v in result.chunk.metadata.items())
            lines.append(f"Metadata: {metadata}")
    lines.extend(["", RERANK_RESPONSE_FORMAT])
    return "\n".join(lines)


def _to_score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if score != score:  # NaN
        return 0.0
    return min(max(score, 0.0), 1.0)


def parse_rerank_response(response: str) -> dict[str, float]:
    """Extract an id -> score mapping from model output.

    Takes the outermost ``{...}`` span, tolerates trailing commas, defaults
    unparseable scores to 0.0 and clamps to [0, 1]. Returns ``{}`` when no
    JSON object can be recovered.
    """
    start = response.find("{")
    end = response.rfind("}")
    if start == -1 or end <= start:
        return {}

    candidate = response[start : end + 1]
    candidate = _TRAILING_COMMA_ARRAY.sub("]", _TRAILING_COMMA_OBJECT.sub("}", candidate))
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        logger.debug(f"Could not parse rerank response: {response[:200]!r}")
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {str(key): _to_score(value) for key, value in parsed.items()}


def order_by_scores(candidates: list[SearchResult], scores: dict[str, float]) -> list[SearchResult]:
    """Stable sort by model score, falling back to the vector similarity.

    Scored candidates carry the model score as their similarity from here on,
    so threshold filtering and the final sort see the reranked relevance.
    """
    rescored = [
        r.model_copy(update={"similarity": scores[r.chunk.id]}) if r.chunk.id in scores else r
        for r in candidates
    ]
    return sorted(rescored, key=lambda r: r.similarity, reverse=True)


class Reranker(ABC):
    """Reorders search candidates by relevance to a query."""

    @abstractmethod
    async def rerank(self, query: str, candidates: list[SearchResult]) -> list[SearchResult]:
        """Return the candidates reordered, never dropping any."""
        ...


class NoopReranker(Reranker):
    """Returns candidates unchanged (reranking disabled or no model)."""

    async def rerank(self, query: str, candidates: list[SearchResult]) -> list[SearchResult]:
        return candidates


class LlmReranker(Reranker):
    """Shared prompt/parse/sort flow for completion-backed rerankers."""

    label = "llm"

    def __init__(self, completion_client: CompletionClient):
        self.completion_client = completion_client

    async def rerank(self, query: str, candidates: list[SearchResult]) -> list[SearchResult]:
        if not candidates:
            return candidates
        try:
            response = await self.completion_client.complete(build_rerank_prompt(query, candidates))
            scores = parse_rerank_response(response)
            if not scores:
                logger.warning(f"{self.label} reranker returned no scores, keeping original order")
                return candidates
            reranked = order_by_scores(candidates, scores)
        except Exception as e:
            logger.warning(f"{self.label} reranking failed, keeping original order: {e}")
            return candidates

        logger.debug(
            f"{self.label} reranker scored {len(scores)}/{len(candidates)} candidates"
        )
        return reranked


class DedicatedModelReranker(LlmReranker):
    """Reranker backed by a dedicated reranking model."""

    label = "dedicated"

    def __init__(self, completion_client: CompletionClient, model_name: str = DEFAULT_RERANKER_MODEL):
        super().__init__(completion_client)
        self.model_name = model_name


class GeneratorFallbackReranker(LlmReranker):
    """Reranker that reuses the answer-generation model when no reranker model is set."""

    label = "generator-fallback"


async def create_reranker(
    model_name: str | None,
    generator: CompletionClient | None,
    client_factory: Callable[[str], CompletionClient] | None = None,
    model_available: Callable[[str], Awaitable[bool]] | None = None,
) -> Reranker:
    """Select the reranker variant from configuration.

    Whether reranking runs is decided per retrieval from the settings, so the
    variant is built regardless of the current toggle.

    Args:
        model_name: Dedicated reranker model, if configured
        generator: Completion client of the generation model
        client_factory: Builds a completion client for a model name
        model_available: Reports whether a model is installed (assumed if None)

    Returns:
        Dedicated reranker when its model is configured and available, the
        generator fallback when a generator is, otherwise a no-op
    """
    if model_name and client_factory is not None:
        if model_available is None or await model_available(model_name):
            logger.info(f"Using dedicated reranker model {model_name}")
            return DedicatedModelReranker(client_factory(model_name), model_name)
        logger.warning(f"Reranker model {model_name} is not available, falling back to the generation model")
    if generator is not None:
        logger.info("Using generation model as reranker")
        return GeneratorFallbackReranker(generator)
    logger.warning("No model available for reranking; reranking disabled")
    return NoopReranker()
