"""Query rewriting and multi-query expansion.

Both operations are optimizations: any model failure falls back to the
original query instead of failing the retrieval.
"""

import re

from loguru import logger

from vault_rag.completion import CompletionClient

REWRITE_PROMPT = (
    "Rewrite this query to be clear and specific for searching personal notes. "
    "Remove chit-chat. Expand acronyms if needed. "
    "Output only the rewritten query, nothing else.\n\n"
    "Original query: {query}\n\n"
    "Rewritten query:"
)

ALTERNATIVES_PROMPT = (
    "Generate 2-3 alternative phrasings of this query for searching personal notes. "
    "Each alternative should express the same information need using different words. "
    "Output one alternative per line, nothing else.\n\n"
    "Original query: {query}\n\n"
    "Alternatives:"
)

MAX_ALTERNATIVES = 3

_NUMBERING = re.compile(r"^\d+[.)]\s*")
_BULLET = re.compile(r"^[-*]\s*")
_META_MARKERS = ("here are", "alternative", "phrasing", "query:", "queries:")


def clean_alternative_lines(response: str) -> list[str]:
    """Strip numbering/bullets and drop lines that are commentary, not queries."""
    cleaned: list[str] = []
    for raw in response.splitlines():
        line = _BULLET.sub("", _NUMBERING.sub("", raw.strip())).strip()
        lower = line.lower()
        if len(line) <= 5:
            continue
        if lower.startswith("original") or any(marker in lower for marker in _META_MARKERS):
            continue
        cleaned.append(line)
    return cleaned


class QueryPreprocessor:
    """Rewrites queries and generates alternative phrasings with an LLM."""

    def __init__(self, completion_client: CompletionClient):
        self.completion_client = completion_client

    async def rewrite_query(self, query: str) -> str:
        """Return a clearer version of the query, or the query itself on failure."""
        try:
            rewritten = (await self.completion_client.complete(REWRITE_PROMPT.format(query=query))).strip()
        except Exception as e:
            logger.warning(f"Query rewriting failed, using original query: {e}")
            return query

        if not rewritten:
            return query
        logger.debug(f"Rewrote query {query!r} -> {rewritten!r}")
        return rewritten

    async def generate_alternative_queries(self, query: str) -> list[str]:
        """Return the original query followed by up to three alternatives, deduplicated."""
        try:
            response = await self.completion_client.complete(ALTERNATIVES_PROMPT.format(query=query))
        except Exception as e:
            logger.warning(f"Alternative query generation failed: {e}")
            return [query]

        alternatives = clean_alternative_lines(response)[:MAX_ALTERNATIVES]
        queries = list(dict.fromkeys([query, *alternatives]))
        logger.debug(f"Generated {len(queries) - 1} alternative queries for {query!r}")
        return queries
