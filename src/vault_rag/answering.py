"""Answer generation over retrieved note context."""

from pathlib import PurePosixPath

from loguru import logger

from vault_rag.completion import CompletionClient
from vault_rag.config import RetrievalSettings
from vault_rag.errors import RetrievalError, VaultRagError
from vault_rag.models import RagResult, SearchResult
from vault_rag.retrieval import RagRetriever

RAG_SYSTEM_PROMPT = """You are an assistant that answers questions using only the provided context from personal notes.

Rules:
- Only use information from the provided context
- If the answer is not in the context, explicitly say so
- When referencing sources, mention the note or section naturally (e.g., "According to my notes on X..." or "In the section about Y...")
- Do not mention "chunks" or "chunk numbers" in your response
- Answer naturally and conversationally, as if you're recalling information from memory
- Answer concisely and accurately"""


def source_label(result: SearchResult) -> str:
    """Section title if known, else the note's file name without extension."""
    section_title = result.chunk.metadata.get("sectionTitle")
    if section_title:
        return section_title
    file_path = result.chunk.metadata.get("filePath", "").replace("\\", "/")
    return PurePosixPath(file_path).stem


def build_answer_prompt(question: str, results: list[SearchResult]) -> str:
    """Combine the system prompt, note excerpts and the question."""
    parts = [RAG_SYSTEM_PROMPT, ""]
    if not results:
        parts.append("Context: No relevant notes found.\n")
    else:
        parts.append("Relevant information from my notes:\n")
        for result in results:
            parts.append(f'From "{source_label(result)}":')
            parts.append(f"{result.chunk.text}\n")
    parts.append(f"Question: {question}")
    return "\n".join(parts)


class RagService:
    """Answers questions from the notes using a retriever and a generator."""

    def __init__(self, retriever: RagRetriever, generator: CompletionClient):
        self.retriever = retriever
        self.generator = generator

    async def answer(self, query: str, settings: RetrievalSettings | None = None) -> RagResult:
        """Retrieve context for a query and generate an answer.

        Raises:
            RetrievalError: If retrieval or generation fails
        """
        snapshot = settings or self.retriever.settings_provider()
        try:
            outcome = await self.retriever.retrieve(query, snapshot)
            answer = await self.generator.complete(build_answer_prompt(query, outcome.selected))
        except RetrievalError:
            raise
        except VaultRagError as e:
            raise RetrievalError(f"Failed to answer question: {e}") from e

        logger.info(f"Answered {query!r} from {len(outcome.selected)} note excerpts")
        return RagResult(
            answer=answer,
            chunks=[r.chunk for r in outcome.selected],
            used_reranker=self.retriever.uses_reranker(snapshot),
            metadata={
                "query": query,
                "processedQuery": outcome.query,
                "retrievedCount": str(len(outcome.candidates)),
                "filteredCount": str(len(outcome.filtered)),
                "finalCount": str(len(outcome.selected)),
            },
        )
