"""Exception hierarchy for the RAG pipeline.

Network-facing components raise these so callers can tell a failed
embedding call from a failed vector-store call without inspecting
transport exceptions.
"""

from enum import Enum


class VaultRagError(Exception):
    """Base class for all vault_rag errors."""


class EmbeddingErrorKind(str, Enum):
    """Classification of embedding failures."""

    AUTH = "auth"
    TIMEOUT = "timeout"
    MALFORMED_RESPONSE = "malformed_response"
    HTTP = "http"
    TRANSPORT = "transport"


class EmbeddingError(VaultRagError):
    """Embedding call failed (after retries where the failure is retryable).

    Attributes:
        kind: Failure classification
        status_code: HTTP status code when the service answered
    """

    def __init__(
        self,
        message: str,
        kind: EmbeddingErrorKind,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Auth failures and client errors other than 429 are final."""
        if self.kind is EmbeddingErrorKind.AUTH:
            return False
        if self.kind is EmbeddingErrorKind.HTTP and self.status_code is not None:
            return self.status_code == 429 or self.status_code >= 500
        return True


class VectorStoreError(VaultRagError):
    """Vector store request failed."""


class CompletionError(VaultRagError):
    """Text completion request failed or returned nothing usable."""


class RetrievalError(VaultRagError):
    """Retrieval could not produce results (embedding or search failed)."""


class IndexingError(VaultRagError):
    """A single file could not be indexed."""
