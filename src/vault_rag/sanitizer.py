"""Last-line size guard applied to text right before an embedding call."""

from loguru import logger

DEFAULT_EMBEDDING_MAX_TOKENS = 500
DEFAULT_EMBEDDING_MAX_CHARS = 2000
_CHARS_PER_TOKEN = 4


class EmbeddingTextSanitizer:
    """Truncates text to an embedding service's size limits.

    The character cap is applied first; the token estimate (length / 4) is
    then taken on the possibly-shortened text and enforced as a second cap.
    """

    def __init__(
        self,
        max_tokens: int = DEFAULT_EMBEDDING_MAX_TOKENS,
        max_chars: int = DEFAULT_EMBEDDING_MAX_CHARS,
    ):
        if max_tokens <= 0 or max_chars <= 0:
            raise ValueError(
                f"max_tokens and max_chars must be positive, got {max_tokens}, {max_chars}"
            )
        self.max_tokens = max_tokens
        self.max_chars = max_chars

    def sanitize(self, text: str) -> str:
        """Return text trimmed to fit within both limits."""
        original_length = len(text)
        result = text[: self.max_chars]

        if len(result) // _CHARS_PER_TOKEN > self.max_tokens:
            result = result[: self.max_tokens * _CHARS_PER_TOKEN]

        removed = original_length - len(result)
        if removed > 0:
            logger.debug(
                f"Truncated embedding input by {removed} chars "
                f"({original_length} -> {len(result)}, max_chars={self.max_chars}, "
                f"max_tokens={self.max_tokens})"
            )
        return result

    def sanitize_all(self, texts: list[str]) -> list[str]:
        return [self.sanitize(t) for t in texts]
