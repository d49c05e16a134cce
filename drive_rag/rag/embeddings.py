"""
Embeddings wrapper.

Generates one vector per text. Texts longer than the model input ceiling are
truncated, not chunked.
"""

from openai import OpenAI

from ..errors import UpstreamAPIError
from ..logging_config import logger

DEFAULT_MAX_TEXT_LENGTH = 20000


class Embedder:
    """Embedding collaborator backed by an OpenAI-compatible client."""

    def __init__(
        self,
        client: OpenAI,
        model: str,
        max_text_length: int = DEFAULT_MAX_TEXT_LENGTH,
    ):
        self.client = client
        self.model = model
        self.max_text_length = max_text_length

    def embed(self, text: str) -> list[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Text string to embed; cut to ``max_text_length`` characters.

        Returns:
            Embedding vector.

        Raises:
            UpstreamAPIError: If the API call fails or returns no vector.
        """
        truncated = text[: self.max_text_length]

        try:
            response = self.client.embeddings.create(model=self.model, input=truncated)
            embedding = response.data[0].embedding
        except Exception as e:
            logger.error(f"Error generating embeddings: {e}")
            raise UpstreamAPIError(
                "Failed to generate embeddings",
                service="embedding",
                details={"originalError": str(e), "textLength": len(text)},
            ) from e

        if not embedding:
            raise UpstreamAPIError("Empty embedding received from API", service="embedding")

        logger.debug(f"Generated embeddings with {len(embedding)} dimensions")
        return list(embedding)
