"""
LLM Client wrapper with configurable base URL.

Supports any OpenAI-compatible API. The default base URL points at Gemini's
OpenAI-compatible endpoint.
"""

from openai import OpenAI

from ..config import RAGSettings
from ..errors import ConfigurationError, UpstreamAPIError
from ..logging_config import logger


def get_llm_client(settings: RAGSettings) -> OpenAI:
    """
    Get an OpenAI client for the configured endpoint.

    Calls are bounded by ``settings.request_timeout`` and never retried by the
    client; callers decide whether to retry a whole operation.

    Args:
        settings: RAG settings holding the key, base URL and timeout.

    Returns:
        OpenAI client configured for the specified endpoint.
    """
    if not settings.llm_api_key:
        raise ConfigurationError("LLM_API_KEY is required")

    client_kwargs = {
        "api_key": settings.llm_api_key,
        "timeout": settings.request_timeout,
        "max_retries": 0,
    }

    if settings.llm_base_url:
        client_kwargs["base_url"] = settings.llm_base_url

    return OpenAI(**client_kwargs)


class AnswerGenerator:
    """Single-prompt text generation."""

    def __init__(self, client: OpenAI, model: str):
        self.client = client
        self.model = model

    def generate(self, prompt: str) -> str:
        """Send one user prompt and return the model's text."""
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as e:
            logger.error(f"Error generating answer: {e}")
            raise UpstreamAPIError(
                "Failed to generate answer",
                service="generation",
                details={"originalError": str(e)},
            ) from e

        return response.choices[0].message.content or ""
