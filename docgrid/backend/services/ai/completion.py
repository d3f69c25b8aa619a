"""
AI completion service used by field extraction.

The core only depends on the `CompletionService` protocol; the OpenAI
implementation maps vendor errors onto the pipeline taxonomy.
"""

import logging
from typing import Protocol, runtime_checkable

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI
from pydantic import BaseModel, Field

from ...config import get_settings
from ..exceptions import AIServiceError, TransientNetworkError

logger = logging.getLogger(__name__)


class CompletionRequest(BaseModel):
    """A single structured completion request."""

    system_prompt: str
    user_prompt: str
    image_url: str | None = Field(
        default=None,
        description="Data URL or remote URL of the visual content",
    )
    model: str = "gpt-4o"
    temperature: float = 0.1
    max_tokens: int = 2000


@runtime_checkable
class CompletionService(Protocol):
    """Returns the raw text body of a JSON completion."""

    def complete(self, request: CompletionRequest) -> str:
        ...


class OpenAICompletionService:
    """
    Completion service backed by the OpenAI chat completions API.

    Requests JSON-object responses. Timeouts and connection failures raise
    TransientNetworkError; API status errors and missing credentials raise
    AIServiceError.
    """

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
    ):
        """
        Initialize the completion service.

        Args:
            api_key: OpenAI API key. If None, reads from config/environment.
            timeout: Per-call timeout in seconds. If None, reads from config.
        """
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.timeout = timeout if timeout is not None else settings.ai_timeout_seconds
        self._client: OpenAI | None = None

        if not self.api_key:
            logger.warning(
                "OPENAI_API_KEY is not set; extraction requests will fail until it is configured."
            )

    @property
    def client(self) -> OpenAI:
        """Lazy-load the OpenAI client."""
        if self._client is None:
            if not self.api_key:
                raise AIServiceError(
                    "OpenAI API key not provided. Set OPENAI_API_KEY environment variable."
                )
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=1)
        return self._client

    def complete(self, request: CompletionRequest) -> str:
        """
        Send one completion request.

        Args:
            request: Prompts, optional visual content and sampling parameters.

        Returns:
            The raw message content (possibly empty).

        Raises:
            TransientNetworkError: If the call timed out or could not connect.
            AIServiceError: If the API rejected the request.
        """
        content: list[dict] = [{"type": "text", "text": request.user_prompt}]
        if request.image_url:
            content.append({
                "type": "image_url",
                "image_url": {"url": request.image_url, "detail": "high"},
            })

        try:
            response = self.client.chat.completions.create(
                model=request.model,
                messages=[
                    {"role": "system", "content": request.system_prompt},
                    {"role": "user", "content": content},
                ],
                response_format={"type": "json_object"},
                temperature=request.temperature,
                max_tokens=request.max_tokens,
            )
        except APITimeoutError as e:
            logger.warning("AI completion timed out after %.0fs", self.timeout)
            raise TransientNetworkError(
                f"AI completion timed out after {self.timeout:.0f}s"
            ) from e
        except APIConnectionError as e:
            logger.warning("AI completion service unreachable: %s", e)
            raise TransientNetworkError(f"AI completion service unreachable: {e}") from e
        except APIStatusError as e:
            logger.error("AI completion rejected with HTTP %d: %s", e.status_code, e.message)
            raise AIServiceError(
                f"AI completion failed with HTTP {e.status_code}: {e.message}"
            ) from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


# Singleton instance for convenience
_completion_service: OpenAICompletionService | None = None


def get_completion_service() -> OpenAICompletionService:
    """Get or create the completion service singleton."""
    global _completion_service
    if _completion_service is None:
        _completion_service = OpenAICompletionService()
    return _completion_service
