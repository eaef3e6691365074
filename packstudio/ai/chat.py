"""Chat completion client (OpenAI) with retries."""

from typing import Any, Dict, List, Optional

from loguru import logger
from openai import (
    APIError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    BadRequestError,
    RateLimitError,
)
from pydantic import BaseModel, Field

from ..errors import GenerationError
from ..utils.retry import RetryManager

NON_RETRYABLE_CODES = ("invalid_api_key", "insufficient_quota")


class ChatResult(BaseModel):
    """Text returned by a chat completion plus token usage."""

    content: str
    model: str
    usage: Dict[str, int] = Field(default_factory=dict)


def is_retryable(error: Exception) -> bool:
    """Whether an OpenAI error is worth another attempt."""
    if isinstance(error, (AuthenticationError, BadRequestError)):
        return False
    code = getattr(error, "code", None)
    return code not in NON_RETRYABLE_CODES


class ChatCompletionClient:
    """Thin async wrapper around ``chat.completions.create``.

    Handles both text-only prompts and vision prompts; for vision, pass
    message content as a list of ``text`` / ``image_url`` parts.
    """

    def __init__(
        self,
        api_key: str = "",
        default_model: str = "gpt-4",
        max_retries: int = 2,
        retry_base_delay: float = 0.6,
        timeout: float = 120.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.default_model = default_model
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        # Retries are ours; keep the SDK from stacking its own on top
        self.client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        max_retries: Optional[int] = None,
    ) -> ChatResult:
        """Run one chat completion.

        Args:
            messages: OpenAI-style message list
            model: Model name, defaults to the client's default model
            max_tokens: Completion token limit
            temperature: Sampling temperature
            max_retries: Override for the number of retries after the first try

        Returns:
            ChatResult with the first choice's content

        Raises:
            GenerationError: If the model returned no content
            openai.APIError: If every attempt failed
        """
        model = model or self.default_model

        async def call():
            return await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )

        response = await RetryManager.retry_with_backoff(
            call,
            max_retries=self.max_retries if max_retries is None else max_retries,
            base_delay=self.retry_base_delay,
            max_delay=10.0,
            retry_on=(APITimeoutError, RateLimitError, APIError),
            should_retry=is_retryable,
        )

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise GenerationError(f"No content returned by {model}")

        usage = {}
        if response.usage is not None:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        logger.debug(f"Chat completion from {model}: {len(content)} chars")
        return ChatResult(content=content, model=model, usage=usage)
