"""
LLM Service - OpenAI API wrapper for chat completions

Provides:
- Single-turn generation (system + user prompt)
- Token counting for prompt budgeting
- Bounded retries for transient errors
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Dict, Optional
from openai import AsyncOpenAI, APIError, RateLimitError, APIConnectionError
import tiktoken

from app.config import settings

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when the text-generation service fails after retries"""


@dataclass
class LLMResponse:
    """Response from LLM completion"""
    content: str
    model: str
    tokens_prompt: int
    tokens_completion: int
    tokens_total: int
    finish_reason: str


class LLMService:
    """
    OpenAI LLM Service.

    Handles:
    - Chat completions
    - Token counting
    - Retry logic for transient errors
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.default_model = settings.synthesis_model
        self.default_temperature = settings.synthesis_temperature
        self.default_max_tokens = settings.synthesis_max_tokens

        try:
            self._encoding = tiktoken.encoding_for_model(self.default_model)
        except KeyError:
            # Fall back to cl100k_base for newer models
            self._encoding = tiktoken.get_encoding("cl100k_base")

    def count_tokens(self, text: str) -> int:
        """Count tokens in a text string."""
        return len(self._encoding.encode(text))

    async def complete(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """
        Generate a chat completion.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to settings.synthesis_model)
            temperature: Temperature for sampling (0-2)
            max_tokens: Maximum tokens to generate

        Returns:
            LLMResponse with content and token usage

        Raises:
            LLMError once retries are exhausted or on a non-transient API error
        """
        model = model or self.default_model
        temperature = temperature if temperature is not None else self.default_temperature
        max_tokens = max_tokens or self.default_max_tokens

        max_retries = settings.max_retries
        retry_delay = settings.retry_backoff_seconds

        for attempt in range(max_retries):
            try:
                response = await self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )

                choice = response.choices[0]
                usage = response.usage

                return LLMResponse(
                    content=choice.message.content or "",
                    model=response.model,
                    tokens_prompt=usage.prompt_tokens if usage else 0,
                    tokens_completion=usage.completion_tokens if usage else 0,
                    tokens_total=usage.total_tokens if usage else 0,
                    finish_reason=choice.finish_reason,
                )

            except RateLimitError as e:
                if attempt < max_retries - 1:
                    wait_time = retry_delay * (2 ** attempt)
                    logger.warning(f"Rate limited, retrying in {wait_time}s: {e}")
                    await asyncio.sleep(wait_time)
                else:
                    raise LLMError(f"Rate limited after {max_retries} attempts") from e

            except APIConnectionError as e:
                if attempt < max_retries - 1:
                    wait_time = retry_delay * (2 ** attempt)
                    logger.warning(f"Connection error, retrying in {wait_time}s: {e}")
                    await asyncio.sleep(wait_time)
                else:
                    raise LLMError(f"Connection failed after {max_retries} attempts") from e

            except APIError as e:
                logger.error(f"OpenAI API error: {e}")
                raise LLMError(str(e)) from e

        raise LLMError("Completion failed")

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        """Single-turn generation; returns the reply text."""
        response = await self.complete([
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ])
        return response.content


# Singleton instance
_llm_service: Optional[LLMService] = None


def get_llm_service() -> LLMService:
    """Get the LLM service singleton."""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMService()
    return _llm_service
