"""Embedding service for generating vector embeddings"""

import asyncio
import logging
from typing import List, Optional
from functools import lru_cache
from openai import AsyncOpenAI, APIError, RateLimitError, APIConnectionError

from app.config import settings

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when the embedding service cannot produce a vector"""


class EmbeddingService:
    """Service for generating text embeddings using OpenAI"""

    _instance: Optional["EmbeddingService"] = None
    _openai_client = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def model_version(self) -> str:
        return settings.embedding_model

    @property
    def openai_client(self) -> AsyncOpenAI:
        if self._openai_client is None:
            self._openai_client = AsyncOpenAI(api_key=settings.openai_api_key)
            logger.info(f"OpenAI client initialized for model: {settings.embedding_model}")
        return self._openai_client

    async def embed(self, text: str) -> List[float]:
        """Generate embedding for a single text, retrying transient errors"""
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        max_retries = settings.max_retries
        retry_delay = settings.retry_backoff_seconds

        for attempt in range(max_retries):
            try:
                response = await self.openai_client.embeddings.create(
                    model=settings.embedding_model,
                    input=text,
                )
                return response.data[0].embedding

            except (RateLimitError, APIConnectionError) as e:
                if attempt < max_retries - 1:
                    wait_time = retry_delay * (2 ** attempt)
                    logger.warning(f"Embedding request failed, retrying in {wait_time}s: {e}")
                    await asyncio.sleep(wait_time)
                else:
                    raise EmbeddingError(f"Embedding failed after {max_retries} attempts: {e}") from e

            except APIError as e:
                logger.error(f"OpenAI embedding API error: {e}")
                raise EmbeddingError(str(e)) from e

        raise EmbeddingError("Embedding failed")


@lru_cache()
def get_embedding_service() -> EmbeddingService:
    """Get the singleton embedding service"""
    return EmbeddingService()
