# feedback_intel/embedding/embedder.py
from openai import OpenAI, OpenAIError, RateLimitError
from typing import List
from feedback_intel.config.settings import Settings
from feedback_intel.errors import UpstreamFailure
import time
import logging

logger = logging.getLogger(__name__)


class Embedder:
    """OpenAI embedding client."""

    def __init__(self, config: Settings):
        self.config = config
        self.client = OpenAI(
            api_key=config.openai_api_key,
            timeout=config.request_timeout_seconds
        )
        self.model = config.openai_embedding_model

    def _embed_batch(self, batch: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a batch of texts.
        Uses exponential backoff retry logic for rate limit errors.
        """
        max_retries = 5
        base_delay = 1.0  # Start with 1 second delay

        for attempt in range(max_retries):
            try:
                response = self.client.embeddings.create(
                    model=self.model,
                    input=batch
                )
                return [item.embedding for item in response.data]
            except RateLimitError as e:
                if attempt == max_retries - 1:
                    raise UpstreamFailure("Embedding rate limit exhausted", details=str(e)) from e

                delay = base_delay * (2 ** attempt)
                logger.warning(f"Rate limit hit on embedding request. Retrying in {delay}s... (attempt {attempt + 1}/{max_retries})")
                time.sleep(delay)
            except OpenAIError as e:
                raise UpstreamFailure("Embedding request failed", details=str(e)) from e

    def embed_single(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Text string to embed

        Returns:
            Embedding vector

        Raises:
            UpstreamFailure: the model was unreachable, rate limited past all retries
                or returned no vector
        """
        embeddings = self._embed_batch([text])
        if not embeddings:
            raise UpstreamFailure("Embedding model returned no vector")
        return embeddings[0]
