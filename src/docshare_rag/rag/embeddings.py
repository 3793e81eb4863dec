"""Embedding generation client for OpenAI-compatible embedding endpoints.

Defaults target a local Ollama server (``/v1/embeddings``) running
``nomic-embed-text``. When the service is down the client degrades to random
placeholder vectors instead of failing the caller.
"""

import time
from dataclasses import dataclass, field

import numpy as np
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    OpenAI,
    RateLimitError,
)

from ..config import (
    DEFAULT_EMBEDDING_API_KEY,
    DEFAULT_EMBEDDING_BASE_URL,
    DEFAULT_EMBEDDING_DIMENSIONS,
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_EMBEDDING_TIMEOUT_SECONDS,
)
from ..logger import logger
from .errors import EmbeddingServiceError

# Constants
MAX_TOKENS_PER_BATCH = 100_000
MAX_RETRIES = 3
INITIAL_RETRY_DELAY_SECONDS = 1


def estimate_tokens(text: str) -> int:
    """Estimate token count for a text string.

    Uses the approximation of 4 characters per token.
    """
    return len(text) // 4


@dataclass
class EmbeddingResult:
    """Result of embedding generation with support for degraded vectors.

    Attributes:
        embeddings: One vector per input text, in input order.
        fallback_indices: Indices whose vector is a random placeholder.
        errors: Mapping from fallback index to the service error message.
    """

    embeddings: list[list[float]] = field(default_factory=list)
    fallback_indices: list[int] = field(default_factory=list)
    errors: dict[int, str] = field(default_factory=dict)

    @property
    def all_succeeded(self) -> bool:
        """Return True if every vector came from the embedding service."""
        return len(self.fallback_indices) == 0

    @property
    def success_count(self) -> int:
        return len(self.embeddings) - len(self.fallback_indices)

    @property
    def fallback_count(self) -> int:
        return len(self.fallback_indices)


class EmbeddingClient:
    """Client for generating embeddings through the OpenAI SDK."""

    def __init__(
        self,
        api_key: str = DEFAULT_EMBEDDING_API_KEY,
        base_url: str = DEFAULT_EMBEDDING_BASE_URL,
        model: str = DEFAULT_EMBEDDING_MODEL,
        dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS,
        timeout: float = DEFAULT_EMBEDDING_TIMEOUT_SECONDS,
        seed: int | None = None,
    ):
        """Initialize the embedding client.

        Args:
            api_key: API key. Local servers such as Ollama accept any value.
            base_url: OpenAI-compatible endpoint base URL.
            model: Embedding model name.
            dimensions: Length of fallback vectors; must match the model output.
            timeout: Per-request timeout in seconds.
            seed: Optional seed for the fallback vector generator.
        """
        self.base_url = base_url
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self.fallback_count = 0
        self._rng = np.random.default_rng(seed)
        # Retries are handled here so that backoff and logging stay in one place
        self._client = OpenAI(
            api_key=api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    def fallback_vector(self) -> list[float]:
        """Return a random placeholder vector of the configured dimension."""
        return self._rng.uniform(-0.5, 0.5, self.dimensions).tolist()

    def generate_embedding(self, text: str) -> list[float]:
        """Generate embedding for a single text.

        Never raises for service failures; a placeholder vector is returned
        instead and the degradation is logged.
        """
        return self.generate_embeddings([text]).embeddings[0]

    def generate_embeddings(self, texts: list[str]) -> EmbeddingResult:
        """Generate embeddings for a batch of texts.

        Automatically batches requests to stay within token limits and
        retries rate limit, server and transport errors with exponential
        backoff. Batches that still fail get fallback vectors.

        Args:
            texts: List of texts to generate embeddings for.

        Returns:
            EmbeddingResult with one vector per text, in input order.
        """
        if not texts:
            return EmbeddingResult()

        batches = self._split_into_batches(texts)
        batch_indices = self._get_batch_indices(batches)

        result = EmbeddingResult(embeddings=[[] for _ in texts])

        for batch_idx, (batch, indices) in enumerate(zip(batches, batch_indices)):
            try:
                embeddings = self._generate_batch_with_retry(batch, batch_idx, len(batches))
            except EmbeddingServiceError as e:
                embeddings = [self.fallback_vector() for _ in batch]
                for i in indices:
                    result.fallback_indices.append(i)
                    result.errors[i] = str(e)
                self.fallback_count += len(batch)
                logger.warn(
                    "embedding service degraded, using fallback vectors",
                    batch=f"{batch_idx + 1}/{len(batches)}",
                    texts_count=len(batch),
                    model=self.model,
                    base_url=self.base_url,
                    total_fallback_count=self.fallback_count,
                    error=str(e),
                )

            for i, embedding in zip(indices, embeddings):
                result.embeddings[i] = embedding

        return result

    def _split_into_batches(self, texts: list[str]) -> list[list[str]]:
        """Split texts into batches that fit within token limits."""
        batches = []
        current_batch = []
        current_tokens = 0

        for text in texts:
            text_tokens = estimate_tokens(text)

            # If single text exceeds limit, it gets its own batch
            if text_tokens >= MAX_TOKENS_PER_BATCH:
                if current_batch:
                    batches.append(current_batch)
                    current_batch = []
                    current_tokens = 0
                batches.append([text])
                continue

            if current_tokens + text_tokens > MAX_TOKENS_PER_BATCH:
                batches.append(current_batch)
                current_batch = [text]
                current_tokens = text_tokens
            else:
                current_batch.append(text)
                current_tokens += text_tokens

        if current_batch:
            batches.append(current_batch)

        return batches

    def _get_batch_indices(self, batches: list[list[str]]) -> list[list[int]]:
        """Get the original indices for each text in each batch."""
        batch_indices = []
        current_idx = 0

        for batch in batches:
            batch_indices.append(list(range(current_idx, current_idx + len(batch))))
            current_idx += len(batch)

        return batch_indices

    def _request(self, texts: list[str]) -> list[list[float]]:
        response = self._client.embeddings.create(model=self.model, input=texts)

        embeddings: list[list[float] | None] = [None] * len(texts)
        for item in response.data:
            embeddings[item.index] = item.embedding

        if any(not e for e in embeddings):
            raise EmbeddingServiceError("Embedding service returned missing or empty vectors")
        return embeddings

    def _generate_batch_with_retry(
        self,
        texts: list[str],
        batch_idx: int,
        total_batches: int,
    ) -> list[list[float]]:
        """Generate embeddings for a batch with exponential backoff retry.

        Raises:
            EmbeddingServiceError: If the batch cannot be embedded.
        """
        last_error = None

        for attempt in range(MAX_RETRIES):
            try:
                start = time.perf_counter()
                embeddings = self._request(texts)
                duration_ms = (time.perf_counter() - start) * 1000

                logger.debug(
                    "embeddings generated",
                    batch=f"{batch_idx + 1}/{total_batches}",
                    texts_count=len(texts),
                    model=self.model,
                    duration_ms=round(duration_ms, 2),
                )
                return embeddings

            except RateLimitError as e:
                last_error = str(e)
                delay = INITIAL_RETRY_DELAY_SECONDS * (2**attempt)  # 1s, 2s, 4s
                logger.warn(
                    "rate limit hit, retrying",
                    attempt=attempt + 1,
                    max_retries=MAX_RETRIES,
                    delay_seconds=delay,
                    error=last_error,
                )
                time.sleep(delay)

            except APIStatusError as e:
                last_error = str(e)
                if e.status_code < 500:
                    # 4xx errors (except 429) should not be retried
                    raise EmbeddingServiceError(last_error) from e
                delay = INITIAL_RETRY_DELAY_SECONDS * (2**attempt)
                logger.warn(
                    "server error, retrying",
                    attempt=attempt + 1,
                    max_retries=MAX_RETRIES,
                    delay_seconds=delay,
                    status_code=e.status_code,
                    error=last_error,
                )
                time.sleep(delay)

            except APITimeoutError as e:
                # Timeouts fall back at once instead of being retried
                logger.warn("embedding request timed out", timeout_seconds=self.timeout)
                raise EmbeddingServiceError(f"Embedding request timed out: {e}") from e

            except APIConnectionError as e:
                last_error = str(e)
                delay = INITIAL_RETRY_DELAY_SECONDS * (2**attempt)
                logger.warn(
                    "embedding service unreachable, retrying",
                    attempt=attempt + 1,
                    max_retries=MAX_RETRIES,
                    delay_seconds=delay,
                    error=last_error,
                )
                time.sleep(delay)

            except EmbeddingServiceError:
                raise

            except Exception as e:
                logger.error(
                    "unexpected error during embedding generation",
                    batch=f"{batch_idx + 1}/{total_batches}",
                    error=str(e),
                )
                raise EmbeddingServiceError(str(e)) from e

        raise EmbeddingServiceError(
            f"Embedding generation failed after {MAX_RETRIES} attempts: {last_error}"
        )
