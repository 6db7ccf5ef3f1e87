"""EmbeddingService: public entry point for turning text into vectors.

The service layers input validation, truncation, caching, retries, metrics
and the degraded placeholder fallback on top of a single EmbeddingProvider.

Two modes:
- Lenient (generate): never fails on provider problems. Unconfigured or
  failing providers yield a deterministic placeholder vector.
- Strict (generate_strict): surfaces ProviderUnavailableError and provider
  errors so callers can refuse to store a placeholder.

Both modes raise InvalidInputError for empty text.

Example:
    from docvec.clients import Settings

    service = EmbeddingService.from_settings(Settings())
    vector = await service.generate("Introduction to linear algebra")
    vectors = await service.generate_batch(texts, concurrency=5)
    print(service.get_metrics())
"""

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import numpy as np

from docvec.clients.embedding import create_embedding_client
from docvec.clients.settings import Settings
from docvec.core.cache import EmbeddingCache
from docvec.core.embeddings import (
    DEFAULT_DIMENSION,
    EmbeddingProvider,
    LiteLLMEmbeddingProvider,
    call_with_retry,
    content_hash,
    placeholder_embedding,
    validate_embedding,
)
from docvec.core.errors import (
    EmbeddingError,
    InvalidInputError,
    ProviderError,
    ProviderUnavailableError,
)
from docvec.core.models import EmbeddingMetrics

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Validated, cached, retrying text-to-vector generation.

    Every generate call increments ``total_requests`` exactly once, and so
    does every item of a batch, configured or not. Cache hits return
    immediately without touching the provider or the latency average.
    Placeholder vectors are never cached, so a provider that comes back is
    used on the next call.

    Returned arrays are always fresh, writable copies; mutating one never
    touches the cache.
    """

    def __init__(
        self,
        provider: EmbeddingProvider | None,
        model_name: str = "text-embedding-004",
        dimension: int = DEFAULT_DIMENSION,
        max_text_length: int = 8000,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        cache_size: int = 1000,
        batch_delay: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
    ):
        """Initialize EmbeddingService.

        Args:
            provider: Provider adapter, or None for degraded (placeholder) mode.
            model_name: Model tag stamped on new vectors and used in cache keys.
            dimension: Expected vector length; provider output is checked against it.
            max_text_length: Character ceiling; longer text is truncated before
                hashing, caching and sending.
            max_retries: Attempts per provider call.
            retry_base_delay: Seconds per backoff unit (1, 2, 4, ... units).
            cache_size: Capacity of the embedding cache.
            batch_delay: Seconds to wait between windows in generate_batch().
            sleep: Awaitable sleep used for backoff and batch delays.
            clock: Time source in seconds for latency measurement.
        """
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        if max_text_length <= 0:
            raise ValueError("max_text_length must be positive")

        self._provider = provider
        self.model_name = model_name
        self.dimension = dimension
        self.max_text_length = max_text_length
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.batch_delay = batch_delay
        self._sleep = sleep
        self._clock = clock

        self._cache = EmbeddingCache(max_size=cache_size)
        self._metrics = EmbeddingMetrics()
        self._metrics_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings | None = None, client: Any = None) -> "EmbeddingService":
        """Build a service from Settings.

        Without ``gemini_api_key`` the service runs in degraded mode. Langfuse
        tracing is enabled when both Langfuse keys are present.

        Args:
            settings: Settings to use. If None, loads from environment.
            client: Pre-configured litellm client. If None, one is created.
        """
        if settings is None:
            settings = Settings()

        provider: EmbeddingProvider | None = None
        if settings.gemini_api_key:
            if client is None:
                client = create_embedding_client(
                    settings,
                    enable_langfuse=bool(settings.langfuse_public_key and settings.langfuse_secret_key),
                )
            provider = LiteLLMEmbeddingProvider(
                client=client,
                model=f"{settings.embedding_provider}/{settings.embedding_model}",
                api_key=settings.gemini_api_key,
                timeout=settings.embedding_request_timeout,
            )
        else:
            logger.warning("GEMINI_API_KEY not configured, embeddings will use placeholder vectors")

        return cls(
            provider=provider,
            model_name=settings.embedding_model,
            dimension=settings.embedding_dimension,
            max_text_length=settings.embedding_max_text_length,
            max_retries=settings.embedding_max_retries,
            retry_base_delay=settings.embedding_retry_base_delay,
            cache_size=settings.embedding_cache_size,
            batch_delay=settings.embedding_batch_delay,
        )

    @property
    def is_configured(self) -> bool:
        """True when a real provider is available."""
        return self._provider is not None

    async def generate(self, text: str) -> np.ndarray:
        """Return a unit-norm vector for text, falling back to a placeholder.

        Raises:
            InvalidInputError: If text is empty after trimming.
        """
        return await self._generate(text, strict=False)

    async def generate_strict(self, text: str) -> np.ndarray:
        """Return a real provider vector for text, never a placeholder.

        Raises:
            InvalidInputError: If text is empty after trimming.
            ProviderUnavailableError: If no provider is configured.
            ProviderError: If the provider call fails after retries.
        """
        return await self._generate(text, strict=True)

    async def generate_batch(self, texts: Sequence[str], concurrency: int = 5) -> list[np.ndarray]:
        """Generate vectors for many texts, preserving input order.

        Texts are processed in windows of ``concurrency`` items run
        concurrently, with ``batch_delay`` seconds between windows. A failing
        item degrades to its placeholder instead of aborting the batch.
        Without a provider the items run one by one with no delay, and each
        still counts as one request in the metrics.

        Args:
            texts: Texts to embed.
            concurrency: Window size (>= 1).

        Returns:
            One vector per input text, in input order.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        if not self.is_configured:
            return [await self._generate_or_placeholder(text) for text in texts]

        results: list[np.ndarray] = []
        for start in range(0, len(texts), concurrency):
            window = texts[start : start + concurrency]
            vectors = await asyncio.gather(*(self._generate_or_placeholder(text) for text in window))
            results.extend(vectors)

            if start + concurrency < len(texts):
                await self._sleep(self.batch_delay)

        return results

    def get_metrics(self) -> EmbeddingMetrics:
        """Return a copy of the current counters."""
        with self._metrics_lock:
            return self._metrics.model_copy()

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.debug("Cleared embedding cache for model %s", self.model_name)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    async def _generate(self, text: str, strict: bool) -> np.ndarray:
        start = self._clock()
        self._bump(total_requests=1)

        if not text or not text.strip():
            self._bump(failed_requests=1)
            raise InvalidInputError("Text cannot be empty")

        truncated = self._truncate(text)
        cache_key = f"{self.model_name}:{content_hash(truncated)}"

        cached = self._cache.get(cache_key)
        if cached is not None:
            self._bump(cache_hits=1)
            return cached.copy()

        if self._provider is None:
            if strict:
                self._bump(failed_requests=1)
                raise ProviderUnavailableError(
                    "Cannot generate real embedding: no embedding provider configured"
                )
            return placeholder_embedding(truncated, self.dimension)

        provider = self._provider
        try:
            raw = await call_with_retry(
                lambda: provider.embed(truncated),
                max_retries=self.max_retries,
                base_delay=self.retry_base_delay,
                sleep=self._sleep,
            )
            vector = validate_embedding(raw, self.dimension)
        except Exception as e:
            self._bump(failed_requests=1)
            if strict:
                if isinstance(e, EmbeddingError):
                    raise
                raise ProviderError(f"Embedding provider failed: {e}") from e
            logger.warning("Embedding generation failed, using placeholder vector: %s", e)
            return placeholder_embedding(truncated, self.dimension)

        self._cache.put(cache_key, vector)
        self._record_success((self._clock() - start) * 1000.0)
        return vector

    async def _generate_or_placeholder(self, text: str) -> np.ndarray:
        try:
            return await self.generate(text)
        except EmbeddingError as e:
            logger.debug("Batch item degraded to placeholder: %s", e)
            return self._placeholder(text)

    def _placeholder(self, text: str) -> np.ndarray:
        return placeholder_embedding(self._truncate(text), self.dimension)

    def _truncate(self, text: str) -> str:
        if len(text) > self.max_text_length:
            return text[: self.max_text_length]
        return text

    def _bump(self, **increments: int) -> None:
        with self._metrics_lock:
            for name, amount in increments.items():
                setattr(self._metrics, name, getattr(self._metrics, name) + amount)

    def _record_success(self, latency_ms: float) -> None:
        with self._metrics_lock:
            m = self._metrics
            m.successful_requests += 1
            n = m.successful_requests
            m.average_latency_ms = (m.average_latency_ms * (n - 1) + max(latency_ms, 0.0)) / n
