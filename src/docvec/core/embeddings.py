"""Embedding provider adapter, retry policy and degraded-mode vectors.

This module owns the single network boundary of the subsystem: one call to an
external text-embedding API. Everything that makes that call survivable lives
here too:

- EmbeddingProvider: Protocol for "text in, vector out" providers
- LiteLLMEmbeddingProvider: Production adapter over litellm.aembedding()
- FakeEmbeddingProvider: Test double producing deterministic vectors
- call_with_retry(): Exponential backoff for transient provider failures
- placeholder_embedding(): Deterministic, non-semantic fallback vector

Retry classification:
    Only rate-limit/quota and network/timeout signals are retried. Anything
    else (bad request, auth failure, malformed payload) aborts immediately.

Example:
    from docvec.clients import create_embedding_client

    client = create_embedding_client(enable_langfuse=False)
    provider = LiteLLMEmbeddingProvider(client, model="gemini/text-embedding-004")
    values = await call_with_retry(lambda: provider.embed("hello"), max_retries=3)
"""

import asyncio
import hashlib
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol, TypeVar

import numpy as np
from litellm.exceptions import APIConnectionError, RateLimitError, Timeout

from docvec.core.errors import (
    InvalidProviderResponseError,
    ProviderError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DIMENSION = 768

# Lower-cased substrings that mark an error message as transient
TRANSIENT_MARKERS = (
    "429",
    "rate limit",
    "quota",
    "network",
    "econnreset",
    "etimedout",
    "timeout",
    "timed out",
    "connection reset",
)


# ============ HASHING AND VECTOR HELPERS ============


def text_hash(text: str) -> int:
    """Stable 32-bit polynomial hash of a string.

    Computes ``h = h * 31 + unit`` over the UTF-16 code units of the text,
    wrapping to the signed 32-bit range after each step, and returns the
    absolute value. The result is identical across processes and platforms.

    Args:
        text: Text to hash.

    Returns:
        Non-negative integer in [0, 2**31].
    """
    h = 0
    data = text.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def content_hash(text: str) -> str:
    """Collision-resistant hex digest used for cache keys."""
    hasher = hashlib.blake2b()
    hasher.update(text.encode("utf-8"))
    return hasher.hexdigest()


def normalize_vector(vector: Sequence[float] | np.ndarray) -> np.ndarray:
    """L2-normalize a vector to unit length.

    Zero vectors are returned unchanged (there is no direction to keep).

    Returns:
        1-D float32 array.
    """
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if norm == 0:
        return arr.astype(np.float32)
    return (arr / norm).astype(np.float32)


def placeholder_embedding(text: str, dimension: int = DEFAULT_DIMENSION) -> np.ndarray:
    """Deterministic placeholder vector for degraded mode.

    This is NOT a semantic embedding. It keeps dimensionality and similarity
    math valid when the real provider is unconfigured or unreachable.

    Component i is ``(sin((hash + i * 7919) mod 1_000_000) * 0.5 + 0.5) / 10``
    before L2 normalization, where ``hash = text_hash(text)``.

    Args:
        text: Input text (already truncated by the caller if needed).
        dimension: Vector length. Default: 768.

    Returns:
        Unit-norm float32 array of shape (dimension,).
    """
    if dimension <= 0:
        raise ValueError("dimension must be positive")

    h = text_hash(text)
    seeds = (h + np.arange(dimension, dtype=np.int64) * 7919) % 1_000_000
    raw = (np.sin(seeds.astype(np.float64)) * 0.5 + 0.5) / 10.0
    return normalize_vector(raw)


def validate_embedding(values: Any, dimension: int | None = None) -> np.ndarray:
    """Validate a provider payload and return it unit-normalized.

    Args:
        values: Whatever the provider returned as the vector.
        dimension: Expected length, or None to accept any non-empty length.

    Returns:
        Unit-norm float32 array.

    Raises:
        InvalidProviderResponseError: If the payload is not a non-empty, 1-D,
            finite numeric array of the expected length with non-zero norm.
    """
    if values is None or isinstance(values, (str, bytes)):
        raise InvalidProviderResponseError("Embedding response is not a numeric array")

    try:
        arr = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidProviderResponseError(f"Embedding response is not numeric: {e}") from e

    if arr.ndim != 1 or arr.size == 0:
        raise InvalidProviderResponseError(
            f"Embedding response must be a non-empty 1-D array, got shape {arr.shape}"
        )
    if dimension is not None and arr.size != dimension:
        raise InvalidProviderResponseError(
            f"Embedding dimension mismatch: expected {dimension}, got {arr.size}"
        )
    if not np.all(np.isfinite(arr)):
        raise InvalidProviderResponseError("Embedding response contains non-finite values")
    if np.linalg.norm(arr) == 0:
        raise InvalidProviderResponseError("Embedding response is a zero vector")

    return normalize_vector(arr)


# ============ RETRY POLICY ============


def is_transient_error(error: BaseException) -> bool:
    """Return True for rate-limit, quota, network and timeout failures."""
    if isinstance(
        error,
        (TransientProviderError, RateLimitError, Timeout, APIConnectionError, TimeoutError, ConnectionError),
    ):
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Call an async function with exponential backoff on transient errors.

    Attempt k (1-based) that fails transiently waits ``base_delay * 2**(k-1)``
    before attempt k+1: 1, 2, 4, ... units.

    Args:
        func: Zero-argument coroutine factory; called once per attempt.
        max_retries: Maximum number of attempts (>= 1).
        base_delay: Seconds per backoff unit.
        sleep: Awaitable sleep function (injectable for tests).

    Returns:
        The first successful result.

    Raises:
        The last error once attempts are exhausted, or the first
        non-transient error immediately.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be >= 1")

    for attempt in range(1, max_retries + 1):
        try:
            return await func()
        except Exception as e:
            if not is_transient_error(e):
                logger.debug("Non-transient provider error, not retrying: %s", e)
                raise
            if attempt >= max_retries:
                logger.error("Max retries (%d) exceeded for transient provider error", max_retries)
                raise
            wait_time = base_delay * 2 ** (attempt - 1)
            logger.warning(
                "Transient provider error (attempt %d/%d), retrying in %.1fs: %s",
                attempt,
                max_retries,
                wait_time,
                e,
            )
            await sleep(wait_time)

    raise AssertionError("unreachable")  # pragma: no cover


# ============ PROVIDERS ============


class EmbeddingProvider(Protocol):
    """Protocol for a single text-to-vector call against an external API.

    Implementations make exactly one attempt per call. Retries, caching and
    placeholder fallback are layered on top by EmbeddingService.
    """

    async def embed(self, text: str) -> Sequence[float]:
        """Return the raw embedding for one text.

        Raises:
            TransientProviderError: For rate-limit/network/timeout failures.
            InvalidProviderResponseError: For malformed payloads.
            ProviderError: For any other provider failure.
        """
        ...  # pragma: no cover


class LiteLLMEmbeddingProvider:
    """Embedding provider backed by litellm.aembedding().

    litellm routes ``"<provider>/<model>"`` names to the right API, so the
    same adapter serves Gemini, OpenAI or Azure deployments.

    Every call is bounded by ``timeout`` so a stuck network call cannot stall
    a batch indefinitely.

    Example:
        client = create_embedding_client(enable_langfuse=False)
        provider = LiteLLMEmbeddingProvider(
            client=client,
            model="gemini/text-embedding-004",
            api_key=settings.gemini_api_key,
        )
        values = await provider.embed("Quarterly revenue report")
    """

    def __init__(
        self,
        client: Any,
        model: str,
        api_key: str | None = None,
        timeout: float = 30.0,
    ):
        """Initialize LiteLLMEmbeddingProvider.

        Args:
            client: litellm module (or compatible object exposing aembedding()).
            model: litellm model name including provider prefix.
            api_key: Provider credential. None lets litellm read the environment.
            timeout: Seconds before a single call is abandoned.
        """
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        self.client = client
        self.model = model
        self.api_key = api_key
        self.timeout = timeout

    async def embed(self, text: str) -> Sequence[float]:
        kwargs: dict[str, Any] = {"model": self.model, "input": [text], "timeout": self.timeout}
        if self.api_key:
            kwargs["api_key"] = self.api_key

        logger.debug("Calling embedding API: model=%s, chars=%d", self.model, len(text))

        try:
            response = await asyncio.wait_for(self.client.aembedding(**kwargs), timeout=self.timeout)
        except (RateLimitError, Timeout, APIConnectionError, TimeoutError, ConnectionError) as e:
            raise TransientProviderError(f"Embedding request failed: {e}") from e
        except Exception as e:
            if is_transient_error(e):
                raise TransientProviderError(f"Embedding request failed: {e}") from e
            raise ProviderError(f"Embedding request failed: {e}") from e

        return self._extract_values(response)

    @staticmethod
    def _extract_values(response: Any) -> Sequence[float]:
        """Pull the first vector out of an embedding response."""
        data = response.get("data") if isinstance(response, dict) else getattr(response, "data", None)
        if not data:
            raise InvalidProviderResponseError("Embedding response has no data")

        first = data[0]
        values = first.get("embedding") if isinstance(first, dict) else getattr(first, "embedding", None)
        if values is None:
            raise InvalidProviderResponseError("Embedding response item has no embedding")
        return values


class FakeEmbeddingProvider:
    """Test double for EmbeddingProvider that produces deterministic vectors.

    Vectors are derived from a SHA256 of the text, so the same text always
    yields the same vector and different texts yield different ones. Queued
    failures are raised (in order) before any vector is returned, which makes
    retry behaviour easy to script.

    Example:
        provider = FakeEmbeddingProvider(dimension=8)
        provider.failures = [TransientProviderError("429"), TransientProviderError("429")]
        # Third call succeeds
    """

    def __init__(self, dimension: int = DEFAULT_DIMENSION, failures: list[Exception] | None = None):
        self.dimension = dimension
        self.failures: list[Exception] = list(failures or [])
        self.calls: list[str] = []

    async def embed(self, text: str) -> Sequence[float]:
        self.calls.append(text)
        if self.failures:
            raise self.failures.pop(0)

        digest = hashlib.sha256(text.encode("utf-8")).digest()
        rng = np.random.default_rng(seed=int.from_bytes(digest[:8], byteorder="big"))
        return rng.uniform(-1.0, 1.0, size=self.dimension).tolist()
