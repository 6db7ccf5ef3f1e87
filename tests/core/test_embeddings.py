"""Tests for provider adapter, retry policy and placeholder vectors."""

import asyncio
from unittest.mock import AsyncMock, Mock

import numpy as np
import pytest

from docvec.core.embeddings import (
    FakeEmbeddingProvider,
    LiteLLMEmbeddingProvider,
    call_with_retry,
    content_hash,
    is_transient_error,
    normalize_vector,
    placeholder_embedding,
    text_hash,
    validate_embedding,
)
from docvec.core.errors import (
    InvalidProviderResponseError,
    ProviderError,
    TransientProviderError,
)


class RecordingSleep:
    """Awaitable sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class TestTextHash:
    """Tests for the 32-bit polynomial string hash."""

    def test_known_values(self):
        """Test hash matches h = h * 31 + unit over UTF-16 code units."""
        assert text_hash("") == 0
        assert text_hash("a") == 97
        assert text_hash("ab") == 97 * 31 + 98
        assert text_hash("hello") == 99162322

    def test_wraps_to_32_bit_and_is_non_negative(self):
        """Test long strings stay inside the 32-bit range."""
        h = text_hash("x" * 10_000)
        assert 0 <= h <= 2**31

    def test_non_bmp_characters_use_surrogate_pairs(self):
        """Test characters outside the BMP hash as two UTF-16 code units."""
        high, low = 0xD83D, 0xDE00  # U+1F600
        expected = (high * 31 + low) & 0xFFFFFFFF
        assert text_hash("\U0001F600") == expected


class TestPlaceholderEmbedding:
    """Tests for deterministic degraded-mode vectors."""

    def test_deterministic(self):
        """Test the same text always produces byte-identical vectors."""
        first = placeholder_embedding("hello", 768)
        second = placeholder_embedding("hello", 768)
        assert first.tobytes() == second.tobytes()

    def test_shape_dtype_and_unit_norm(self):
        """Test placeholder vectors have the requested length and unit norm."""
        vector = placeholder_embedding("some document", 768)
        assert vector.shape == (768,)
        assert vector.dtype == np.float32
        assert np.linalg.norm(vector) == pytest.approx(1.0, abs=1e-5)

    def test_matches_formula(self):
        """Test components follow sin((hash + i*7919) mod 1e6) * 0.5 + 0.5."""
        dimension = 16
        h = text_hash("formula")
        raw = np.array(
            [(np.sin((h + i * 7919) % 1_000_000) * 0.5 + 0.5) / 10 for i in range(dimension)]
        )
        expected = raw / np.linalg.norm(raw)
        np.testing.assert_allclose(placeholder_embedding("formula", dimension), expected, rtol=1e-6)

    def test_different_texts_differ(self):
        """Test different texts produce different placeholders."""
        a = placeholder_embedding("alpha", 64)
        b = placeholder_embedding("beta", 64)
        assert not np.array_equal(a, b)

    def test_invalid_dimension(self):
        """Test non-positive dimension raises ValueError."""
        with pytest.raises(ValueError, match="dimension"):
            placeholder_embedding("x", 0)


class TestVectorHelpers:
    """Tests for normalization, hashing and payload validation."""

    def test_normalize_vector(self):
        """Test normalize_vector returns a unit float32 vector."""
        vector = normalize_vector([3.0, 4.0])
        np.testing.assert_allclose(vector, [0.6, 0.8], rtol=1e-6)
        assert vector.dtype == np.float32

    def test_normalize_zero_vector_unchanged(self):
        """Test zero vectors are returned as-is."""
        np.testing.assert_array_equal(normalize_vector([0.0, 0.0]), [0.0, 0.0])

    def test_content_hash_is_stable_hex(self):
        """Test content_hash is deterministic and distinguishes texts."""
        assert content_hash("abc") == content_hash("abc")
        assert content_hash("abc") != content_hash("abd")
        int(content_hash("abc"), 16)

    def test_validate_embedding_normalizes(self):
        """Test valid payloads are returned unit-normalized."""
        vector = validate_embedding([0.0, 2.0, 0.0], dimension=3)
        np.testing.assert_allclose(vector, [0.0, 1.0, 0.0])

    @pytest.mark.parametrize(
        "payload",
        [None, [], "not a vector", [[1.0, 2.0]], [1.0, float("nan")], [0.0, 0.0], ["a", "b"]],
    )
    def test_validate_embedding_rejects_malformed(self, payload):
        """Test malformed payloads raise InvalidProviderResponseError."""
        with pytest.raises(InvalidProviderResponseError):
            validate_embedding(payload)

    def test_validate_embedding_dimension_mismatch(self):
        """Test payloads of the wrong length are rejected."""
        with pytest.raises(InvalidProviderResponseError, match="dimension mismatch"):
            validate_embedding([1.0, 2.0], dimension=3)


class TestTransientClassification:
    """Tests for is_transient_error()."""

    @pytest.mark.parametrize(
        "error",
        [
            TransientProviderError("boom"),
            Exception("HTTP 429 Too Many Requests"),
            Exception("Rate limit exceeded"),
            Exception("Quota exhausted for project"),
            Exception("network unreachable"),
            Exception("read ECONNRESET"),
            Exception("connect ETIMEDOUT"),
            ConnectionResetError("reset by peer"),
            TimeoutError(),
        ],
    )
    def test_transient_errors(self, error):
        """Test rate-limit, quota, network and timeout signals are transient."""
        assert is_transient_error(error)

    @pytest.mark.parametrize(
        "error",
        [
            ProviderError("invalid api key"),
            ValueError("bad request"),
            InvalidProviderResponseError("empty vector"),
        ],
    )
    def test_non_transient_errors(self, error):
        """Test other errors are not retried."""
        assert not is_transient_error(error)


class TestCallWithRetry:
    """Tests for exponential backoff retry."""

    @pytest.mark.asyncio
    async def test_succeeds_first_try_without_sleeping(self):
        """Test a successful first attempt does not sleep."""
        sleep = RecordingSleep()
        func = AsyncMock(return_value="ok")

        result = await call_with_retry(func, max_retries=3, sleep=sleep)

        assert result == "ok"
        assert func.call_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_two_transient_failures_then_success(self):
        """Test backoff waits 1 then 2 units before the successful third attempt."""
        sleep = RecordingSleep()
        func = AsyncMock(
            side_effect=[TransientProviderError("429"), TransientProviderError("429"), [1.0, 0.0]]
        )

        result = await call_with_retry(func, max_retries=3, base_delay=1.0, sleep=sleep)

        assert result == [1.0, 0.0]
        assert func.call_count == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_base_delay_scales_schedule(self):
        """Test base_delay is the size of one backoff unit."""
        sleep = RecordingSleep()
        func = AsyncMock(side_effect=[TransientProviderError("x")] * 3 + ["ok"])

        await call_with_retry(func, max_retries=4, base_delay=0.5, sleep=sleep)

        assert sleep.delays == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self):
        """Test the last error is raised once attempts are exhausted."""
        sleep = RecordingSleep()
        last = TransientProviderError("third")
        func = AsyncMock(side_effect=[TransientProviderError("first"), TransientProviderError("second"), last])

        with pytest.raises(TransientProviderError) as exc_info:
            await call_with_retry(func, max_retries=3, sleep=sleep)

        assert exc_info.value is last
        assert func.call_count == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_transient_error_aborts_immediately(self):
        """Test non-transient errors are not retried."""
        sleep = RecordingSleep()
        func = AsyncMock(side_effect=ProviderError("invalid api key"))

        with pytest.raises(ProviderError):
            await call_with_retry(func, max_retries=3, sleep=sleep)

        assert func.call_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_invalid_max_retries(self):
        """Test max_retries below 1 raises ValueError."""
        with pytest.raises(ValueError, match="max_retries"):
            await call_with_retry(AsyncMock(), max_retries=0)


class TestLiteLLMEmbeddingProvider:
    """Tests for the litellm-backed provider adapter."""

    @pytest.fixture
    def mock_client(self):
        client = Mock()
        client.aembedding = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_embed_dict_response(self, mock_client):
        """Test the vector is extracted from a dict-shaped response."""
        mock_client.aembedding.return_value = {"data": [{"embedding": [0.1, 0.2, 0.3]}]}
        provider = LiteLLMEmbeddingProvider(
            client=mock_client, model="gemini/text-embedding-004", api_key="gm-test", timeout=5.0
        )

        values = await provider.embed("hello")

        assert list(values) == [0.1, 0.2, 0.3]
        mock_client.aembedding.assert_awaited_once_with(
            model="gemini/text-embedding-004", input=["hello"], timeout=5.0, api_key="gm-test"
        )

    @pytest.mark.asyncio
    async def test_embed_object_response(self, mock_client):
        """Test the vector is extracted from an object-shaped response."""
        item = Mock()
        item.embedding = [1.0, 0.0]
        response = Mock()
        response.data = [item]
        mock_client.aembedding.return_value = response

        provider = LiteLLMEmbeddingProvider(client=mock_client, model="gemini/text-embedding-004")

        assert list(await provider.embed("hello")) == [1.0, 0.0]
        assert "api_key" not in mock_client.aembedding.call_args.kwargs

    @pytest.mark.asyncio
    async def test_embed_empty_data(self, mock_client):
        """Test a response without data raises InvalidProviderResponseError."""
        mock_client.aembedding.return_value = {"data": []}
        provider = LiteLLMEmbeddingProvider(client=mock_client, model="m")

        with pytest.raises(InvalidProviderResponseError):
            await provider.embed("hello")

    @pytest.mark.asyncio
    async def test_rate_limit_message_maps_to_transient(self, mock_client):
        """Test rate-limit failures become TransientProviderError."""
        mock_client.aembedding.side_effect = Exception("429 RESOURCE_EXHAUSTED: quota exceeded")
        provider = LiteLLMEmbeddingProvider(client=mock_client, model="m")

        with pytest.raises(TransientProviderError):
            await provider.embed("hello")

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_transient(self, mock_client):
        """Test connection resets become TransientProviderError."""
        mock_client.aembedding.side_effect = ConnectionResetError("reset")
        provider = LiteLLMEmbeddingProvider(client=mock_client, model="m")

        with pytest.raises(TransientProviderError):
            await provider.embed("hello")

    @pytest.mark.asyncio
    async def test_other_errors_map_to_provider_error(self, mock_client):
        """Test non-transient failures become plain ProviderError."""
        mock_client.aembedding.side_effect = Exception("API key not valid")
        provider = LiteLLMEmbeddingProvider(client=mock_client, model="m")

        with pytest.raises(ProviderError) as exc_info:
            await provider.embed("hello")

        assert not isinstance(exc_info.value, TransientProviderError)

    @pytest.mark.asyncio
    async def test_stuck_call_times_out(self, mock_client):
        """Test a call exceeding the timeout becomes TransientProviderError."""

        async def never_returns(**kwargs):
            await asyncio.sleep(10)

        mock_client.aembedding.side_effect = never_returns
        provider = LiteLLMEmbeddingProvider(client=mock_client, model="m", timeout=0.01)

        with pytest.raises(TransientProviderError):
            await provider.embed("hello")

    def test_invalid_timeout(self, mock_client):
        """Test non-positive timeout raises ValueError."""
        with pytest.raises(ValueError, match="timeout"):
            LiteLLMEmbeddingProvider(client=mock_client, model="m", timeout=0)


class TestFakeEmbeddingProvider:
    """Tests for the deterministic test double."""

    @pytest.mark.asyncio
    async def test_deterministic_and_records_calls(self):
        """Test same text gives same vector and calls are recorded."""
        provider = FakeEmbeddingProvider(dimension=8)

        first = await provider.embed("a")
        second = await provider.embed("a")
        other = await provider.embed("b")

        assert first == second
        assert first != other
        assert len(first) == 8
        assert provider.calls == ["a", "a", "b"]

    @pytest.mark.asyncio
    async def test_queued_failures_raised_in_order(self):
        """Test queued failures are raised before vectors are returned."""
        provider = FakeEmbeddingProvider(
            dimension=4, failures=[TransientProviderError("1"), ProviderError("2")]
        )

        with pytest.raises(TransientProviderError):
            await provider.embed("x")
        with pytest.raises(ProviderError):
            await provider.embed("x")
        assert len(await provider.embed("x")) == 4
