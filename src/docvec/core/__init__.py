"""
docvec.core: Embedding lifecycle and vector-similarity primitives.

This module provides the building blocks consumed by the host platform:
generation (EmbeddingService), model migration
(EmbeddingMigrationController), ranking (rank, find_duplicates) and caching.
"""

from docvec.core.cache import EmbeddingCache, ResultCache, build_search_cache_key
from docvec.core.embeddings import (
    EmbeddingProvider,
    FakeEmbeddingProvider,
    LiteLLMEmbeddingProvider,
    call_with_retry,
    placeholder_embedding,
)
from docvec.core.errors import (
    DocumentNotFoundError,
    EmbeddingError,
    InvalidInputError,
    InvalidProviderResponseError,
    ProviderError,
    ProviderUnavailableError,
    TransientProviderError,
)
from docvec.core.migration import EmbeddingMigrationController, SweepState
from docvec.core.models import (
    ConsistencyStatus,
    DocumentText,
    EmbeddingMetrics,
    EmbeddingVector,
    HybridResult,
    ModelCount,
    ProgressSnapshot,
    RankedResult,
    RegenerationProgress,
    RegenerationStartResult,
    StartupOutcome,
)
from docvec.core.ranking import combine_hybrid, cosine_similarity, find_duplicates, rank
from docvec.core.service import EmbeddingService
from docvec.core.store import DocumentStore, InMemoryDocumentStore

__all__ = [
    "build_search_cache_key",
    "call_with_retry",
    "combine_hybrid",
    "ConsistencyStatus",
    "cosine_similarity",
    "DocumentNotFoundError",
    "DocumentStore",
    "DocumentText",
    "EmbeddingCache",
    "EmbeddingError",
    "EmbeddingMetrics",
    "EmbeddingMigrationController",
    "EmbeddingProvider",
    "EmbeddingService",
    "EmbeddingVector",
    "FakeEmbeddingProvider",
    "find_duplicates",
    "HybridResult",
    "InMemoryDocumentStore",
    "InvalidInputError",
    "InvalidProviderResponseError",
    "LiteLLMEmbeddingProvider",
    "ModelCount",
    "placeholder_embedding",
    "ProgressSnapshot",
    "ProviderError",
    "ProviderUnavailableError",
    "rank",
    "RankedResult",
    "RegenerationProgress",
    "RegenerationStartResult",
    "ResultCache",
    "StartupOutcome",
    "SweepState",
    "TransientProviderError",
]
