"""
docvec: Embedding lifecycle and vector-similarity core for document platforms.

This package turns document text into vectors through an unreliable external
provider, keeps stored vectors consistent when the embedding model changes,
and ranks documents by vector similarity:
- docvec.clients: Configuration and provider client factory
- docvec.core: Generation, migration, ranking and caching primitives
"""

from docvec.core import (
    EmbeddingMigrationController,
    EmbeddingService,
    ResultCache,
    find_duplicates,
    rank,
)

__all__ = [
    "EmbeddingMigrationController",
    "EmbeddingService",
    "ResultCache",
    "find_duplicates",
    "rank",
]

__version__ = "0.1.0"
