"""Document store boundary consumed by the migration controller.

The store persists documents and their vectors. docvec only reads document
text fields and writes one vector plus model tag per document; everything
else about persistence belongs to the host platform.

- DocumentStore: Protocol the host implements over its database
- InMemoryDocumentStore: Dict-backed implementation for tests and examples
"""

import asyncio
import logging
from collections import Counter
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Protocol

from docvec.core.errors import DocumentNotFoundError
from docvec.core.models import DEFAULT_FORMAT_VERSION, DocumentText, EmbeddingVector, ModelCount

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    """Protocol for the persistence collaborator.

    ``save_vector`` must be an idempotent upsert that replaces any previous
    vector for the document in one write.
    """

    async def fetch_document_text(self, document_id: str) -> DocumentText:
        """Return the text fields of a document.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """
        ...  # pragma: no cover

    async def list_vectors_by_model(self) -> list[ModelCount]:
        """Return the number of stored vectors per model tag."""
        ...  # pragma: no cover

    async def list_stale_vectors(self, current_model: str) -> list[str]:
        """Return ids of documents whose vector tag differs from current_model."""
        ...  # pragma: no cover

    async def list_vector_document_ids(self) -> list[str]:
        """Return ids of every document that has a stored vector."""
        ...  # pragma: no cover

    async def save_vector(
        self,
        document_id: str,
        values: Sequence[float],
        model_tag: str,
        format_version: str = DEFAULT_FORMAT_VERSION,
    ) -> None:
        """Upsert the vector and model tag for a document."""
        ...  # pragma: no cover


class InMemoryDocumentStore:
    """Dict-backed DocumentStore.

    Example:
        store = InMemoryDocumentStore()
        store.add_document("doc-1", DocumentText(title="Calculus I"))
        await store.save_vector("doc-1", vector, "text-embedding-004")
    """

    def __init__(self) -> None:
        self._documents: dict[str, DocumentText] = {}
        self._vectors: dict[str, EmbeddingVector] = {}
        self._lock = asyncio.Lock()

    def add_document(self, document_id: str, text: DocumentText) -> None:
        self._documents[document_id] = text

    def remove_document(self, document_id: str) -> None:
        self._documents.pop(document_id, None)

    def get_vector(self, document_id: str) -> EmbeddingVector | None:
        return self._vectors.get(document_id)

    def vectors(self) -> dict[str, EmbeddingVector]:
        return dict(self._vectors)

    async def fetch_document_text(self, document_id: str) -> DocumentText:
        try:
            return self._documents[document_id]
        except KeyError:
            raise DocumentNotFoundError(document_id) from None

    async def list_vectors_by_model(self) -> list[ModelCount]:
        async with self._lock:
            counts = Counter(v.model_tag for v in self._vectors.values())
        return [ModelCount(model_tag=tag, count=count) for tag, count in sorted(counts.items())]

    async def list_stale_vectors(self, current_model: str) -> list[str]:
        async with self._lock:
            return [doc_id for doc_id, v in self._vectors.items() if v.model_tag != current_model]

    async def list_vector_document_ids(self) -> list[str]:
        async with self._lock:
            return list(self._vectors.keys())

    async def save_vector(
        self,
        document_id: str,
        values: Sequence[float],
        model_tag: str,
        format_version: str = DEFAULT_FORMAT_VERSION,
    ) -> None:
        record = EmbeddingVector(
            document_id=document_id,
            values=[float(x) for x in values],
            model_tag=model_tag,
            format_version=format_version,
            updated_at=datetime.now(timezone.utc),
        )
        async with self._lock:
            self._vectors[document_id] = record
        logger.debug("Saved vector for %s (model=%s)", document_id, model_tag)
