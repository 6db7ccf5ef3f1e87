"""Exception hierarchy for the embedding subsystem.

All errors raised by docvec derive from EmbeddingError so callers can catch
the whole family at once:

- InvalidInputError: empty or whitespace-only text (never retried)
- ProviderUnavailableError: no provider credential configured
- ProviderError: the provider call itself failed
    - TransientProviderError: rate limit, quota, network or timeout signals
    - InvalidProviderResponseError: malformed or empty vector payload
- DocumentNotFoundError: a referenced document does not exist
"""


class EmbeddingError(Exception):
    """Base class for all docvec errors."""


class InvalidInputError(EmbeddingError, ValueError):
    """Raised when text to embed is empty after trimming."""


class ProviderUnavailableError(EmbeddingError):
    """Raised in strict mode when no embedding provider is configured."""


class ProviderError(EmbeddingError):
    """Raised when a call to the embedding provider fails."""


class TransientProviderError(ProviderError):
    """Rate-limit, quota, network or timeout failure. Safe to retry."""


class InvalidProviderResponseError(ProviderError):
    """The provider returned something that is not a usable vector."""


class DocumentNotFoundError(EmbeddingError, LookupError):
    """Raised by a document store when a document id is unknown."""

    def __init__(self, document_id: str):
        super().__init__(f"Document {document_id} does not exist")
        self.document_id = document_id
