"""Provider client for embedding calls, traced through Langfuse when enabled."""

import logging
from typing import Any

import litellm
from langfuse import Langfuse  # type: ignore[import-untyped]

from docvec.clients.settings import Settings

logger = logging.getLogger(__name__)


def _attach_langfuse(settings: Settings) -> None:
    missing = [
        env_name
        for env_name, value in (
            ("LANGFUSE_PUBLIC_KEY", settings.langfuse_public_key),
            ("LANGFUSE_SECRET_KEY", settings.langfuse_secret_key),
        )
        if not value
    ]
    if missing:
        raise ValueError(f"Embedding tracing needs {', '.join(missing)} to be set")

    try:
        Langfuse(
            public_key=settings.langfuse_public_key,
            secret_key=settings.langfuse_secret_key,
            host=settings.langfuse_host,
        ).flush()
    except Exception as e:
        logger.error("Langfuse unreachable at %s: %s", settings.langfuse_host, e)
        raise ValueError(f"Langfuse initialization failed: {e}") from e

    # litellm builds its own Langfuse handler from the LANGFUSE_* variables
    litellm.success_callback = ["langfuse"]
    litellm.failure_callback = ["langfuse"]


def create_embedding_client(settings: Settings | None = None, enable_langfuse: bool = True) -> Any:
    """Return the litellm module, ready for ``aembedding`` calls.

    Args:
        settings: Loaded from the environment when omitted.
        enable_langfuse: Trace every embedding request (success and failure)
            to Langfuse. Requires both LANGFUSE keys.

    Raises:
        ValueError: If tracing is requested without Langfuse keys, or the
            Langfuse host cannot be reached.

    Example:
        client = create_embedding_client(enable_langfuse=False)
        response = await client.aembedding(
            model="gemini/text-embedding-004",
            input=["Linear algebra lecture notes"],
        )
    """
    if settings is None:
        settings = Settings()

    if enable_langfuse:
        _attach_langfuse(settings)

    logger.info(
        "Embedding client ready: model=%s/%s, dimension=%d, tracing=%s, credential=%s",
        settings.embedding_provider,
        settings.embedding_model,
        settings.embedding_dimension,
        "langfuse" if enable_langfuse else "off",
        "set" if settings.gemini_api_key else "missing",
    )
    return litellm
