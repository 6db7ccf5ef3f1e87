"""
docvec.clients: Configuration and client factories for external services.

This module provides centralized configuration and client factories for:
- The embedding provider (LiteLLM, with optional Langfuse tracing)
"""

from docvec.clients.embedding import create_embedding_client
from docvec.clients.settings import Settings

__all__ = [
    "Settings",
    "create_embedding_client",
]
