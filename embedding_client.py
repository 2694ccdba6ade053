"""Embedding provider client - converts text to a vector or reports no vector"""
import logging
from typing import List, Optional

from openai_client import ProviderError

logger = logging.getLogger(__name__)


def truncate_for_embedding(text, max_chars=8000):
    """Return a prefix of *text* short enough for the embedding model"""
    if not text:
        return ""
    return text[:max_chars]


class EmbeddingClient:
    """Wraps the remote embedding endpoint.

    ``embed`` never raises for provider problems: a missing vector is an
    expected outcome and callers short-circuit on ``None``.
    """

    def __init__(self, client, model="text-embedding-3-small", max_chars=8000):
        self.client = client
        self.model = model
        self.max_chars = max_chars

    @classmethod
    def from_settings(cls, client, settings):
        return cls(client, model=settings.embedding_model, max_chars=settings.embedding_max_chars)

    def embed(self, text) -> Optional[List[float]]:
        text = truncate_for_embedding(text, self.max_chars).strip()
        if not text:
            return None

        try:
            vector = self.client.create_embedding(self.model, text)
        except ProviderError as e:
            logger.error("❌ Embedding API call failed: %s", e)
            return None

        if not isinstance(vector, list) or not vector:
            logger.error("❌ Embedding API returned an empty vector")
            return None
        return vector
