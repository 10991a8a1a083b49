"""
Embedding Service

OpenAI text embeddings for knowledge chunks and queries, plus cosine
similarity ranking with numpy.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
from openai import AsyncOpenAI

from agents.prompts.base_prompt_caller import get_shared_openai_client
from config.settings import settings

logger = logging.getLogger(__name__)

EMBEDDING_BATCH_SIZE = 100


class EmbeddingService:
    """Generate embeddings through the OpenAI embeddings API."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self._client = client
        self.model = model or settings.EMBEDDING_MODEL

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = get_shared_openai_client()
        return self._client

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed texts in batches; output order matches input order."""
        if not texts:
            return []

        client = self._get_client()
        vectors: List[List[float]] = []
        for start in range(0, len(texts), EMBEDDING_BATCH_SIZE):
            batch = texts[start:start + EMBEDDING_BATCH_SIZE]
            try:
                response = await client.embeddings.create(model=self.model, input=batch)
            except Exception as e:
                logger.error(f"Batch embedding failed ({len(batch)} texts): {e}")
                raise
            vectors.extend(item.embedding for item in sorted(response.data, key=lambda d: d.index))
        return vectors

    async def embed_one(self, text: str) -> List[float]:
        return (await self.embed([text]))[0]


def cosine_top_k(
    query_vector: Sequence[float],
    vectors: Sequence[Sequence[float]],
    k: int,
) -> List[Tuple[int, float]]:
    """
    Rank `vectors` by cosine similarity to `query_vector`.

    Returns up to k (index, score) pairs, best first. Zero vectors score 0.
    """
    if not vectors or k <= 0:
        return []

    matrix = np.asarray(vectors, dtype=np.float32)
    query = np.asarray(query_vector, dtype=np.float32)

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

    k = min(k, len(scores))
    top = np.argsort(-scores, kind="stable")[:k]
    return [(int(i), float(scores[i])) for i in top]
