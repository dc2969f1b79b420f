"""Embedding service for hypothesis and source text.

Wraps an EmbeddingProvider (Gemini by default) with:
- a content-addressed cache, optionally persisted to JSON
- a fixed output dimension: wrong-sized or failed embeddings become zero vectors
- cosine similarity / distance helpers used by the basis trap and novelty gate
"""

import asyncio
import hashlib
import json
import os
from abc import ABC, abstractmethod
from pathlib import Path

import google.genai as genai
import numpy as np
from dotenv import load_dotenv

load_dotenv()

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY", "")

# Embedding dimensions by model
EMBEDDING_DIMS = {
    "text-embedding-004": 768,
    "gemini-embedding-001": 3072,
}

# Gemini accepts at most this many texts per embed_content request
MAX_BATCH = 100


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        ...

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts."""
        ...

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the embedding dimension."""
        ...


class GeminiEmbeddingProvider(EmbeddingProvider):
    """Gemini embeddings. Without an API key every call returns zero vectors."""

    def __init__(self, model: str = "text-embedding-004", task_type: str = "semantic_similarity"):
        self.model = model
        self.task_type = task_type
        self._dim = EMBEDDING_DIMS.get(model, 768)
        self._client = genai.Client(api_key=GEMINI_API_KEY) if GEMINI_API_KEY else None

    @property
    def dimension(self) -> int:
        return self._dim

    async def _request(self, contents: str | list[str]) -> list[list[float]]:
        result = await asyncio.to_thread(
            self._client.models.embed_content,
            model=self.model,
            contents=contents,
            config={"task_type": self.task_type},
        )
        return [list(e.values) for e in result.embeddings]

    async def embed(self, text: str) -> list[float]:
        if not self._client:
            print("[EmbeddingService] Gemini API key not configured")
            return [0.0] * self._dim
        try:
            return (await self._request(text))[0]
        except Exception as e:
            print(f"[EmbeddingService] Gemini embedding error: {e}")
            return [0.0] * self._dim

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        if not self._client:
            print("[EmbeddingService] Gemini API key not configured")
            return [[0.0] * self._dim for _ in texts]

        vectors: list[list[float]] = []
        for start in range(0, len(texts), MAX_BATCH):
            chunk = texts[start:start + MAX_BATCH]
            try:
                vectors.extend(await self._request(chunk))
            except Exception as e:
                print(f"[EmbeddingService] Gemini batch error ({e}), embedding chunk one by one")
                vectors.extend([await self.embed(text) for text in chunk])
        return vectors


class EmbeddingCache:
    """md5-keyed embedding cache with optional JSON persistence."""

    def __init__(self, path: Path | None = None):
        self.path = path
        self._entries: dict[str, list[float]] = {}
        if path and path.exists():
            self.load()

    @staticmethod
    def key(text: str) -> str:
        return hashlib.md5(text.encode()).hexdigest()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, text: str) -> list[float] | None:
        return self._entries.get(self.key(text))

    def put(self, text: str, embedding: list[float]) -> None:
        self._entries[self.key(text)] = embedding

    def load(self) -> None:
        try:
            with open(self.path) as f:
                self._entries = json.load(f)
            print(f"[EmbeddingService] Loaded {len(self._entries)} cached embeddings")
        except (OSError, ValueError) as e:
            print(f"[EmbeddingService] Cache load error: {e}")
            self._entries = {}

    def save(self) -> None:
        if not self.path:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(self._entries, f)
        except OSError as e:
            print(f"[EmbeddingService] Cache save error: {e}")

    def clear(self) -> None:
        self._entries = {}
        if self.path and self.path.exists():
            self.path.unlink()


class EmbeddingService:
    """Cached embeddings with a fixed output dimension.

    Usage:
        service = EmbeddingService()
        embedding = await service.embed("thermodynamic limits of inference")
        distance = service.distance(emb1, emb2)
    """

    # Single-text embeddings are flushed to disk every this many new entries
    SAVE_EVERY = 100

    def __init__(
        self,
        provider: EmbeddingProvider | None = None,
        cache_path: Path | None = None,
    ):
        """Initialize embedding service.

        Args:
            provider: Embedding provider (defaults to Gemini)
            cache_path: Path to cache file for persistent caching
        """
        self.provider = provider or GeminiEmbeddingProvider()
        self.cache = EmbeddingCache(cache_path)

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    def _conform(self, embedding: list[float] | None) -> list[float]:
        """Return ``embedding`` as floats, or a zero vector if it has the wrong size."""
        if not embedding or len(embedding) != self.dimension:
            if embedding:
                print(
                    f"[EmbeddingService] Dimension mismatch ({len(embedding)} != {self.dimension}), "
                    "using zero vector"
                )
            return [0.0] * self.dimension
        return [float(x) for x in embedding]

    def _remember(self, text: str, embedding: list[float]) -> None:
        if not self.is_zero_vector(embedding):
            self.cache.put(text, embedding)

    async def embed(self, text: str) -> list[float]:
        """Embed one text. Never raises; failures give an uncached zero vector."""
        cached = self.cache.get(text)
        if cached is not None:
            return cached

        try:
            embedding = self._conform(await self.provider.embed(text))
        except Exception as e:
            print(f"[EmbeddingService] Provider error: {e}")
            return [0.0] * self.dimension

        self._remember(text, embedding)
        if len(self.cache) and len(self.cache) % self.SAVE_EVERY == 0:
            self.cache.save()
        return embedding

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts in one provider call; results follow input order."""
        if not texts:
            return []

        results = [self.cache.get(text) for text in texts]
        missing = [i for i, r in enumerate(results) if r is None]
        if not missing:
            return results

        try:
            fetched = await self.provider.embed_batch([texts[i] for i in missing])
        except Exception as e:
            print(f"[EmbeddingService] Provider batch error: {e}")
            fetched = []

        for n, i in enumerate(missing):
            embedding = self._conform(fetched[n] if n < len(fetched) else None)
            self._remember(texts[i], embedding)
            results[i] = embedding

        self.cache.save()
        return results

    @staticmethod
    def is_zero_vector(embedding: list[float]) -> bool:
        return not any(embedding)

    @staticmethod
    def similarity(a: list[float], b: list[float]) -> float:
        """Cosine similarity (0.0 for zero or mismatched vectors)."""
        if not a or not b or len(a) != len(b):
            return 0.0
        va, vb = np.asarray(a, dtype=float), np.asarray(b, dtype=float)
        norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
        if norm == 0:
            return 0.0
        return float(np.dot(va, vb) / norm)

    @staticmethod
    def distance(a: list[float], b: list[float]) -> float:
        """Cosine distance (1 - similarity), 0 for identical direction."""
        return 1.0 - EmbeddingService.similarity(a, b)

    def clear_cache(self) -> None:
        self.cache.clear()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Compare two texts by embedding distance")
    parser.add_argument("text", help="First text")
    parser.add_argument("other", help="Second text")
    args = parser.parse_args()

    async def _compare():
        service = EmbeddingService()
        first, second = await service.embed_batch([args.text, args.other])
        print(f"dim={service.dimension} distance={service.distance(first, second):.4f}")

    asyncio.run(_compare())
