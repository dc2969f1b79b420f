"""Vector store for prior art, rejected hypotheses and run records.

Entries carry a ``kind`` in their metadata (``prior_art`` or ``rejected``) so a
single store can back both prior-art search and the novelty gate. Records
(hypotheses, audit verdicts) are plain JSON documents grouped by collection.

InMemoryVectorStore is the only built-in backend; it can persist to JSON.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np


@dataclass
class SearchResult:
    """Result from vector similarity search."""

    id: str
    score: float  # Cosine similarity, higher = more similar
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoredVector:
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)

    def matches(self, filter_metadata: dict[str, Any] | None) -> bool:
        if not filter_metadata:
            return True
        return all(self.metadata.get(k) == v for k, v in filter_metadata.items())


class VectorStore(ABC):
    """Abstract base class for vector stores."""

    @abstractmethod
    async def upsert(self, id: str, embedding: list[float], metadata: dict[str, Any] | None = None) -> None:
        """Add or replace one embedding."""
        ...

    @abstractmethod
    async def upsert_batch(self, items: list[tuple[str, list[float], dict[str, Any] | None]]) -> None:
        """Add or replace several embeddings."""
        ...

    @abstractmethod
    async def search(
        self,
        query_embedding: list[float],
        top_k: int = 10,
        filter_metadata: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        """Return the ``top_k`` most similar entries, best first."""
        ...

    @abstractmethod
    async def get(self, id: str) -> tuple[list[float], dict[str, Any]] | None:
        ...

    @abstractmethod
    async def delete(self, id: str) -> bool:
        ...

    @abstractmethod
    async def count(self) -> int:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...

    @abstractmethod
    async def put_record(self, collection: str, id: str, record: dict[str, Any]) -> None:
        """Write a JSON-serializable record (hypothesis, audit verdict, ...)."""
        ...

    @abstractmethod
    async def list_records(self, collection: str) -> list[dict[str, Any]]:
        """Return all records in a collection."""
        ...

    async def match_embeddings(
        self,
        query_embedding: list[float],
        threshold: float,
        limit: int = 1,
        filter_metadata: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        """Matches with cosine similarity >= ``threshold``, best first.

        Args:
            query_embedding: Query embedding vector
            threshold: Minimum cosine similarity
            limit: Maximum number of matches
            filter_metadata: Optional metadata filter
        """
        results = await self.search(query_embedding, top_k=limit, filter_metadata=filter_metadata)
        return [r for r in results if r.score >= threshold]


class InMemoryVectorStore(VectorStore):
    """Brute-force cosine search over a dict, optionally persisted as JSON."""

    def __init__(self, persist_path: Path | None = None):
        self.persist_path = persist_path
        self._vectors: dict[str, StoredVector] = {}
        self._records: dict[str, dict[str, dict[str, Any]]] = {}

        if persist_path and persist_path.exists():
            self._load()

    def _load(self) -> None:
        try:
            with open(self.persist_path) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            print(f"[VectorStore] Load error: {e}")
            return
        self._vectors = {
            id: StoredVector(entry["embedding"], entry.get("metadata", {}))
            for id, entry in data.get("vectors", {}).items()
        }
        self._records = data.get("records", {})
        print(f"[VectorStore] Loaded {len(self._vectors)} vectors")

    def _save(self) -> None:
        if not self.persist_path:
            return
        data = {
            "vectors": {id: {"embedding": v.embedding, "metadata": v.metadata} for id, v in self._vectors.items()},
            "records": self._records,
        }
        try:
            self.persist_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.persist_path, "w") as f:
                json.dump(data, f, default=str)
        except OSError as e:
            print(f"[VectorStore] Save error: {e}")

    async def upsert(self, id: str, embedding: list[float], metadata: dict[str, Any] | None = None) -> None:
        self._vectors[id] = StoredVector(embedding, metadata or {})
        self._save()

    async def upsert_batch(self, items: list[tuple[str, list[float], dict[str, Any] | None]]) -> None:
        for id, embedding, metadata in items:
            self._vectors[id] = StoredVector(embedding, metadata or {})
        self._save()

    async def search(
        self,
        query_embedding: list[float],
        top_k: int = 10,
        filter_metadata: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        query = np.asarray(query_embedding, dtype=float)
        query_norm = float(np.linalg.norm(query))

        scored: list[tuple[str, float]] = []
        for id, stored in self._vectors.items():
            if not stored.matches(filter_metadata):
                continue
            vector = np.asarray(stored.embedding, dtype=float)
            norm = query_norm * float(np.linalg.norm(vector))
            if vector.shape != query.shape or norm == 0:
                score = 0.0
            else:
                score = float(np.dot(query, vector) / norm)
            scored.append((id, score))

        scored.sort(key=lambda item: item[1], reverse=True)
        return [SearchResult(id=id, score=score, metadata=self._vectors[id].metadata) for id, score in scored[:top_k]]

    async def get(self, id: str) -> tuple[list[float], dict[str, Any]] | None:
        stored = self._vectors.get(id)
        if stored is None:
            return None
        return stored.embedding, stored.metadata

    async def delete(self, id: str) -> bool:
        if self._vectors.pop(id, None) is None:
            return False
        self._save()
        return True

    async def count(self) -> int:
        return len(self._vectors)

    async def clear(self) -> None:
        self._vectors = {}
        self._records = {}
        if self.persist_path and self.persist_path.exists():
            self.persist_path.unlink()

    async def put_record(self, collection: str, id: str, record: dict[str, Any]) -> None:
        self._records.setdefault(collection, {})[id] = record
        self._save()

    async def list_records(self, collection: str) -> list[dict[str, Any]]:
        return list(self._records.get(collection, {}).values())


def create_vector_store(backend: str = "memory", persist_path: Path | None = None) -> VectorStore:
    """Create a vector store; only the ``memory`` backend is built in."""
    if backend == "memory":
        return InMemoryVectorStore(persist_path=persist_path)
    raise ValueError(f"Unknown backend: {backend}")
