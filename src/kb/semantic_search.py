"""Semantic prior-art search using dense embeddings.

High-level API for:
- Indexing reference documents (known literature) with their embeddings
- Finding prior art for a hypothesis by semantic similarity

Usage:
    from src.kb.semantic_search import SemanticPriorArtSearch

    search = SemanticPriorArtSearch()
    await search.index_documents(documents)
    prior_art = await search.find_prior_art(hypothesis)
"""

from pathlib import Path
from typing import Any

from src.contracts.schemas import Hypothesis, PriorArt, SourceDocument
from src.kb.embedding_service import EmbeddingService
from src.kb.vector_store import InMemoryVectorStore, VectorStore

PRIOR_ART_KIND = "prior_art"


class SemanticPriorArtSearch:
    """Prior-art lookup over an indexed reference corpus.

    Combines the embedding service and vector store. Entries are tagged with
    ``kind=prior_art`` so the store can be shared with the novelty gate.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService | None = None,
        vector_store: VectorStore | None = None,
        persist_dir: Path | None = None,
    ):
        """Initialize prior-art search.

        Args:
            embedding_service: Embedding service (defaults to Gemini)
            vector_store: Vector store (defaults to InMemoryVectorStore)
            persist_dir: Directory for persistence (used if no services provided)
        """
        self.persist_dir = persist_dir

        if embedding_service:
            self.embedding_service = embedding_service
        else:
            cache_path = persist_dir / "embedding_cache.json" if persist_dir else None
            self.embedding_service = EmbeddingService(cache_path=cache_path)

        if vector_store:
            self.vector_store = vector_store
        else:
            store_path = persist_dir / "vector_store.json" if persist_dir else None
            self.vector_store = InMemoryVectorStore(persist_path=store_path)

        self._documents: dict[str, SourceDocument] = {}

    @property
    def is_initialized(self) -> bool:
        """Check if any reference documents are indexed."""
        return len(self._documents) > 0

    @staticmethod
    def _doc_id(document: SourceDocument) -> str:
        return f"{PRIOR_ART_KIND}:{document.metadata.get('id', document.name)}"

    async def index_documents(self, documents: list[SourceDocument]) -> int:
        """Index reference documents for prior-art search.

        Args:
            documents: Documents to index

        Returns:
            Number of documents indexed
        """
        if not documents:
            return 0

        texts = [f"{d.name}\n\n{d.text[:4000]}" for d in documents]
        embeddings = await self.embedding_service.embed_batch(texts)

        items: list[tuple[str, list[float], dict[str, Any] | None]] = []
        indexed: dict[str, SourceDocument] = {}
        for document, embedding in zip(documents, embeddings):
            if EmbeddingService.is_zero_vector(embedding):
                print(f"[PriorArt] Skipping '{document.name}': no embedding")
                continue
            doc_id = self._doc_id(document)
            items.append((doc_id, embedding, {"kind": PRIOR_ART_KIND, "title": document.name}))
            indexed[doc_id] = document

        try:
            await self.vector_store.upsert_batch(items)
        except Exception as e:
            print(f"[WARN] Vector store unavailable, reference documents not indexed: {e}")
            return 0

        self._documents.update(indexed)
        return len(items)

    async def find_prior_art(
        self,
        hypothesis: Hypothesis,
        top_k: int = 5,
        min_score: float = 0.0,
    ) -> list[PriorArt]:
        """Find indexed documents similar to a hypothesis.

        Args:
            hypothesis: Hypothesis to look up
            top_k: Maximum number of results
            min_score: Minimum similarity score threshold

        Returns:
            List of PriorArt sorted by similarity (highest first)
        """
        if not self.is_initialized:
            return []

        query = f"{hypothesis.thesis}\n{hypothesis.description}"
        query_embedding = await self.embedding_service.embed(query)
        if EmbeddingService.is_zero_vector(query_embedding):
            print("[PriorArt] Zero query embedding, skipping prior-art search")
            return []

        try:
            results = await self.vector_store.search(
                query_embedding,
                top_k=top_k,
                filter_metadata={"kind": PRIOR_ART_KIND},
            )
        except Exception as e:
            print(f"[WARN] Vector store unavailable, skipping prior-art search: {e}")
            return []

        return [
            PriorArt(
                id=result.id,
                title=result.metadata.get("title", result.id),
                similarity=result.score,
                differentiator="",
            )
            for result in results
            if result.score >= min_score
        ]

    async def count(self) -> int:
        """Return the number of indexed documents."""
        return len(self._documents)

    def get_stats(self) -> dict[str, Any]:
        """Get statistics about the search index."""
        return {
            "documents_indexed": len(self._documents),
            "embedding_dimension": self.embedding_service.dimension,
            "vector_store_type": type(self.vector_store).__name__,
        }
