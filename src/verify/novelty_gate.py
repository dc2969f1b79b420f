"""Novelty gate - equivalence-class memory of rejected ideas.

Hypotheses rejected by the audit loop are clustered online by cosine
distance into equivalence classes. New candidates that land inside a
class (or very close to a single stored rejection) are dropped before
they reach the expensive audit stage.

Membership test:
    distance(e, centroid) <= max(radius * radius_buffer, base_radius)
"""

from src.contracts.schemas import (
    EquivalenceClass,
    EquivalenceMatch,
    Hypothesis,
    NoveltyGateConfig,
)
from src.kb.embedding_service import EmbeddingService
from src.kb.vector_store import VectorStore

REJECTED_KIND = "rejected"


class NoveltyGate:
    """Online equivalence classes over rejected hypothesis embeddings.

    Classes only grow: a rejection is folded into the nearest class within
    ``base_radius`` or starts a new singleton class. Classes never merge.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_store: VectorStore | None = None,
        config: NoveltyGateConfig | None = None,
    ):
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.config = config or NoveltyGateConfig()
        self._classes: list[EquivalenceClass] = []

        if self.vector_store is None and self.config.enabled:
            print("[WARN] No vector store configured; novelty gate only checks rejections from this run")

    @property
    def classes(self) -> list[EquivalenceClass]:
        return list(self._classes)

    def _membership_threshold(self, cls: EquivalenceClass) -> float:
        return max(cls.radius * self.config.radius_buffer, self.config.base_radius)

    def check_embedding(self, embedding: list[float]) -> EquivalenceMatch | None:
        """Nearest class whose membership region contains ``embedding``."""
        if EmbeddingService.is_zero_vector(embedding):
            return None

        best: EquivalenceMatch | None = None
        for cls in self._classes:
            distance = EmbeddingService.distance(embedding, cls.centroid)
            if distance > self._membership_threshold(cls):
                continue
            if best is None or distance < best.distance:
                best = EquivalenceMatch(
                    class_id=cls.class_id,
                    member_count=cls.member_count,
                    representative_reason=cls.representative_reason,
                    distance=distance,
                )
        return best

    async def _check_prior_rejections(self, embedding: list[float]) -> EquivalenceMatch | None:
        if self.vector_store is None:
            return None
        try:
            matches = await self.vector_store.match_embeddings(
                embedding,
                threshold=self.config.prior_rejection_similarity,
                limit=1,
                filter_metadata={"kind": REJECTED_KIND},
            )
        except Exception as e:
            print(f"[WARN] Prior-rejection lookup failed, gate passes: {e}")
            return None

        if not matches:
            return None
        match = matches[0]
        return EquivalenceMatch(
            class_id=match.id,
            member_count=1,
            representative_reason=match.metadata.get("reason", ""),
            distance=1.0 - match.score,
            source="prior_rejection",
        )

    async def check(self, hypothesis: Hypothesis) -> EquivalenceMatch | None:
        """Return the forbidden region ``hypothesis`` falls into, or None if it passes."""
        if not self.config.enabled:
            return None

        embedding = await self.embedding_service.embed(hypothesis.embedding_text)
        if EmbeddingService.is_zero_vector(embedding):
            print(f"[NoveltyGate] No embedding for {hypothesis.id}, skipping check")
            return None

        match = self.check_embedding(embedding)
        if match is None:
            match = await self._check_prior_rejections(embedding)

        if match is not None:
            print(
                f"[NoveltyGate] {hypothesis.id} falls within {match.class_id} "
                f"({match.member_count} prior rejections, distance {match.distance:.3f})"
            )
        return match

    def fold_embedding(self, embedding: list[float], reason: str) -> EquivalenceClass | None:
        """Fold one rejected embedding into the class set."""
        if EmbeddingService.is_zero_vector(embedding):
            return None

        nearest: EquivalenceClass | None = None
        nearest_distance = float("inf")
        for cls in self._classes:
            distance = EmbeddingService.distance(embedding, cls.centroid)
            if distance <= self.config.base_radius and distance < nearest_distance:
                nearest, nearest_distance = cls, distance

        if nearest is None:
            cls = EquivalenceClass(
                class_id=f"class-{len(self._classes) + 1}",
                centroid=list(embedding),
                member_count=1,
                radius=0.0,
                representative_reason=reason,
            )
            self._classes.append(cls)
            return cls

        n = nearest.member_count
        # Incremental mean: (c * n + e) / (n + 1)
        nearest.centroid = [(c * n + e) / (n + 1) for c, e in zip(nearest.centroid, embedding)]
        nearest.member_count = n + 1
        nearest.radius = max(nearest.radius, nearest_distance)
        return nearest

    async def record_rejection(
        self,
        hypothesis: Hypothesis,
        reason: str,
        embedding: list[float] | None = None,
    ) -> EquivalenceClass | None:
        """Remember a hypothesis rejected by the audit loop."""
        if embedding is None:
            embedding = await self.embedding_service.embed(hypothesis.embedding_text)
        cls = self.fold_embedding(embedding, reason)
        if cls is None:
            return None

        if self.vector_store is not None:
            try:
                await self.vector_store.upsert(
                    f"{REJECTED_KIND}:{hypothesis.id}",
                    embedding,
                    {"kind": REJECTED_KIND, "reason": reason, "thesis": hypothesis.thesis, "class_id": cls.class_id},
                )
            except Exception as e:
                print(f"[WARN] Failed to persist rejected embedding: {e}")

        print(f"[NoveltyGate] Recorded rejection of {hypothesis.id} in {cls.class_id} ({cls.member_count} members)")
        return cls
