"""Success memory for the audit panel.

Approved audits with a high score are stored as "engrams": the keywords of
the thesis, a coarse domain label, the conceptual lens of the breakthrough
and the score. When a similar hypothesis is audited later, the best matching
engram is offered to the methodological critic as guidance.
"""

import json
import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path

STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "is", "are", "was", "were", "be", "been",
    "that", "this", "these", "those", "will", "would", "could", "should",
}

MIN_RECORD_SCORE = 70
MAX_ENGRAMS = 50
DOMAIN_BONUS = 0.3
MATCH_THRESHOLD = 0.3


def extract_keywords(text: str, limit: int = 20) -> list[str]:
    """Lowercase words longer than three characters, minus stop words."""
    words = re.sub(r"[^a-z0-9\s]", " ", text.lower()).split()
    return [w for w in words if len(w) > 3 and w not in STOP_WORDS][:limit]


def jaccard(a: list[str], b: list[str]) -> float:
    if not a or not b:
        return 0.0
    set_a, set_b = set(a), set(b)
    return len(set_a & set_b) / len(set_a | set_b)


def extract_domain(thesis: str) -> str:
    """Coarse research-domain label from thesis keywords."""
    lower = thesis.lower()
    if "interpretability" in lower or "mechanistic" in lower:
        return "Mechanistic Interpretability"
    if "alignment" in lower or "agi safety" in lower:
        return "AI Alignment"
    if "active inference" in lower or "free energy" in lower:
        return "Active Inference"
    if "superposition" in lower or "sparse" in lower:
        return "Neural Architecture"
    return "Unknown"


def detect_lens(breakthrough: str) -> str:
    """Which conceptual lens a breakthrough statement leans on."""
    lower = breakthrough.lower()
    if "complexity" in lower or "kolmogorov" in lower:
        return "Complexity Theory"
    if "thermodynamic" in lower or "entropy" in lower:
        return "Thermodynamics"
    if "information" in lower or "shannon" in lower:
        return "Information Theory"
    if "causal" in lower or "structural" in lower:
        return "Causal Inference"
    return "General Mechanism"


@dataclass
class Engram:
    """A remembered successful audit."""
    domain: str
    lens: str
    score: int
    critique_pattern: str
    thesis_keywords: list[str]
    id: str = field(default_factory=lambda: f"engram-{uuid.uuid4().hex[:10]}")
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass
class PatternMatch:
    engram: Engram
    similarity: float


class SuccessMemory:
    """Bounded store of engrams with keyword-overlap recall.

    Usage:
        memory = SuccessMemory()
        memory.record_success(hypothesis.thesis, breakthrough, score=82, critique="...")
        match = memory.find_similar_pattern(new_thesis)
    """

    def __init__(self, persist_path: Path | None = None, max_engrams: int = MAX_ENGRAMS):
        self.persist_path = Path(persist_path) if persist_path else None
        self.max_engrams = max_engrams
        self.engrams: list[Engram] = []
        self._load()

    def record_success(self, thesis: str, breakthrough: str, score: int, critique: str) -> Engram | None:
        """Store an engram if ``score`` reaches the recording threshold."""
        if score < MIN_RECORD_SCORE:
            return None

        engram = Engram(
            domain=extract_domain(thesis),
            lens=detect_lens(breakthrough),
            score=score,
            critique_pattern=critique,
            thesis_keywords=extract_keywords(thesis),
        )
        self.engrams.append(engram)
        print(f"[SuccessMemory] Recorded engram: {engram.domain} ({engram.lens}) -> {score}/100")

        if len(self.engrams) > self.max_engrams:
            self.engrams.sort(key=lambda e: e.score, reverse=True)
            self.engrams = self.engrams[: self.max_engrams]

        self._save()
        return engram

    def find_similar_pattern(self, thesis: str) -> PatternMatch | None:
        """Best engram by keyword overlap plus a same-domain bonus."""
        if not self.engrams:
            return None

        keywords = extract_keywords(thesis)
        domain = extract_domain(thesis)
        best: PatternMatch | None = None

        for engram in self.engrams:
            similarity = jaccard(keywords, engram.thesis_keywords)
            if engram.domain == domain:
                similarity += DOMAIN_BONUS
            if similarity > MATCH_THRESHOLD and (best is None or similarity > best.similarity):
                best = PatternMatch(engram=engram, similarity=similarity)

        return best

    def guidance_for(self, thesis: str) -> str:
        """Prompt fragment recalling the best matching success, or ''."""
        match = self.find_similar_pattern(thesis)
        if match is None:
            return ""
        e = match.engram
        return (
            f"\n<pattern_recall>\nA similar idea in '{e.domain}' was previously approved using the "
            f"'{e.lens}' lens with score {e.score}/100. Consider whether similar reasoning applies.\n"
            f"</pattern_recall>\n"
        )

    def get_stats(self) -> dict:
        if not self.engrams:
            return {"total": 0, "avg_score": 0.0, "domains": [], "lenses": []}
        return {
            "total": len(self.engrams),
            "avg_score": sum(e.score for e in self.engrams) / len(self.engrams),
            "domains": sorted({e.domain for e in self.engrams}),
            "lenses": sorted({e.lens for e in self.engrams}),
        }

    def clear(self) -> None:
        self.engrams = []
        self._save()

    def _load(self) -> None:
        if not self.persist_path or not self.persist_path.exists():
            return
        try:
            with open(self.persist_path) as f:
                self.engrams = [Engram(**row) for row in json.load(f)]
            print(f"[SuccessMemory] Loaded {len(self.engrams)} engrams")
        except (OSError, json.JSONDecodeError, TypeError) as e:
            print(f"[WARN] Failed to load success memory: {e}")

    def _save(self) -> None:
        if not self.persist_path:
            return
        try:
            self.persist_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.persist_path, "w") as f:
                json.dump([asdict(e) for e in self.engrams], f)
        except OSError as e:
            print(f"[WARN] Failed to save success memory: {e}")
