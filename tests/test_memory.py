"""Unit tests for SuccessMemory."""

import pytest


INTERP_THESIS = "Sparse superposition features explain mechanistic interpretability circuits"


class TestKeywordHelpers:
    """Tests for keyword, domain and lens heuristics."""

    def test_extract_keywords(self):
        """Short words and stop words are dropped."""
        from src.soul.memory import extract_keywords
        assert extract_keywords("The cost of inference would scale with entropy") == [
            "cost", "inference", "scale", "entropy",
        ]

    def test_jaccard(self):
        """Set overlap over union; empty inputs give 0."""
        from src.soul.memory import jaccard
        assert jaccard(["a", "b"], ["b", "c"]) == pytest.approx(1 / 3)
        assert jaccard([], ["a"]) == 0.0

    def test_domain_and_lens(self):
        """Domain and lens come from keyword heuristics."""
        from src.soul.memory import detect_lens, extract_domain
        assert extract_domain(INTERP_THESIS) == "Mechanistic Interpretability"
        assert extract_domain("Ocean currents shape plankton blooms") == "Unknown"
        assert detect_lens("An entropy budget bounds the circuit") == "Thermodynamics"
        assert detect_lens("A plain account") == "General Mechanism"


class TestSuccessMemory:
    """Tests for recording and recall."""

    @pytest.fixture
    def memory(self):
        from src.soul.memory import SuccessMemory
        return SuccessMemory()

    def test_low_scores_not_recorded(self, memory):
        """Scores below 70 are not stored."""
        assert memory.record_success(INTERP_THESIS, "entropy", 69, "meh") is None
        assert memory.engrams == []

    def test_record_and_recall(self, memory):
        """A recorded success is recalled for the same thesis."""
        engram = memory.record_success(INTERP_THESIS, "Kolmogorov complexity bound", 88, "solid")
        match = memory.find_similar_pattern(INTERP_THESIS)

        assert engram.lens == "Complexity Theory"
        assert match is not None
        assert match.engram is engram
        assert match.similarity == pytest.approx(1.3)

    def test_unrelated_thesis_not_recalled(self, memory):
        """No keyword overlap and a different domain gives no match."""
        memory.record_success(INTERP_THESIS, "causal structure", 90, "great")
        assert memory.find_similar_pattern("Ocean currents shape plankton blooms") is None

    def test_domain_bonus_alone_is_not_enough(self, memory):
        """Same domain with zero keyword overlap sits exactly at the threshold."""
        memory.record_success("Ocean currents shape plankton blooms", "causal", 90, "fine")
        assert memory.find_similar_pattern("Atmospheric rivers deliver rainfall") is None

    def test_guidance_fragment(self, memory):
        """Guidance is empty without a match and a recall block with one."""
        assert memory.guidance_for(INTERP_THESIS) == ""
        memory.record_success(INTERP_THESIS, "information bottleneck", 81, "ok")
        guidance = memory.guidance_for(INTERP_THESIS)
        assert "<pattern_recall>" in guidance
        assert "Information Theory" in guidance
        assert "81/100" in guidance

    def test_pruned_by_score(self):
        """Above max_engrams, the lowest scores are dropped."""
        from src.soul.memory import SuccessMemory
        memory = SuccessMemory(max_engrams=3)
        for score in (71, 95, 80, 90):
            memory.record_success(f"thesis scoring {score}", "causal", score, "")
        assert sorted(e.score for e in memory.engrams) == [80, 90, 95]

    def test_stats(self, memory):
        """Stats summarize scores, domains and lenses."""
        assert memory.get_stats()["total"] == 0
        memory.record_success(INTERP_THESIS, "entropy", 80, "")
        memory.record_success("Ocean currents shape plankton blooms", "causal", 90, "")
        stats = memory.get_stats()
        assert stats["total"] == 2
        assert stats["avg_score"] == pytest.approx(85.0)
        assert stats["lenses"] == ["Causal Inference", "Thermodynamics"]

    def test_persistence(self, tmp_path):
        """Engrams survive a reload from the same path."""
        from src.soul.memory import SuccessMemory
        path = tmp_path / "memory.json"
        SuccessMemory(persist_path=path).record_success(INTERP_THESIS, "entropy", 77, "kept")

        reloaded = SuccessMemory(persist_path=path)
        assert len(reloaded.engrams) == 1
        assert reloaded.engrams[0].critique_pattern == "kept"

    def test_clear(self, memory):
        """clear empties the memory."""
        memory.record_success(INTERP_THESIS, "entropy", 77, "")
        memory.clear()
        assert memory.engrams == []
