"""Unit tests for the audit panel."""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock


class TestRemediationPlan:
    """Tests for build_remediation_plan."""

    def test_loose_and_shallow(self):
        """Easy-to-vary, shallow theories get both instructions after the hardening steps."""
        from src.contracts.schemas import ArchitectSynthesis, MethodologicalCritique
        from src.soul.auditor import LOOSE_EXPLANATION, SHALLOW_EXPLANATION, build_remediation_plan

        plan = build_remediation_plan(
            ArchitectSynthesis(required_hardening=["Name the mediator"]),
            MethodologicalCritique(explanation_depth=30, hard_to_vary=False),
        )
        assert plan == ["Name the mediator", LOOSE_EXPLANATION, SHALLOW_EXPLANATION]

    def test_deep(self):
        """Deep, hard-to-vary theories are told to proceed to testing."""
        from src.contracts.schemas import ArchitectSynthesis, MethodologicalCritique
        from src.soul.auditor import DEEP_EXPLANATION, build_remediation_plan

        plan = build_remediation_plan(
            ArchitectSynthesis(required_hardening=[]),
            MethodologicalCritique(explanation_depth=50, hard_to_vary=True),
        )
        assert plan == [DEEP_EXPLANATION]


class TestAuditPanel:
    """Tests for AuditPanel.audit with mocked souls."""

    @staticmethod
    def panel(methodical=None, skeptic=None, synthesis=None, memory=None):
        from src.contracts.schemas import AdversarialCritique, ArchitectSynthesis, MethodologicalCritique
        from src.soul.auditor import AuditPanel

        m, s, y = MagicMock(), MagicMock(), MagicMock()
        m.critique = AsyncMock(return_value=methodical or (MethodologicalCritique(explanation_depth=80, hard_to_vary=True), True))
        s.critique = AsyncMock(return_value=skeptic or (AdversarialCritique(score=70, biases_detected=[], fallacies_detected=[]), True))
        y.synthesize = AsyncMock(return_value=synthesis or (ArchitectSynthesis(synthesis_score=82, is_approved=True, required_hardening=[]), True))
        return AuditPanel(m, s, y, memory)

    @pytest.mark.asyncio
    async def test_approved_verdict(self):
        """Synthesizer approval and score flow into the verdict."""
        from src.contracts.schemas import Hypothesis
        hypothesis = Hypothesis(thesis="x")

        verdict = await self.panel().audit(hypothesis, [], iteration=1)

        assert verdict.hypothesis_id == hypothesis.id
        assert verdict.iteration == 1
        assert verdict.approved is True
        assert verdict.validity_score == 82
        assert verdict.degraded is False

    @pytest.mark.asyncio
    async def test_degraded_when_any_call_falls_back(self):
        """A fallback in any of the three calls marks the verdict degraded."""
        from src.contracts.schemas import AdversarialCritique, Hypothesis
        panel = self.panel(skeptic=(AdversarialCritique(), False))

        verdict = await panel.audit(Hypothesis(thesis="x"), [])

        assert verdict.degraded is True
        assert verdict.adversarial.biases_detected == ["Parsing Error"]

    @pytest.mark.asyncio
    async def test_synthesizer_failure_is_not_approved(self):
        """The synthesizer's conservative default never approves."""
        from src.contracts.schemas import ArchitectSynthesis, Hypothesis
        panel = self.panel(synthesis=(ArchitectSynthesis(), False))

        verdict = await panel.audit(Hypothesis(thesis="x"), [])

        assert verdict.approved is False
        assert verdict.validity_score == 50
        assert verdict.remediation_plan[0] == "Fix system parsing issues"

    @pytest.mark.asyncio
    async def test_critiques_run_concurrently(self):
        """Both critiques are in flight before either finishes."""
        from src.contracts.schemas import AdversarialCritique, Hypothesis, MethodologicalCritique
        panel = self.panel()
        started = []
        both_started = asyncio.Event()

        async def critique(result, name):
            started.append(name)
            if len(started) == 2:
                both_started.set()
            await asyncio.wait_for(both_started.wait(), timeout=1)
            return result, True

        async def methodical(*args):
            return await critique(MethodologicalCritique(), "m")

        async def skeptic(*args):
            return await critique(AdversarialCritique(), "s")

        panel.methodical.critique = methodical
        panel.skeptic.critique = skeptic

        await panel.audit(Hypothesis(thesis="x"), [])
        assert sorted(started) == ["m", "s"]

    @pytest.mark.asyncio
    async def test_high_scores_feed_memory(self):
        """Scores above 70 are offered to the success memory."""
        from src.contracts.schemas import ArchitectSynthesis, Hypothesis
        from src.soul.memory import SuccessMemory

        memory = SuccessMemory()
        await self.panel(memory=memory).audit(Hypothesis(thesis="Entropy bounds inference cost"), [])
        assert len(memory.engrams) == 1

        low = self.panel(memory=memory, synthesis=(ArchitectSynthesis(synthesis_score=70, required_hardening=[]), True))
        await low.audit(Hypothesis(thesis="Another idea"), [])
        assert len(memory.engrams) == 1

    @pytest.mark.asyncio
    async def test_memory_guidance_reaches_methodical(self):
        """Recalled patterns are passed to the methodological critic."""
        from src.contracts.schemas import Hypothesis
        from src.soul.memory import SuccessMemory

        memory = SuccessMemory()
        memory.record_success("Entropy bounds inference cost", "entropy", 90, "good")
        panel = self.panel(memory=memory)

        await panel.audit(Hypothesis(thesis="Entropy bounds inference cost"), [])

        guidance = panel.methodical.critique.await_args.args[2]
        assert "<pattern_recall>" in guidance


class TestAuditWithOracle:
    """Audit panel wired to real souls and a scripted oracle."""

    @pytest.mark.asyncio
    async def test_malformed_outputs_fall_back(self, make_oracle, envelope):
        """Unparseable critiques produce a degraded, unapproved verdict."""
        from src.contracts.schemas import Hypothesis
        from src.soul.auditor import AuditPanel
        from src.soul.prompts.methodical import MethodicalSoul
        from src.soul.prompts.skeptic import SkepticSoul
        from src.soul.prompts.synthesizer import SynthesizerSoul

        oracle = make_oracle(lambda prompt, options: "not json at all")
        panel = AuditPanel(
            MethodicalSoul(oracle, envelope),
            SkepticSoul(oracle, envelope),
            SynthesizerSoul(oracle, envelope),
        )

        verdict = await panel.audit(Hypothesis(thesis="x"), [])

        assert verdict.degraded is True
        assert verdict.approved is False
        assert verdict.methodological.explanation_depth == 40
        assert len(oracle.calls) == 3

    @pytest.mark.asyncio
    async def test_well_formed_outputs(self, pipeline_oracle, envelope):
        """Valid JSON from every soul yields a clean approved verdict."""
        from src.contracts.schemas import Hypothesis
        from src.soul.auditor import AuditPanel
        from src.soul.prompts.methodical import MethodicalSoul
        from src.soul.prompts.skeptic import SkepticSoul
        from src.soul.prompts.synthesizer import SynthesizerSoul

        panel = AuditPanel(
            MethodicalSoul(pipeline_oracle, envelope),
            SkepticSoul(pipeline_oracle, envelope),
            SynthesizerSoul(pipeline_oracle, envelope),
        )

        verdict = await panel.audit(Hypothesis(thesis="x"), [])

        assert verdict.approved is True
        assert verdict.degraded is False
        assert verdict.validity_score == 85
        assert verdict.methodological.crucial_experiment == "Measure cost at two scales"
        synth_prompt = pipeline_oracle.calls_for("synthesizer")[0]
        assert '"score":75' in synth_prompt
