"""Unit tests for the creative and prose souls and the shared soul plumbing."""

import asyncio

import pytest


def sources():
    from src.contracts.schemas import SourceConcepts
    return [
        SourceConcepts(source_name="alpha", main_thesis="Cost grows linearly"),
        SourceConcepts(source_name="beta", main_thesis="Cost saturates"),
    ]


class TestBaseSoul:
    """Tests for persona prompts and usage tracking."""

    def test_persona_prompt(self, pipeline_oracle, envelope):
        """Persona prompts name the role in upper case."""
        from src.soul.prompts.creative import CreativeSoul
        persona = CreativeSoul(pipeline_oracle, envelope).get_persona_prompt()
        assert persona.startswith("You are the CREATIVE in a scientific synthesis engine.")

    @pytest.mark.asyncio
    async def test_usage_tracked(self, pipeline_oracle, envelope):
        """Tokens and cost accumulate per soul."""
        from src.soul.prompts.creative import CreativeSoul
        soul = CreativeSoul(pipeline_oracle, envelope)
        await soul.generate_initial(sources(), [])
        await soul.generate_initial(sources(), [])
        assert soul.total_tokens == 40
        assert soul.total_cost == pytest.approx(0.002)

    @pytest.mark.asyncio
    async def test_primary_route_used(self, pipeline_oracle, envelope):
        """Calls go to the primary route with the soul's model."""
        from src.soul.prompts.prose import ProseSoul
        from src.contracts.schemas import Hypothesis
        soul = ProseSoul(pipeline_oracle, envelope, primary="local", secondary=None, model="m-1")
        await soul.write(Hypothesis(thesis="x"), [])
        _, options = pipeline_oracle.calls[0]
        assert options.provider == "local"
        assert options.model == "m-1"

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, pipeline_oracle):
        """A cancelled envelope raises instead of falling back to defaults."""
        from src.contracts.errors import PipelineCancelledError
        from src.contracts.schemas import Hypothesis
        from src.ralph.resilience import ResilientCallEnvelope
        from src.soul.prompts.prose import ProseSoul

        cancel = asyncio.Event()
        cancel.set()
        soul = ProseSoul(pipeline_oracle, ResilientCallEnvelope(cancel_event=cancel))

        with pytest.raises(PipelineCancelledError):
            await soul.write(Hypothesis(thesis="x"), [])
        assert pipeline_oracle.calls == []


class TestCreativeSoul:
    """Tests for initial synthesis, recombination and refinement."""

    @pytest.mark.asyncio
    async def test_generate_initial(self, pipeline_oracle, envelope):
        """The initial state carries every source as provenance."""
        from src.contracts.schemas import HypothesisOrigin
        from src.soul.prompts.creative import CreativeSoul

        h = await CreativeSoul(pipeline_oracle, envelope).generate_initial(sources(), [], "energy")

        assert h.thesis == "Initial synthesis across all sources"
        assert h.origin is HypothesisOrigin.INITIAL
        assert h.provenance == ["alpha", "beta"]
        assert "<research_focus>\nenergy\n</research_focus>" in pipeline_oracle.calls[0][0]

    @pytest.mark.asyncio
    async def test_generate_initial_fallback(self, make_oracle, envelope):
        """Unusable output gives the placeholder starting state."""
        from src.soul.prompts.creative import CreativeSoul

        h = await CreativeSoul(make_oracle(lambda p, o: "??"), envelope).generate_initial(sources(), [])

        assert h.thesis == "Initial synthesis hypothesis"
        assert h.bridged_concepts == []

    @pytest.mark.asyncio
    async def test_recombination(self, pipeline_oracle, envelope):
        """Recombination proposals record the mix and requested origin."""
        from src.contracts.schemas import Hypothesis, HypothesisOrigin
        from src.soul.prompts.creative import CreativeSoul

        soul = CreativeSoul(pipeline_oracle, envelope)
        h = await soul.propose_recombination(
            Hypothesis(thesis="Current"), sources(), temperature=1.5, origin=HypothesisOrigin.EXPANSION,
        )

        assert h.thesis == "Recombined hypothesis number 1"
        assert h.origin is HypothesisOrigin.EXPANSION
        assert h.provenance == ["alpha", "beta"]
        assert pipeline_oracle.calls[0][1].temperature == 1.5

    @pytest.mark.asyncio
    async def test_recombination_unparseable_is_none(self, make_oracle, envelope):
        """Bad output yields no proposal."""
        from src.contracts.schemas import Hypothesis
        from src.soul.prompts.creative import CreativeSoul

        soul = CreativeSoul(make_oracle(lambda p, o: "no json here"), envelope)
        assert await soul.propose_recombination(Hypothesis(thesis="Current"), sources()) is None

    @pytest.mark.asyncio
    async def test_recombination_failed_call_is_none(self, make_oracle, envelope):
        """A failed call yields no proposal."""
        from src.contracts.schemas import Hypothesis
        from src.soul.prompts.creative import CreativeSoul

        soul = CreativeSoul(make_oracle(lambda p, o: ValueError("bad request")), envelope)
        assert await soul.propose_recombination(Hypothesis(thesis="Current"), sources()) is None

    @pytest.mark.asyncio
    async def test_refine_lineage(self, pipeline_oracle, envelope):
        """Refinement produces a child pointing at its parent."""
        from src.contracts.schemas import AuditVerdict, Hypothesis, HypothesisOrigin
        from src.soul.prompts.creative import CreativeSoul

        parent = Hypothesis(thesis="Parent")
        verdict = AuditVerdict(hypothesis_id=parent.id, remediation_plan=["Name the mediator"])

        child = await CreativeSoul(pipeline_oracle, envelope).refine(parent, verdict, [])

        assert child.thesis == "Refined hypothesis number 1"
        assert child.parent_id == parent.id
        assert child.id != parent.id
        assert child.iteration == 1
        assert child.origin is HypothesisOrigin.REFINED
        assert "- Name the mediator" in pipeline_oracle.calls[0][0]

    @pytest.mark.asyncio
    async def test_refine_fallback_keeps_content(self, make_oracle, envelope):
        """Unusable refinement output keeps the parent's content under a new id."""
        from src.contracts.schemas import AuditVerdict, Hypothesis
        from src.soul.prompts.creative import CreativeSoul

        parent = Hypothesis(thesis="Parent", mechanism="Pathway", bridged_concepts=["a", "b"])
        verdict = AuditVerdict(hypothesis_id=parent.id)

        child = await CreativeSoul(make_oracle(lambda p, o: "nope"), envelope).refine(parent, verdict, [])

        assert child.thesis == "Parent"
        assert child.mechanism == "Pathway"
        assert child.bridged_concepts == ["a", "b"]
        assert child.parent_id == parent.id


class TestProseSoul:
    """Tests for the prose write-up."""

    @pytest.mark.asyncio
    async def test_write(self, pipeline_oracle, envelope):
        """Prose is returned stripped."""
        from src.contracts.schemas import Contradiction, Hypothesis
        from src.soul.prompts.prose import ProseSoul

        text = await ProseSoul(pipeline_oracle, envelope).write(
            Hypothesis(thesis="x"), [Contradiction(concept="energy cost")],
        )

        assert text == "We propose a shared causal pathway linking both sources."
        assert "Contradictions resolved: energy cost" in pipeline_oracle.calls[0][0]

    @pytest.mark.asyncio
    async def test_write_failure_is_empty(self, make_oracle, envelope):
        """A failed call yields an empty string."""
        from src.contracts.schemas import Hypothesis
        from src.soul.prompts.prose import ProseSoul

        soul = ProseSoul(make_oracle(lambda p, o: ValueError("bad request")), envelope)
        assert await soul.write(Hypothesis(thesis="x"), []) == ""
