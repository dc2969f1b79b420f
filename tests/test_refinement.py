"""Unit tests for the audit/refinement loop."""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock


def verdict_for(hypothesis, prior_art, iteration, approved=False, score=55):
    from src.contracts.schemas import AuditVerdict, MethodologicalCritique
    return AuditVerdict(
        hypothesis_id=hypothesis.id,
        iteration=iteration,
        methodological=MethodologicalCritique(crucial_experiment="Knock out the mediator"),
        approved=approved,
        validity_score=score,
        remediation_plan=["Tighten the mechanism"],
    )


def make_creative():
    creative = MagicMock()

    async def refine(hypothesis, verdict, prior_art):
        return hypothesis.refine_from(thesis=f"{hypothesis.thesis} (refined)")

    creative.refine = AsyncMock(side_effect=refine)
    return creative


def make_auditor(approve_at=None):
    """Auditor approving at iteration ``approve_at`` (never if None)."""
    auditor = MagicMock()

    async def audit(hypothesis, prior_art, iteration=0):
        return verdict_for(hypothesis, prior_art, iteration, approved=iteration == approve_at, score=80)

    auditor.audit = AsyncMock(side_effect=audit)
    return auditor


def concepts():
    from src.contracts.schemas import SourceConcepts
    return [SourceConcepts(source_name=n) for n in ("alpha", "beta", "gamma")]


class TestOccupancyGauge:
    """Tests for the in-flight counter."""

    def test_tracks_peak(self):
        """Peak is the largest simultaneous occupancy."""
        from src.ralph.refinement import OccupancyGauge
        gauge = OccupancyGauge()
        with gauge:
            with gauge:
                assert gauge.current == 2
            assert gauge.current == 1
        assert gauge.current == 0
        assert gauge.peak == 2


class TestRefineOne:
    """Tests for a single hypothesis."""

    @pytest.mark.asyncio
    async def test_approved_first_iteration(self):
        """Approval on the first audit stops after one verdict at step 0."""
        from src.contracts.schemas import Hypothesis, SynthesisConfig
        from src.ralph.refinement import RefinementLoop

        creative = make_creative()
        loop = RefinementLoop(make_auditor(approve_at=0), creative, SynthesisConfig(), concepts=concepts())
        hypothesis = Hypothesis(thesis="Idea", bridged_concepts=["alpha", "beta"])

        outcome = await loop.refine_one(hypothesis)

        assert outcome.converged is True
        assert outcome.convergence_step == 0
        assert len(outcome.verdicts) == 1
        assert outcome.original_id == hypothesis.id
        assert outcome.hypothesis.crucial_experiment == "Knock out the mediator"
        assert outcome.hypothesis.calibration is not None
        creative.refine.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_never_converges(self):
        """Without approval the result is the lineage-depth-2 child, calibrated but unaudited."""
        from src.contracts.schemas import Hypothesis, SynthesisConfig
        from src.ralph.refinement import RefinementLoop

        creative = make_creative()
        auditor = make_auditor()
        loop = RefinementLoop(auditor, creative, SynthesisConfig(max_refinement_iterations=2), concepts=concepts())
        hypothesis = Hypothesis(thesis="Idea")

        outcome = await loop.refine_one(hypothesis)

        assert outcome.converged is False
        assert outcome.convergence_step is None
        assert len(outcome.verdicts) == 2
        assert [v.iteration for v in outcome.verdicts] == [0, 1]
        assert outcome.hypothesis.iteration == 2
        assert outcome.hypothesis.thesis == "Idea (refined) (refined)"
        assert outcome.hypothesis.calibration is not None
        assert auditor.audit.await_count == 2
        assert creative.refine.await_count == 2

    @pytest.mark.asyncio
    async def test_converges_after_refinement(self):
        """Approval on the second audit records step 1 and keeps the child."""
        from src.contracts.schemas import Hypothesis, SynthesisConfig
        from src.ralph.refinement import RefinementLoop

        loop = RefinementLoop(make_auditor(approve_at=1), make_creative(), SynthesisConfig(max_refinement_iterations=3))
        hypothesis = Hypothesis(thesis="Idea")

        outcome = await loop.refine_one(hypothesis)

        assert outcome.convergence_step == 1
        assert outcome.hypothesis.parent_id == hypothesis.id
        assert outcome.verdicts[-1].approved

    @pytest.mark.asyncio
    async def test_failure_keeps_last_audited_state(self):
        """A failing refine step returns the audited hypothesis with its verdicts so far."""
        from src.contracts.schemas import EventKind, Hypothesis, SynthesisConfig
        from src.ralph.refinement import RefinementLoop

        creative = MagicMock()
        creative.refine = AsyncMock(side_effect=ConnectionError("creative route down"))
        events = []
        loop = RefinementLoop(
            make_auditor(), creative, SynthesisConfig(max_refinement_iterations=3), on_event=events.append,
        )
        hypothesis = Hypothesis(thesis="Idea")

        outcome = await loop.refine_one(hypothesis)

        assert outcome.converged is False
        assert outcome.hypothesis.id == hypothesis.id
        assert outcome.hypothesis.crucial_experiment == "Knock out the mediator"
        assert len(outcome.verdicts) == 1
        assert outcome.error == "creative route down"
        assert events[-1].kind is EventKind.STAGE_PROGRESS
        assert events[-1].data["failed"] is True

    @pytest.mark.asyncio
    async def test_verdict_refers_to_audited_content(self):
        """The crucial experiment annotates the approved hypothesis without changing its claim."""
        from src.contracts.schemas import Hypothesis, SynthesisConfig
        from src.ralph.refinement import RefinementLoop

        loop = RefinementLoop(make_auditor(approve_at=0), make_creative(), SynthesisConfig())
        hypothesis = Hypothesis(thesis="Idea", mechanism="Mediator X", prediction="Y rises")

        outcome = await loop.refine_one(hypothesis)

        verdict = outcome.final_verdict
        assert verdict.hypothesis_id == outcome.hypothesis.id == hypothesis.id
        assert (outcome.hypothesis.thesis, outcome.hypothesis.mechanism, outcome.hypothesis.prediction) == (
            "Idea", "Mediator X", "Y rises",
        )
        assert outcome.hypothesis.crucial_experiment == "Knock out the mediator"

    @pytest.mark.asyncio
    async def test_prior_art_feeds_calibration(self):
        """Prior art found for each hypothesis lowers its distance factor."""
        from src.contracts.schemas import Hypothesis, PriorArt, SynthesisConfig
        from src.ralph.refinement import RefinementLoop

        async def prior_art_fn(hypothesis):
            return [PriorArt(id="p", title="Known result", similarity=0.9)]

        loop = RefinementLoop(make_auditor(approve_at=0), make_creative(), SynthesisConfig(), prior_art_fn=prior_art_fn)
        outcome = await loop.refine_one(Hypothesis(thesis="Idea"))

        assert outcome.hypothesis.calibration.prior_art_distance == pytest.approx(0.1)
        assert outcome.hypothesis.prior_art[0].title == "Known result"
        assert loop.auditor.audit.await_args.args[1][0].id == "p"

    @pytest.mark.asyncio
    async def test_events(self):
        """Progress is reported for refinements and approval at the end."""
        from src.contracts.schemas import EventKind, Hypothesis, PipelineStage, SynthesisConfig
        from src.ralph.refinement import RefinementLoop

        events = []
        loop = RefinementLoop(
            make_auditor(approve_at=1), make_creative(), SynthesisConfig(max_refinement_iterations=2),
            on_event=events.append,
        )
        await loop.refine_one(Hypothesis(thesis="Idea"))

        assert [e.kind for e in events] == [EventKind.STAGE_PROGRESS, EventKind.HYPOTHESIS_APPROVED]
        assert all(e.stage is PipelineStage.REFINEMENT for e in events)
        assert events[1].data["iteration"] == 1


class TestRefineAll:
    """Tests for bounded concurrent refinement."""

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        """No more than parallel_concurrency workers are in flight."""
        from src.contracts.schemas import Hypothesis, SynthesisConfig
        from src.ralph.refinement import RefinementLoop

        in_flight = 0
        peak = 0

        async def slow_audit(hypothesis, prior_art, iteration=0):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return verdict_for(hypothesis, prior_art, iteration, approved=True)

        auditor = MagicMock()
        auditor.audit = AsyncMock(side_effect=slow_audit)
        loop = RefinementLoop(auditor, make_creative(), SynthesisConfig(parallel_concurrency=2))
        hypotheses = [Hypothesis(thesis=f"Idea {i}") for i in range(6)]

        outcomes = await loop.refine_all(hypotheses)

        assert len(outcomes) == 6
        assert [o.original_id for o in outcomes] == [h.id for h in hypotheses]
        assert peak <= 2
        assert loop.gauge.peak == 2
        assert loop.gauge.current == 0

    @pytest.mark.asyncio
    async def test_failed_worker_keeps_outcome(self):
        """An unexpected error in one worker yields an unconverged outcome and spares the others."""
        from src.contracts.schemas import Hypothesis, SynthesisConfig
        from src.ralph.refinement import RefinementLoop

        async def audit(hypothesis, prior_art, iteration=0):
            if hypothesis.thesis == "Broken":
                raise RuntimeError("boom")
            return verdict_for(hypothesis, prior_art, iteration, approved=True)

        auditor = MagicMock()
        auditor.audit = AsyncMock(side_effect=audit)
        loop = RefinementLoop(auditor, make_creative(), SynthesisConfig())
        broken = Hypothesis(thesis="Broken")

        outcomes = await loop.refine_all([Hypothesis(thesis="Fine"), broken])

        assert [o.hypothesis.thesis for o in outcomes] == ["Fine", "Broken"]
        assert outcomes[0].converged and outcomes[0].error is None
        assert outcomes[1].converged is False
        assert outcomes[1].original_id == broken.id
        assert outcomes[1].verdicts == []
        assert outcomes[1].error == "boom"

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        """A set cancel event aborts the whole stage."""
        from src.contracts.errors import PipelineCancelledError
        from src.contracts.schemas import Hypothesis, SynthesisConfig
        from src.ralph.refinement import RefinementLoop

        cancel = asyncio.Event()
        cancel.set()
        auditor = make_auditor(approve_at=0)
        loop = RefinementLoop(auditor, make_creative(), SynthesisConfig(), cancel_event=cancel)

        with pytest.raises(PipelineCancelledError):
            await loop.refine_all([Hypothesis(thesis="Idea")])
        auditor.audit.assert_not_awaited()
