"""Synthesis Orchestrator - pipeline coordinator for hypothesis synthesis runs.

Runs the stages of a synthesis run in order:
- Concept extraction and contradiction detection (thin oracle stages)
- Metropolis-Hastings exploration, with a basis-trap burst when needed
- Novelty gating against rejected-idea equivalence classes
- Concurrent audit/refinement, domain constraint checks and prose
- Final ranking

Progress is reported as an ordered stream of TelemetryEvents through the
``on_event`` callback.
"""

import asyncio
import inspect
import json
import random
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable

from dotenv import load_dotenv

from src.contracts.errors import PipelineCancelledError
from src.contracts.schemas import (
    CallOutcome,
    CallRecord,
    ConvergenceStats,
    EventKind,
    GateRejection,
    Hypothesis,
    HypothesisOrigin,
    PipelineStage,
    RefinementOutcome,
    SourceDocument,
    SynthesisConfig,
    SynthesisResult,
    TelemetryEvent,
)
from src.kb.concept_extractor import ConceptExtractor
from src.kb.embedding_service import EmbeddingService
from src.kb.semantic_search import SemanticPriorArtSearch
from src.kb.vector_store import VectorStore
from src.ralph.basis_trap import BasisTrapController
from src.ralph.mcmc import HypothesisExplorer, deduplicate
from src.ralph.refinement import RefinementLoop
from src.ralph.resilience import ProviderHealthRegistry, ResilientCallEnvelope
from src.soul.auditor import AuditPanel
from src.soul.llm_client import GenerativeOracle, LLMClient
from src.soul.memory import SuccessMemory
from src.soul.prompts.creative import CreativeSoul
from src.soul.prompts.methodical import MethodicalSoul
from src.soul.prompts.prose import ProseSoul
from src.soul.prompts.skeptic import SkepticSoul
from src.soul.prompts.synthesizer import SynthesizerSoul
from src.verify.constraints import ConstraintPipeline
from src.verify.novelty_gate import NoveltyGate

load_dotenv()


class SynthesisOrchestrator:
    """Coordinates a complete synthesis run.

    Usage:
        orchestrator = SynthesisOrchestrator(SynthesisConfig(), callbacks={"on_event": print})
        result = await orchestrator.run(sources)
    """

    def __init__(
        self,
        config: SynthesisConfig | None = None,
        *,
        oracle: GenerativeOracle | None = None,
        embedding_service: EmbeddingService | None = None,
        vector_store: VectorStore | None = None,
        memory: SuccessMemory | None = None,
        constraints: ConstraintPipeline | None = None,
        callbacks: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            config: Run configuration (validated on construction)
            oracle: Generative oracle (defaults to the multi-provider LLMClient)
            embedding_service: Embedding service (defaults to Gemini embeddings)
            vector_store: Optional store for prior rejections and run records
            memory: Success memory shared across runs
            constraints: Domain constraint pipeline
            callbacks: ``on_event`` (TelemetryEvent) and ``on_call_record`` (CallRecord)
            cancel_event: Setting it cancels the run at the next checkpoint
            rng: Random source for sampling and jitter
            sleep: Backoff sleep function (injectable for tests)
        """
        self.config = config or SynthesisConfig()
        self.callbacks = callbacks or {}
        self.cancel_event = cancel_event or asyncio.Event()
        self.rng = rng or random.Random()

        self.oracle = oracle or LLMClient(provider=self.config.primary_provider)
        self.embedding_service = embedding_service or EmbeddingService()
        self.vector_store = vector_store

        self.health = ProviderHealthRegistry()
        self.envelope = ResilientCallEnvelope(
            self.config.retry,
            self.health,
            on_record=self._on_call_record,
            cancel_event=self.cancel_event,
            sleep=sleep,
            rng=self.rng,
        )

        # Souls: thin stages on the flash model, generation and audit on the pro model
        routes = {"primary": self.config.primary_provider, "secondary": self.config.secondary_provider}
        flash = {**routes, "model": self.config.flash_model}
        pro = {**routes, "model": self.config.pro_model}
        self.extractor = ConceptExtractor(self.oracle, self.envelope, **flash)
        self.prose = ProseSoul(self.oracle, self.envelope, **flash)
        self.creative = CreativeSoul(self.oracle, self.envelope, **pro)
        self.methodical = MethodicalSoul(self.oracle, self.envelope, **pro)
        self.skeptic = SkepticSoul(self.oracle, self.envelope, **pro)
        self.synthesizer = SynthesizerSoul(self.oracle, self.envelope, **pro)

        self.memory = memory or SuccessMemory()
        self.auditor = AuditPanel(self.methodical, self.skeptic, self.synthesizer, self.memory)
        self.explorer = HypothesisExplorer(self.creative, self.config.mcmc, self.rng)
        self.trap = BasisTrapController(self.config.basis_trap)
        self.gate = NoveltyGate(self.embedding_service, self.vector_store, self.config.novelty_gate)
        self.prior_art = SemanticPriorArtSearch(self.embedding_service, self.vector_store)
        self.constraints = constraints or ConstraintPipeline()

        # Run state
        self.run_id = ""
        self.current_stage: PipelineStage | None = None
        self.events: list[TelemetryEvent] = []

    @property
    def souls(self) -> list:
        return [self.extractor, self.prose, self.creative, self.methodical, self.skeptic, self.synthesizer]

    def cancel(self) -> None:
        """Request cancellation; in-flight calls finish, no new ones start."""
        self.cancel_event.set()

    # =========================================================================
    # Telemetry
    # =========================================================================

    async def _invoke_callback(self, name: str, payload: Any) -> None:
        if name not in self.callbacks:
            return
        try:
            if inspect.iscoroutinefunction(self.callbacks[name]):
                await self.callbacks[name](payload)
            else:
                self.callbacks[name](payload)
        except Exception as e:
            print(f"[WARN] Error in {name} callback: {e}")

    async def _record_event(self, event: TelemetryEvent) -> None:
        self.events.append(event)
        await self._invoke_callback("on_event", event)

    async def _emit(
        self,
        kind: EventKind,
        detail: str = "",
        *,
        stage: PipelineStage | None = None,
        operation: str | None = None,
        hypothesis_id: str | None = None,
        **data: Any,
    ) -> None:
        await self._record_event(TelemetryEvent(
            kind=kind,
            stage=stage or self.current_stage,
            operation=operation,
            hypothesis_id=hypothesis_id,
            detail=detail,
            data=data,
        ))

    async def _on_call_record(self, record: CallRecord) -> None:
        await self._invoke_callback("on_call_record", record)
        if record.outcome is CallOutcome.RETRY:
            await self._emit(
                EventKind.RETRY,
                f"Retrying {record.operation} on {record.route} ({record.error_class.value})",
                operation=record.operation,
                route=record.route,
                attempt=record.attempt,
                delay_ms=record.delay_ms,
            )
        elif record.outcome is CallOutcome.FALLBACK:
            await self._emit(
                EventKind.FALLBACK,
                f"Falling back from {record.route} for {record.operation}",
                operation=record.operation,
                route=record.route,
                attempt=record.attempt,
            )

    async def _start_stage(self, stage: PipelineStage, detail: str = "") -> None:
        if self.cancel_event.is_set():
            raise PipelineCancelledError(stage.value)
        self.current_stage = stage
        await self._emit(EventKind.STAGE_STARTED, detail or f"{stage.value} started", stage=stage)

    async def _complete_stage(self, stage: PipelineStage, detail: str = "", **data: Any) -> None:
        await self._emit(EventKind.STAGE_COMPLETED, detail or f"{stage.value} completed", stage=stage, **data)

    async def _skip_stage(self, stage: PipelineStage, reason: str) -> None:
        if self.cancel_event.is_set():
            raise PipelineCancelledError(stage.value)
        self.current_stage = stage
        await self._emit(EventKind.STAGE_SKIPPED, reason, stage=stage)

    # =========================================================================
    # Run
    # =========================================================================

    async def run(
        self,
        sources: list[SourceDocument],
        reference_documents: list[SourceDocument] | None = None,
        output_dir: Path | None = None,
    ) -> SynthesisResult:
        """Run a complete synthesis.

        Args:
            sources: Source documents to synthesize across
            reference_documents: Known literature indexed as prior art
            output_dir: Directory to save the run result

        Returns:
            SynthesisResult with ranked hypotheses and run statistics

        Raises:
            PipelineCancelledError: if the run was cancelled
        """
        self.run_id = str(uuid.uuid4())[:8]
        self.events = []
        self.trap.reset()
        result = SynthesisResult(run_id=self.run_id, sources=[s.name for s in sources])
        print(f"[Orchestrator] Run {self.run_id}: {len(sources)} sources")

        # Stage 1: concept extraction
        await self._start_stage(PipelineStage.CONCEPT_EXTRACTION, f"Extracting concepts from {len(sources)} sources")
        for i, source in enumerate(sources):
            result.concepts.append(await self.extractor.extract(source))
            await self._emit(EventKind.STAGE_PROGRESS, f"Extracted {source.name}", completed=i + 1, total=len(sources))
        await self._complete_stage(PipelineStage.CONCEPT_EXTRACTION, count=len(result.concepts))

        # Stage 2: contradictions
        if len(result.concepts) < 2:
            await self._skip_stage(PipelineStage.CONTRADICTION_DETECTION, "Fewer than two sources")
        else:
            await self._start_stage(PipelineStage.CONTRADICTION_DETECTION)
            result.contradictions = await self.extractor.detect_contradictions(result.concepts)
            await self._complete_stage(
                PipelineStage.CONTRADICTION_DETECTION,
                f"Found {len(result.contradictions)} contradictions",
                count=len(result.contradictions),
            )

        # Stage 3: exploration (+ basis-trap burst)
        await self._start_stage(PipelineStage.EXPLORATION)
        if reference_documents:
            indexed = await self.prior_art.index_documents(reference_documents)
            await self._emit(EventKind.STAGE_PROGRESS, f"Indexed {indexed} reference documents", indexed=indexed)
        candidates = await self._explore(result)
        await self._complete_stage(
            PipelineStage.EXPLORATION,
            f"{len(candidates)} candidates",
            count=len(candidates),
            expansion_triggered=result.expansion_triggered,
        )

        # Stage 4: novelty gate
        if not self.config.novelty_gate.enabled:
            await self._skip_stage(PipelineStage.NOVELTY_GATE, "Novelty gate disabled")
        else:
            await self._start_stage(PipelineStage.NOVELTY_GATE)
            candidates = await self._gate(candidates, result)
            await self._complete_stage(
                PipelineStage.NOVELTY_GATE,
                f"{len(candidates)} passed, {len(result.gate_rejections)} rejected",
                passed=len(candidates),
                rejected=len(result.gate_rejections),
            )

        if self.config.max_novel_ideas is not None and len(candidates) > self.config.max_novel_ideas:
            candidates = sorted(candidates, key=lambda h: (-h.confidence, h.energy))[: self.config.max_novel_ideas]
            print(f"[Orchestrator] Capped candidates to {len(candidates)}")

        # Stage 5: audit and refinement
        if not candidates:
            await self._skip_stage(PipelineStage.REFINEMENT, "No candidates to refine")
        else:
            await self._start_stage(PipelineStage.REFINEMENT, f"Refining {len(candidates)} hypotheses")
            result.outcomes = await self._refine(candidates, result)
            await self._complete_stage(
                PipelineStage.REFINEMENT,
                f"{result.convergence.converged_count}/{len(result.outcomes)} converged",
                converged=result.convergence.converged_count,
                peak_concurrency=result.convergence.peak_concurrency,
            )

        # Stage 6: domain constraints
        await self._start_stage(PipelineStage.CONSTRAINT_VALIDATION)
        for outcome in result.outcomes:
            outcome.hypothesis = self.constraints.apply(outcome.hypothesis, self.config.domain)
        await self._complete_stage(PipelineStage.CONSTRAINT_VALIDATION)

        # Novelty threshold on prior-art distance
        kept: list[RefinementOutcome] = []
        for outcome in result.outcomes:
            if self._passes_novelty_threshold(outcome.hypothesis):
                kept.append(outcome)
                continue
            result.below_novelty_threshold.append(outcome.hypothesis.id)
            await self._emit(
                EventKind.HYPOTHESIS_REFUTED,
                "Prior-art distance below novelty threshold",
                hypothesis_id=outcome.hypothesis.id,
                reason="novelty_threshold",
            )

        # Stage 7: prose
        if not self.config.generate_prose or not kept:
            await self._skip_stage(PipelineStage.PROSE, "Prose generation disabled" if kept else "Nothing to write up")
        else:
            await self._start_stage(PipelineStage.PROSE)
            for outcome in kept:
                if self.cancel_event.is_set():
                    raise PipelineCancelledError(PipelineStage.PROSE.value)
                prose = await self.prose.write(outcome.hypothesis, result.contradictions)
                outcome.hypothesis = outcome.hypothesis.annotate(prose=prose)
            await self._complete_stage(PipelineStage.PROSE, count=len(kept))

        # Stage 8: ranking
        await self._start_stage(PipelineStage.RANKING)
        result.hypotheses = [o.hypothesis for o in sorted(kept, key=self._rank_key, reverse=True)]
        await self._persist(result)
        await self._complete_stage(PipelineStage.RANKING, f"{len(result.hypotheses)} ranked hypotheses")

        result.total_cost_usd = sum(soul.total_cost for soul in self.souls)
        result.completed_at = datetime.now()

        if output_dir:
            await self._save_run(output_dir, result)

        print(f"[Orchestrator] Run {self.run_id} complete: {len(result.hypotheses)} hypotheses")
        return result

    # =========================================================================
    # Stage helpers
    # =========================================================================

    async def _explore(self, result: SynthesisResult) -> list[Hypothesis]:
        exploration = await self.explorer.explore(
            result.concepts,
            result.contradictions,
            research_focus=self.config.research_focus,
        )
        candidates = list(exploration.samples)
        result.exploration_acceptance_rate = exploration.acceptance_rate
        for h in candidates:
            await self._emit(EventKind.HYPOTHESIS_GENERATED, h.thesis[:120], hypothesis_id=h.id, energy=h.energy)

        if len(candidates) < 2:
            return candidates

        embeddings = await self.embedding_service.embed_batch([h.embedding_text for h in candidates])
        evaluation = self.trap.evaluate(candidates, embeddings)
        result.spectral_metrics = evaluation.metrics
        await self._emit(
            EventKind.STAGE_PROGRESS,
            "Spectral metrics",
            operation="basis_trap",
            **evaluation.metrics.model_dump(),
            state=evaluation.state.value,
        )

        if evaluation.directive is None:
            return candidates

        result.expansion_triggered = evaluation.triggered
        directive = evaluation.directive
        await self._emit(
            EventKind.STAGE_PROGRESS,
            f"Basis trap: exploring at T={directive.temperature}",
            operation="basis_trap",
            temperature=directive.temperature,
            reason=directive.reason,
        )
        burst = await self.explorer.explore(
            result.concepts,
            result.contradictions,
            temperature=directive.temperature,
            num_samples=directive.num_samples,
            burn_in=directive.burn_in,
            initial=candidates[0],
            origin=HypothesisOrigin.EXPANSION,
        )
        known = {h.normalized_key for h in candidates}
        for h in deduplicate(burst.samples):
            if h.normalized_key in known:
                continue
            candidates.append(h)
            await self._emit(
                EventKind.HYPOTHESIS_GENERATED,
                h.thesis[:120],
                hypothesis_id=h.id,
                energy=h.energy,
                origin=HypothesisOrigin.EXPANSION.value,
            )
        return candidates

    async def _gate(self, candidates: list[Hypothesis], result: SynthesisResult) -> list[Hypothesis]:
        passed = []
        for h in candidates:
            match = await self.gate.check(h)
            if match is None:
                passed.append(h)
                continue
            result.gate_rejections.append(GateRejection(hypothesis_id=h.id, thesis=h.thesis, match=match))
            await self._emit(
                EventKind.HYPOTHESIS_REFUTED,
                f"Within {match.class_id}: {match.representative_reason}"[:200],
                hypothesis_id=h.id,
                reason="novelty_gate",
                class_id=match.class_id,
                distance=match.distance,
            )
        return passed

    async def _refine(self, candidates: list[Hypothesis], result: SynthesisResult) -> list[RefinementOutcome]:
        loop = RefinementLoop(
            self.auditor,
            self.creative,
            self.config,
            concepts=result.concepts,
            contradictions=result.contradictions,
            prior_art_fn=self.prior_art.find_prior_art,
            on_event=self._record_event,
            cancel_event=self.cancel_event,
        )
        outcomes = await loop.refine_all(candidates)

        for outcome in outcomes:
            if outcome.converged:
                continue
            verdict = outcome.final_verdict
            score = verdict.validity_score if verdict else 0
            if outcome.error is not None:
                reason = f"Refinement failed after {len(outcome.verdicts)} audits: {outcome.error}"
            else:
                first_step = verdict.remediation_plan[0] if verdict and verdict.remediation_plan else "no remediation"
                reason = f"Not approved after {len(outcome.verdicts)} audits (score {score}): {first_step}"
            await self.gate.record_rejection(outcome.hypothesis, reason)
            await self._emit(
                EventKind.HYPOTHESIS_REFUTED,
                reason[:200],
                hypothesis_id=outcome.hypothesis.id,
                reason="refinement_error" if outcome.error is not None else "audit",
                validity_score=score,
            )

        steps = [o.convergence_step for o in outcomes if o.converged and o.convergence_step is not None]
        result.convergence = ConvergenceStats(
            total_refinements=len(outcomes),
            converged_count=len(steps),
            mean_convergence_step=sum(steps) / len(steps) if steps else None,
            peak_concurrency=loop.gauge.peak,
        )
        return outcomes

    def _passes_novelty_threshold(self, hypothesis: Hypothesis) -> bool:
        if hypothesis.calibration is None:
            return True
        return hypothesis.calibration.prior_art_distance >= self.config.novelty_threshold

    @staticmethod
    def _rank_key(outcome: RefinementOutcome) -> tuple:
        verdict = outcome.final_verdict
        return (
            outcome.converged,
            verdict.validity_score if verdict else 0,
            outcome.hypothesis.confidence,
        )

    async def _persist(self, result: SynthesisResult) -> None:
        """Write hypotheses and verdicts to the vector store, if one is configured."""
        if self.vector_store is None:
            return
        try:
            for outcome in result.outcomes:
                h = outcome.hypothesis
                await self.vector_store.put_record(
                    "hypotheses",
                    h.id,
                    {"run_id": self.run_id, **h.model_dump(mode="json")},
                )
                for verdict in outcome.verdicts:
                    await self.vector_store.put_record(
                        "verdicts",
                        f"{verdict.hypothesis_id}:{verdict.iteration}",
                        {"run_id": self.run_id, **verdict.model_dump(mode="json")},
                    )
        except Exception as e:
            print(f"[WARN] Failed to persist run records: {e}")

    async def _save_run(self, output_dir: Path, result: SynthesisResult) -> None:
        """Save the run result and telemetry to disk."""
        run_dir = output_dir / result.run_id
        run_dir.mkdir(parents=True, exist_ok=True)

        def _save_task():
            with open(run_dir / "result.json", "w") as f:
                f.write(result.model_dump_json(indent=2))
            with open(run_dir / "events.json", "w") as f:
                json.dump([e.model_dump(mode="json") for e in self.events], f, indent=2)

        await asyncio.to_thread(_save_task)
        print(f"[Orchestrator] Saved run to {run_dir}")
