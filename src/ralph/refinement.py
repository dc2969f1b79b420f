"""Audit and refinement loop.

Each hypothesis goes through up to ``max_refinement_iterations`` rounds of:
recalibrate against prior art, audit, and (if not approved) refine into a
child hypothesis. Hypotheses are processed concurrently, bounded by an
``asyncio.Semaphore``.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable

from src.contracts.errors import PipelineCancelledError
from src.contracts.schemas import (
    AuditVerdict,
    Contradiction,
    EventKind,
    Hypothesis,
    PipelineStage,
    PriorArt,
    RefinementOutcome,
    SourceConcepts,
    SynthesisConfig,
    TelemetryEvent,
)
from src.soul.auditor import AuditPanel
from src.soul.prompts.creative import CreativeSoul
from src.verify.calibration import apply_calibration, estimate_calibration_factors

PriorArtFn = Callable[[Hypothesis], Awaitable[list[PriorArt]]]


class OccupancyGauge:
    """Tracks current and peak number of in-flight workers."""

    def __init__(self):
        self.current = 0
        self.peak = 0

    def __enter__(self) -> "OccupancyGauge":
        self.current += 1
        self.peak = max(self.peak, self.current)
        return self

    def __exit__(self, *exc: Any) -> None:
        self.current -= 1


async def _no_prior_art(_: Hypothesis) -> list[PriorArt]:
    return []


class RefinementLoop:
    """Runs audit/refine rounds per hypothesis under a concurrency limit.

    Usage:
        loop = RefinementLoop(auditor, creative, config, concepts=concepts)
        outcomes = await loop.refine_all(candidates)
    """

    def __init__(
        self,
        auditor: AuditPanel,
        creative: CreativeSoul,
        config: SynthesisConfig | None = None,
        *,
        concepts: list[SourceConcepts] | None = None,
        contradictions: list[Contradiction] | None = None,
        prior_art_fn: PriorArtFn | None = None,
        on_event: Callable[[TelemetryEvent], Any] | None = None,
        cancel_event: asyncio.Event | None = None,
    ):
        self.auditor = auditor
        self.creative = creative
        self.config = config or SynthesisConfig()
        self.concepts = concepts or []
        self.contradictions = contradictions or []
        self.prior_art_fn = prior_art_fn or _no_prior_art
        self.on_event = on_event
        self.cancel_event = cancel_event

        self.semaphore = asyncio.Semaphore(self.config.parallel_concurrency)
        self.gauge = OccupancyGauge()

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise PipelineCancelledError(PipelineStage.REFINEMENT.value)

    async def _emit(self, kind: EventKind, hypothesis_id: str, detail: str, **data: Any) -> None:
        if self.on_event is None:
            return
        event = TelemetryEvent(
            kind=kind,
            stage=PipelineStage.REFINEMENT,
            hypothesis_id=hypothesis_id,
            detail=detail,
            data=data,
        )
        try:
            if inspect.iscoroutinefunction(self.on_event):
                await self.on_event(event)
            else:
                self.on_event(event)
        except Exception as e:
            print(f"[WARN] Error in refinement event callback: {e}")

    async def _calibrate(self, hypothesis: Hypothesis) -> tuple[Hypothesis, list[PriorArt]]:
        prior_art = await self.prior_art_fn(hypothesis)
        factors = estimate_calibration_factors(self.concepts, self.contradictions, hypothesis, prior_art)
        return apply_calibration(hypothesis, factors, prior_art, self.config.calibration), prior_art

    async def refine_one(self, hypothesis: Hypothesis) -> RefinementOutcome:
        """Audit and refine a single hypothesis until approval or the iteration budget.

        An unexpected failure ends the loop early with an unconverged outcome
        for the last hypothesis that was produced successfully.
        """
        current = hypothesis
        verdicts: list[AuditVerdict] = []

        try:
            for iteration in range(self.config.max_refinement_iterations):
                self._check_cancelled()
                current, prior_art = await self._calibrate(current)

                verdict = await self.auditor.audit(current, prior_art, iteration)
                verdicts.append(verdict)

                crucial = verdict.methodological.crucial_experiment
                if crucial and crucial != "N/A":
                    current = current.annotate(crucial_experiment=crucial)

                if verdict.approved:
                    await self._emit(
                        EventKind.HYPOTHESIS_APPROVED,
                        current.id,
                        f"Approved at iteration {iteration} with score {verdict.validity_score}",
                        validity_score=verdict.validity_score,
                        iteration=iteration,
                    )
                    return RefinementOutcome(
                        original_id=hypothesis.id,
                        hypothesis=current,
                        verdicts=verdicts,
                        converged=True,
                        convergence_step=iteration,
                    )

                await self._emit(
                    EventKind.STAGE_PROGRESS,
                    current.id,
                    f"Refining after iteration {iteration} (score {verdict.validity_score})",
                    validity_score=verdict.validity_score,
                    iteration=iteration,
                    degraded=verdict.degraded,
                )
                current = await self.creative.refine(current, verdict, prior_art)

            # Budget exhausted: the last child was never audited, but gets calibrated
            self._check_cancelled()
            current, _ = await self._calibrate(current)
        except PipelineCancelledError:
            raise
        except Exception as e:
            print(f"[WARN] Refinement failed for {hypothesis.id} after {len(verdicts)} audits: {e}")
            return await self._failed(hypothesis, current, verdicts, e)

        return RefinementOutcome(
            original_id=hypothesis.id,
            hypothesis=current,
            verdicts=verdicts,
            converged=False,
        )

    async def _failed(
        self,
        original: Hypothesis,
        current: Hypothesis,
        verdicts: list[AuditVerdict],
        error: BaseException,
    ) -> RefinementOutcome:
        await self._emit(
            EventKind.STAGE_PROGRESS,
            current.id,
            f"Refinement stopped after {len(verdicts)} audits: {error}"[:200],
            iteration=len(verdicts),
            failed=True,
        )
        return RefinementOutcome(
            original_id=original.id,
            hypothesis=current,
            verdicts=verdicts,
            converged=False,
            error=str(error) or type(error).__name__,
        )

    async def _bounded(self, hypothesis: Hypothesis) -> RefinementOutcome:
        async with self.semaphore:
            with self.gauge:
                return await self.refine_one(hypothesis)

    async def refine_all(self, hypotheses: list[Hypothesis]) -> list[RefinementOutcome]:
        """Refine all hypotheses concurrently, at most ``parallel_concurrency`` at a time.

        Returns one outcome per hypothesis, in input order. Failures other than
        cancellation become unconverged outcomes carrying the error.
        """
        results = await asyncio.gather(
            *(self._bounded(h) for h in hypotheses),
            return_exceptions=True,
        )

        outcomes = []
        for hypothesis, result in zip(hypotheses, results):
            if isinstance(result, PipelineCancelledError) or not isinstance(result, (Exception, RefinementOutcome)):
                raise result
            if isinstance(result, Exception):
                print(f"[WARN] Refinement worker failed for {hypothesis.id}: {result}")
                result = await self._failed(hypothesis, hypothesis, [], result)
            outcomes.append(result)

        print(
            f"[Refinement] {sum(o.converged for o in outcomes)}/{len(outcomes)} converged, "
            f"{sum(o.error is not None for o in outcomes)} failed, peak concurrency {self.gauge.peak}"
        )
        return outcomes
