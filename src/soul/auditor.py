"""Audit panel - three-call critique of a single hypothesis.

The methodological and adversarial critiques run side by side, then the
synthesizer arbitrates between them. Any malformed output or failed call
falls back to the critique's conservative default, so an audit always
produces a verdict (never approved when degraded by the synthesizer).
"""

import asyncio

from src.contracts.schemas import (
    ArchitectSynthesis,
    AuditVerdict,
    Hypothesis,
    MethodologicalCritique,
    PriorArt,
)
from src.soul.memory import SuccessMemory
from src.soul.prompts.methodical import MethodicalSoul
from src.soul.prompts.skeptic import SkepticSoul
from src.soul.prompts.synthesizer import SynthesizerSoul

LOOSE_EXPLANATION = (
    "The explanation is too 'loose'. Tighten the mechanism so that slight changes would falsify it."
)
SHALLOW_EXPLANATION = (
    "Move from 'Prediction' to 'Explanation'. Why exactly does this happen at the fundamental level?"
)
DEEP_EXPLANATION = "Theory demonstrates significant explanatory depth. Proceed to crucial testing."

# Depth below which the critique asks for a mechanism instead of a prediction
SHALLOW_DEPTH = 50

# Audits scoring above this are offered to the success memory
MEMORY_MIN_SCORE = 70


def build_remediation_plan(
    synthesis: ArchitectSynthesis,
    methodological: MethodologicalCritique,
) -> list[str]:
    """Synthesizer hardening steps followed by depth-derived instructions."""
    plan = list(synthesis.required_hardening)
    extra = []
    if not methodological.hard_to_vary:
        extra.append(LOOSE_EXPLANATION)
    if methodological.explanation_depth < SHALLOW_DEPTH:
        extra.append(SHALLOW_EXPLANATION)
    return plan + (extra or [DEEP_EXPLANATION])


class AuditPanel:
    """Runs the methodical, skeptic and synthesizer souls on a hypothesis."""

    def __init__(
        self,
        methodical: MethodicalSoul,
        skeptic: SkepticSoul,
        synthesizer: SynthesizerSoul,
        memory: SuccessMemory | None = None,
    ):
        self.methodical = methodical
        self.skeptic = skeptic
        self.synthesizer = synthesizer
        self.memory = memory

    async def audit(
        self,
        hypothesis: Hypothesis,
        prior_art: list[PriorArt],
        iteration: int = 0,
    ) -> AuditVerdict:
        """Audit one hypothesis at one iteration.

        Args:
            hypothesis: The hypothesis under review
            prior_art: Related prior art shown to the methodological critic
            iteration: Refinement iteration this verdict belongs to

        Returns:
            AuditVerdict; ``degraded`` is True if any of the three calls fell back
        """
        guidance = self.memory.guidance_for(hypothesis.thesis) if self.memory else ""

        (methodological, m_ok), (adversarial, a_ok) = await asyncio.gather(
            self.methodical.critique(hypothesis, prior_art, guidance),
            self.skeptic.critique(hypothesis),
        )
        synthesis, s_ok = await self.synthesizer.synthesize(methodological, adversarial)

        verdict = AuditVerdict(
            hypothesis_id=hypothesis.id,
            iteration=iteration,
            methodological=methodological,
            adversarial=adversarial,
            approved=synthesis.is_approved,
            validity_score=synthesis.synthesis_score,
            remediation_plan=build_remediation_plan(synthesis, methodological),
            remediation_constraints=list(synthesis.remediation_constraints),
            degraded=not (m_ok and a_ok and s_ok),
        )

        if self.memory is not None and verdict.validity_score > MEMORY_MIN_SCORE:
            self.memory.record_success(
                hypothesis.thesis,
                synthesis.fundamental_breakthrough,
                verdict.validity_score,
                synthesis.verdict,
            )

        status = "APPROVED" if verdict.approved else "rejected"
        print(f"[Audit] {hypothesis.id} iter={iteration} score={verdict.validity_score} {status}")
        return verdict
