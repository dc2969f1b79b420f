"""Creative Soul - hypothesis generation, recombination and refinement.

The Creative soul proposes the states the sampler moves between:
- an initial synthesis across all sources
- recombinations of a random subset of source concepts
- refined versions of a hypothesis that address an audit verdict
"""

from pydantic import BaseModel, Field

from src.contracts.schemas import (
    AuditVerdict,
    Contradiction,
    Hypothesis,
    HypothesisOrigin,
    PriorArt,
    SourceConcepts,
)
from src.contracts.validators import create_output_instruction, parse_oracle_json
from src.soul.prompts.base import (
    HYPOTHESIS_FIELDS,
    BaseSoul,
    format_contradictions_for_prompt,
    format_hypothesis_for_prompt,
    format_sources_for_prompt,
)


class HypothesisDraft(BaseModel):
    """Hypothesis fields as returned by the oracle."""

    thesis: str = Field(..., min_length=1)
    description: str = Field(default="")
    mechanism: str = Field(default="")
    bridged_concepts: list[str] = Field(default_factory=list)
    prediction: str = Field(default="")


class CreativeSoul(BaseSoul):
    """The Creative soul generates and recombines hypotheses."""

    role = "creative"
    description = """Your superpower is making unexpected but mechanistic connections between sources.
You recombine claims from different sources into a single, falsifiable hypothesis.
Every hypothesis must name a concrete mechanism and a prediction that could prove it wrong."""

    async def generate_initial(
        self,
        concepts: list[SourceConcepts],
        contradictions: list[Contradiction],
        research_focus: str | None = None,
    ) -> Hypothesis:
        """Generate the sampler's starting state from all sources.

        Falls back to a placeholder state with no bridged concepts when the
        oracle output is unusable.
        """
        focus = f"\n<research_focus>\n{research_focus}\n</research_focus>\n" if research_focus else ""
        prompt = f"""{self.get_persona_prompt()}

<sources>
{format_sources_for_prompt(concepts)}
</sources>

<contradictions>
{format_contradictions_for_prompt(contradictions)}
</contradictions>
{focus}
<task>
Generate an initial synthesis hypothesis that bridges at least two of these sources.
Prefer hypotheses that resolve one of the contradictions.
</task>

{create_output_instruction(HYPOTHESIS_FIELDS)}
"""
        fallback = HypothesisDraft(
            thesis="Initial synthesis hypothesis",
            description="Combining insights from the provided sources",
        )
        draft, _ = parse_oracle_json(
            await self._call_oracle(prompt, "initial_state"),
            HypothesisDraft,
            fallback,
        )
        return Hypothesis(
            **draft.model_dump(),
            provenance=[c.source_name for c in concepts],
            origin=HypothesisOrigin.INITIAL,
        )

    async def propose_recombination(
        self,
        current: Hypothesis,
        concept_mix: list[SourceConcepts],
        temperature: float | None = None,
        origin: HypothesisOrigin = HypothesisOrigin.MCMC,
    ) -> Hypothesis | None:
        """Propose a new state recombining ``concept_mix``.

        Returns None when the call fails or the output cannot be parsed, which
        the sampler treats as a self-loop.
        """
        mix = "\n".join(f"Source {i + 1} ({c.source_name}): {c.summary()}" for i, c in enumerate(concept_mix))
        prompt = f"""{self.get_persona_prompt()}

You are exploring hypothesis space via recombination.

<current_hypothesis>
{format_hypothesis_for_prompt(current)}
</current_hypothesis>

<available_concepts>
{mix}
</available_concepts>

<task>
Propose a DIFFERENT hypothesis that recombines elements from the available concepts.
The new hypothesis should:
1. Bridge at least 2 of the available concepts
2. Be distinct from the current hypothesis (not just a restatement)
3. Be testable and falsifiable
</task>

{create_output_instruction(HYPOTHESIS_FIELDS)}
"""
        response = await self._call_oracle(prompt, "recombine", temperature=temperature)
        if response is None:
            return None

        sentinel = HypothesisDraft(thesis="-")
        draft, ok = parse_oracle_json(response, HypothesisDraft, sentinel)
        if not ok:
            return None

        return Hypothesis(
            **draft.model_dump(),
            provenance=[c.source_name for c in concept_mix],
            origin=origin,
        )

    async def refine(
        self,
        hypothesis: Hypothesis,
        verdict: AuditVerdict,
        prior_art: list[PriorArt],
    ) -> Hypothesis:
        """Produce a child hypothesis addressing the verdict's remediation plan.

        The child always gets a new id and a lineage pointer; on unusable
        output it keeps the parent's content.
        """
        prior_art_text = (
            "\n".join(f"- {p.title} (similarity {p.similarity:.2f})" for p in prior_art[:5])
            or "No significant prior art found."
        )
        remediation = "\n".join(f"- {step}" for step in verdict.remediation_plan) or "- None"
        constraints = "\n".join(f"- {c}" for c in verdict.remediation_constraints) or "- None"

        prompt = f"""{self.get_persona_prompt()}

You are refining a scientific hypothesis to increase its explanatory depth and make it hard to vary.

<original_hypothesis>
{format_hypothesis_for_prompt(hypothesis)}
</original_hypothesis>

<audit>
Validity score: {verdict.validity_score}/100
Methodological critique: {verdict.methodological.critique}
Adversarial critique: {verdict.adversarial.critique}
Biases detected: {", ".join(verdict.adversarial.biases_detected) or "none"}
Fallacies detected: {", ".join(verdict.adversarial.fallacies_detected) or "none"}
</audit>

<remediation_plan>
{remediation}
</remediation_plan>

<hard_constraints>
{constraints}
</hard_constraints>

<prior_art>
{prior_art_text}
</prior_art>

<task>
Generate a refined version that:
1. Strengthens the mechanism from surface description to a causal account
2. Removes easy-to-vary elements
3. Explicitly addresses every remediation step and obeys every hard constraint
4. Differentiates itself from the prior art
</task>

{create_output_instruction(HYPOTHESIS_FIELDS)}
"""
        fallback = HypothesisDraft(
            thesis=hypothesis.thesis,
            description=hypothesis.description,
            mechanism=hypothesis.mechanism,
            bridged_concepts=hypothesis.bridged_concepts,
            prediction=hypothesis.prediction,
        )
        draft, _ = parse_oracle_json(
            await self._call_oracle(prompt, "refine"),
            HypothesisDraft,
            fallback,
        )
        return hypothesis.refine_from(**draft.model_dump())
