"""Prose Soul - turns a final hypothesis into a short scientific write-up."""

from src.contracts.schemas import Contradiction, Hypothesis
from src.soul.prompts.base import BaseSoul


class ProseSoul(BaseSoul):
    """Writes the abstract-style summary for top-ranked hypotheses."""

    role = "prose"
    description = """You write concise, precise scientific prose in the register of a journal abstract.
No hype, no hedging beyond what the evidence warrants."""

    async def write(self, hypothesis: Hypothesis, contradictions: list[Contradiction]) -> str:
        """Return prose for ``hypothesis``; empty string if the call fails."""
        resolved = ", ".join(c.concept for c in contradictions) or "none"
        prompt = f"""{self.get_persona_prompt()}

<hypothesis_data>
Thesis: {hypothesis.thesis}
Description: {hypothesis.description}
Mechanism: {hypothesis.mechanism or "Not specified"}
Prediction: {hypothesis.prediction or "Not specified"}
Crucial experiment: {hypothesis.crucial_experiment or "Not specified"}
Contradictions resolved: {resolved}
</hypothesis_data>

<task>
Write 2-3 paragraphs: background tension, proposed mechanism, and the experiment that would falsify it.
Plain text only.
</task>
"""
        response = await self._call_oracle(prompt, "write")
        return (response or "").strip()
