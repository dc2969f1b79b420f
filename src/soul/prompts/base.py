"""Base soul class and common prompt utilities for all souls."""

from src.contracts.errors import PipelineCancelledError
from src.contracts.schemas import Contradiction, GenerationOptions, Hypothesis, SourceConcepts
from src.ralph.resilience import ResilientCallEnvelope
from src.soul.llm_client import GenerativeOracle


class BaseSoul:
    """Base class for every oracle-backed role in the pipeline.

    Each soul has a distinct persona and sends its calls through the shared
    resilient call envelope, primary route first.
    """

    role: str = "base"
    description: str = ""

    def __init__(
        self,
        oracle: GenerativeOracle,
        envelope: ResilientCallEnvelope,
        *,
        primary: str = "gemini",
        secondary: str | None = "groq",
        model: str | None = None,
    ):
        self.oracle = oracle
        self.envelope = envelope
        self.primary = primary
        self.secondary = secondary
        self.model = model

        # Usage tracking
        self.total_tokens = 0
        self.total_cost = 0.0

    async def _call_oracle(
        self,
        prompt: str,
        operation: str,
        temperature: float | None = None,
    ) -> str | None:
        """Call the oracle through the envelope.

        Returns None once retries and fallback are exhausted; callers then use
        their documented default. Cancellation always propagates.
        """

        async def _generate(route: str):
            return await self.oracle.generate(
                prompt,
                GenerationOptions(provider=route, model=self.model, temperature=temperature),
            )

        try:
            response = await self.envelope.execute_with_fallback(
                _generate,
                primary=self.primary,
                secondary=self.secondary,
                operation_name=f"{self.role}.{operation}",
            )
        except PipelineCancelledError:
            raise
        except Exception as e:
            print(f"[WARN] {self.role}.{operation} failed after retries: {e}")
            return None

        self.total_tokens += response.usage.total_tokens
        self.total_cost += response.usage.cost_usd
        return response.content

    def get_persona_prompt(self) -> str:
        """Get the persona description for this soul."""
        return f"""You are the {self.role.upper()} in a scientific synthesis engine.
{self.description}
"""


def format_sources_for_prompt(concepts: list[SourceConcepts]) -> str:
    """Format extracted source concepts into a prompt-friendly block."""
    if not concepts:
        return "No source concepts available."

    parts = []
    for c in concepts:
        entities = ", ".join(e.name for e in c.entities[:8]) or "none"
        gaps = "; ".join(c.research_gaps[:3]) or "None identified"
        parts.append(
            f"**{c.source_name}**:\n"
            f"- Thesis: {c.main_thesis}\n"
            f"- Arguments: {'; '.join(c.key_arguments[:5])}\n"
            f"- Entities: {entities}\n"
            f"- Methodology: {c.methodology}\n"
            f"- Gaps: {gaps}"
        )
    return "\n\n".join(parts)


def format_contradictions_for_prompt(contradictions: list[Contradiction]) -> str:
    """Format detected contradictions into a prompt-friendly block."""
    if not contradictions:
        return "No significant contradictions detected."

    return "\n".join(
        f'- {c.concept}: {c.source_a} claims "{c.claim_a}" vs {c.source_b} claims "{c.claim_b}"'
        + (f" (possible resolution: {c.resolution})" if c.resolution else "")
        for c in contradictions
    )


def format_hypothesis_for_prompt(hypothesis: Hypothesis) -> str:
    """Format a hypothesis for critique or refinement prompts."""
    return f"""Thesis: {hypothesis.thesis}
Description: {hypothesis.description or "Not specified"}
Mechanism: {hypothesis.mechanism or "Not specified"}
Prediction: {hypothesis.prediction or "Not specified"}
Bridged concepts: {", ".join(hypothesis.bridged_concepts) or "none"}
Confidence: {hypothesis.confidence}/100"""


HYPOTHESIS_FIELDS = {
    "thesis": '"The core claim of the hypothesis"',
    "description": '"2-3 sentences explaining the hypothesis"',
    "mechanism": '"The causal mechanism that would make it true"',
    "bridged_concepts": '["Source 1 concept", "Source 2 concept"]',
    "prediction": '"A testable prediction that could falsify this hypothesis"',
}
