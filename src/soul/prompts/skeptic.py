"""Skeptic Soul - adversarial critique.

Looks for the "bad explanation": self-fulfilling claims, theories that can be
adjusted to fit any outcome, and the usual biases and fallacies.
"""

from src.contracts.schemas import AdversarialCritique, Hypothesis
from src.contracts.validators import create_output_instruction, parse_oracle_json
from src.soul.prompts.base import BaseSoul, format_hypothesis_for_prompt


class SkepticSoul(BaseSoul):
    """The Skeptic soul critiques hypotheses harshly but fairly."""

    role = "skeptic"
    description = """You are an adversarial reviewer. You are harsh but fair.
A high score should be rare - you have high standards."""

    # Constitutional AI-style principles for critique
    CONSTITUTION = """
## Critique Principles

1. FALSIFIABILITY: If it cannot be proven wrong, it is not scientific.
2. SPECIFICITY: "Improves performance" is too vague.
3. EASY TO VARY: Could the theory be adjusted to fit any outcome?
4. SELF-FULFILLMENT: Is this a genuine discovery or true by construction?
5. BIASES: Confirmation bias, Texas sharpshooter, instrumentalism (prediction without mechanism).
"""

    OUTPUT_FIELDS = {
        "score": "number 0-100",
        "biases_detected": '["Bias name", ...]',
        "fallacies_detected": '["Fallacy name", ...]',
        "devil_advocacy": '"Strongest counter-argument"',
        "critique": '"Concise skeptical review"',
    }

    async def critique(self, hypothesis: Hypothesis) -> tuple[AdversarialCritique, bool]:
        """Critique a hypothesis.

        Returns:
            Tuple of (critique, ok); the conservative default is used when ok is False
        """
        prompt = f"""{self.get_persona_prompt()}
{self.CONSTITUTION}

<hypothesis>
{format_hypothesis_for_prompt(hypothesis)}
</hypothesis>

{create_output_instruction(self.OUTPUT_FIELDS)}
"""
        return parse_oracle_json(
            await self._call_oracle(prompt, "critique"),
            AdversarialCritique,
            AdversarialCritique(),
        )
