"""Methodical Soul - explanatory-depth critique.

Judges whether a hypothesis explains *why* rather than merely predicting
*what*, and whether its mechanism is hard to vary.
"""

from src.contracts.schemas import Hypothesis, MethodologicalCritique, PriorArt
from src.contracts.validators import create_output_instruction, parse_oracle_json
from src.soul.prompts.base import BaseSoul, format_hypothesis_for_prompt


class MethodicalSoul(BaseSoul):
    """The Methodical soul grades explanatory depth."""

    role = "methodical"
    description = """You are the epistemologist. Good explanations are hard to vary:
change one detail of the mechanism and the whole account should collapse.

Criteria:
1. Explanatory depth: does the theory explain why the world is the way it is?
2. Hard to vary: would changing one detail of the mechanism break the theory?
3. Crucial experiment: which single result would refute it while leaving competitors standing?
4. Levels of reality: does the explanation respect reduction and emergence?"""

    OUTPUT_FIELDS = {
        "explanation_depth": "number 0-100",
        "hard_to_vary": "boolean",
        "crucial_experiment": '"Specific test description"',
        "grade": '"High" | "Moderate" | "Low" | "Very Low"',
        "critique": '"Concise review of explanatory power"',
    }

    async def critique(
        self,
        hypothesis: Hypothesis,
        prior_art: list[PriorArt],
        guidance: str = "",
    ) -> tuple[MethodologicalCritique, bool]:
        """Critique a hypothesis.

        Returns:
            Tuple of (critique, ok); the conservative default is used when ok is False
        """
        prior_art_text = (
            "\n".join(f"- {p.title}" for p in prior_art[:5]) or "No significant prior art found."
        )
        prompt = f"""{self.get_persona_prompt()}

<hypothesis>
{format_hypothesis_for_prompt(hypothesis)}
</hypothesis>

<prior_art>
{prior_art_text}
</prior_art>
{guidance}
{create_output_instruction(self.OUTPUT_FIELDS)}
"""
        return parse_oracle_json(
            await self._call_oracle(prompt, "critique"),
            MethodologicalCritique,
            MethodologicalCritique(),
        )
