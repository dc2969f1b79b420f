"""Synthesizer Soul - the final arbiter between the two critiques.

Performs a dialectical synthesis of the methodological and adversarial
reviews rather than averaging their scores.
"""

from src.contracts.schemas import AdversarialCritique, ArchitectSynthesis, MethodologicalCritique
from src.contracts.validators import create_output_instruction, parse_oracle_json
from src.soul.prompts.base import BaseSoul


class SynthesizerSoul(BaseSoul):
    """The Synthesizer soul decides whether a hypothesis is approved."""

    role = "synthesizer"
    description = """You analyze the conflict between the epistemologist (who values deep explanation)
and the skeptic (who finds flaws). Decide whether the skepticism reveals a flaw that
makes the explanation easy to vary, or whether a hard-to-vary core survives."""

    OUTPUT_FIELDS = {
        "synthesis_score": "number 0-100",
        "is_approved": "boolean",
        "fundamental_breakthrough": '"Core novel mechanism that survives audit"',
        "required_hardening": '["Specific action to fix remaining weaknesses"]',
        "remediation_constraints": '["CONSTRAINT: ..."]',
        "verdict": '"Final authoritative summary"',
    }

    async def synthesize(
        self,
        methodological: MethodologicalCritique,
        adversarial: AdversarialCritique,
    ) -> tuple[ArchitectSynthesis, bool]:
        """Synthesize both critiques into a verdict.

        Returns:
            Tuple of (synthesis, ok); the conservative default (not approved) is used when ok is False
        """
        prompt = f"""{self.get_persona_prompt()}

<perspective_a role="epistemologist">
{methodological.model_dump_json()}
</perspective_a>

<perspective_b role="skeptic">
{adversarial.model_dump_json()}
</perspective_b>

<task>
Perform a synthesis. Do not just average the scores.
Approve only if a hard-to-vary core survives the skeptic's strongest objection.
</task>

{create_output_instruction(self.OUTPUT_FIELDS)}
"""
        return parse_oracle_json(
            await self._call_oracle(prompt, "synthesize"),
            ArchitectSynthesis,
            ArchitectSynthesis(),
        )
