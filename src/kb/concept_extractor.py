"""Concept extraction and contradiction detection over source documents.

Both are thin oracle stages. Unusable output degrades to conservative
defaults (a placeholder thesis, no contradictions) instead of failing.
"""

from src.contracts.schemas import Contradiction, SourceConcepts, SourceDocument
from src.contracts.validators import create_output_instruction, parse_list_of, parse_oracle_json
from src.soul.prompts.base import BaseSoul

# Characters of each source sent to the oracle
MAX_SOURCE_CHARS = 12000


class ConceptExtractor(BaseSoul):
    """Extracts structured concepts from sources and finds tensions between them."""

    role = "concept_extractor"
    description = """You are a precise research analyst. You extract what a document actually claims,
without embellishment, and you compare claims across documents."""

    CONCEPT_FIELDS = {
        "main_thesis": '"The central argument or claim"',
        "key_arguments": '["3-5 supporting arguments"]',
        "entities": '[{"name": "string", "type": "person|concept|organization|technology|method", "description": "string"}]',
        "methodology": '"experimental | theoretical | case study | ..."',
        "evidence_quality": '"strong" | "moderate" | "weak" | "anecdotal"',
        "research_gaps": '["Future work or missing pieces the author identifies"]',
    }

    CONTRADICTION_FIELDS = {
        "contradictions": (
            '[{"concept": "string", "source_a": "source name", "claim_a": "string", '
            '"source_b": "source name", "claim_b": "string", "resolution": "string or null"}]'
        ),
    }

    async def extract(self, document: SourceDocument) -> SourceConcepts:
        """Extract concepts from one document."""
        prompt = f"""{self.get_persona_prompt()}

<task>
Analyze the document and extract its main thesis, 3-5 key arguments, important entities,
methodology, evidence quality and the research gaps the author identifies.
</task>

<document name="{document.name}">
{document.text[:MAX_SOURCE_CHARS]}
</document>

{create_output_instruction(self.CONCEPT_FIELDS)}
"""
        concepts, ok = parse_oracle_json(
            await self._call_oracle(prompt, "extract"),
            SourceConcepts,
            SourceConcepts(),
        )
        if not ok:
            print(f"[ConceptExtractor] Using default concepts for '{document.name}'")
        return concepts.model_copy(update={"source_name": document.name})

    async def detect_contradictions(self, concepts: list[SourceConcepts]) -> list[Contradiction]:
        """Find tensions between sources. Needs at least two sources."""
        if len(concepts) < 2:
            return []

        sources = "\n\n".join(
            f"Source: {c.source_name}\nThesis: {c.main_thesis}\nArguments: {'; '.join(c.key_arguments)}"
            for c in concepts
        )
        prompt = f"""{self.get_persona_prompt()}

<task>
Compare the following sources and identify contradictions or tensions between their claims.
For each, give the concept, both sources and claims, and a potential resolution if one exists.
If there are none, return {{"contradictions": []}}.
</task>

<sources>
{sources}
</sources>

{create_output_instruction(self.CONTRADICTION_FIELDS)}
"""
        response = await self._call_oracle(prompt, "contradictions")
        contradictions, errors = parse_list_of(response, Contradiction, key="contradictions")
        if errors and not contradictions:
            print(f"[ConceptExtractor] No usable contradictions ({errors[0]})")
        return contradictions
