"""Unit tests for concept extraction and contradiction detection."""

import json

import pytest


class TestExtract:
    """Tests for ConceptExtractor.extract."""

    @pytest.mark.asyncio
    async def test_extracts_concepts(self, pipeline_oracle, envelope):
        """Valid output is parsed and tagged with the source name."""
        from src.contracts.schemas import SourceDocument
        from src.kb.concept_extractor import ConceptExtractor

        extractor = ConceptExtractor(pipeline_oracle, envelope)
        concepts = await extractor.extract(SourceDocument(name="alpha", text="Some paper text."))

        assert concepts.source_name == "alpha"
        assert concepts.main_thesis == "Thesis of alpha"
        assert concepts.key_arguments == ["alpha argument one", "alpha argument two"]
        assert concepts.entities[0].name == "alpha entity"
        assert concepts.research_gaps == ["alpha gap"]

    @pytest.mark.asyncio
    async def test_document_is_truncated(self, pipeline_oracle, envelope):
        """Only the first MAX_SOURCE_CHARS characters reach the oracle."""
        from src.contracts.schemas import SourceDocument
        from src.kb.concept_extractor import MAX_SOURCE_CHARS, ConceptExtractor

        extractor = ConceptExtractor(pipeline_oracle, envelope)
        await extractor.extract(SourceDocument(name="long", text="x" * (MAX_SOURCE_CHARS + 500)))

        prompt, _ = pipeline_oracle.calls[0]
        assert "x" * MAX_SOURCE_CHARS in prompt
        assert "x" * (MAX_SOURCE_CHARS + 1) not in prompt

    @pytest.mark.asyncio
    async def test_malformed_output_uses_defaults(self, make_oracle, envelope):
        """Unparseable output degrades to default concepts."""
        from src.contracts.schemas import SourceDocument
        from src.kb.concept_extractor import ConceptExtractor

        extractor = ConceptExtractor(make_oracle(lambda p, o: "I could not read it"), envelope)
        concepts = await extractor.extract(SourceDocument(name="beta"))

        assert concepts.source_name == "beta"
        assert concepts.main_thesis == "No explicit thesis identified"
        assert concepts.key_arguments == []

    @pytest.mark.asyncio
    async def test_failed_call_uses_defaults(self, make_oracle, envelope):
        """A non-retryable oracle failure degrades to default concepts after one call."""
        from src.contracts.schemas import SourceDocument
        from src.kb.concept_extractor import ConceptExtractor

        oracle = make_oracle(lambda p, o: ValueError("bad request"))
        concepts = await ConceptExtractor(oracle, envelope).extract(SourceDocument(name="gamma"))

        assert concepts.main_thesis == "No explicit thesis identified"
        assert len(oracle.calls) == 1


class TestDetectContradictions:
    """Tests for ConceptExtractor.detect_contradictions."""

    @pytest.mark.asyncio
    async def test_needs_two_sources(self, pipeline_oracle, envelope):
        """A single source never reaches the oracle."""
        from src.contracts.schemas import SourceConcepts
        from src.kb.concept_extractor import ConceptExtractor

        extractor = ConceptExtractor(pipeline_oracle, envelope)
        assert await extractor.detect_contradictions([SourceConcepts(source_name="alpha")]) == []
        assert pipeline_oracle.calls == []

    @pytest.mark.asyncio
    async def test_detects(self, pipeline_oracle, envelope):
        """Contradictions are parsed from the wrapped list."""
        from src.contracts.schemas import SourceConcepts
        from src.kb.concept_extractor import ConceptExtractor

        extractor = ConceptExtractor(pipeline_oracle, envelope)
        contradictions = await extractor.detect_contradictions([
            SourceConcepts(source_name="alpha", main_thesis="A"),
            SourceConcepts(source_name="beta", main_thesis="B"),
        ])

        assert len(contradictions) == 1
        assert contradictions[0].concept == "energy cost"
        assert contradictions[0].resolution is None
        prompt = pipeline_oracle.calls[0][0]
        assert "identify contradictions" in prompt
        assert "Source: alpha" in prompt and "Source: beta" in prompt

    @pytest.mark.asyncio
    async def test_invalid_items_dropped(self, make_oracle, envelope):
        """Items missing a concept are skipped, valid ones kept."""
        from src.contracts.schemas import SourceConcepts
        from src.kb.concept_extractor import ConceptExtractor

        reply = json.dumps({"contradictions": [
            {"source_a": "alpha", "claim_a": "no concept"},
            {"concept": "scale", "source_a": "alpha", "source_b": "beta"},
        ]})
        extractor = ConceptExtractor(make_oracle(lambda p, o: reply), envelope)

        contradictions = await extractor.detect_contradictions([
            SourceConcepts(source_name="alpha"),
            SourceConcepts(source_name="beta"),
        ])

        assert [c.concept for c in contradictions] == ["scale"]

    @pytest.mark.asyncio
    async def test_garbage_gives_none(self, make_oracle, envelope):
        """Unusable output means no contradictions."""
        from src.contracts.schemas import SourceConcepts
        from src.kb.concept_extractor import ConceptExtractor

        extractor = ConceptExtractor(make_oracle(lambda p, o: "nothing to report"), envelope)
        result = await extractor.detect_contradictions([
            SourceConcepts(source_name="alpha"),
            SourceConcepts(source_name="beta"),
        ])
        assert result == []
