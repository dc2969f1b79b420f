"""Shared fixtures: a scripted generative oracle and a deterministic embedding provider."""

import hashlib
import inspect
import json
import re
from typing import Any, Callable

import pytest

from src.contracts.schemas import GenerationOptions, GenerationResponse, TokenUsage
from src.kb.embedding_service import EmbeddingProvider
from src.soul.llm_client import GenerativeOracle

_ROLE = re.compile(r"You are the (\w+) in a scientific synthesis engine")


def role_of(prompt: str) -> str:
    """Soul role a prompt was built by, lowercase ('' if unknown)."""
    match = _ROLE.search(prompt)
    return match.group(1).lower() if match else ""


class ScriptedOracle(GenerativeOracle):
    """Oracle whose replies come from a handler ``(prompt, options) -> str | Exception``.

    Exceptions returned by the handler are raised. Every call is recorded.
    """

    def __init__(self, handler: Callable[[str, GenerationOptions], Any]):
        self.handler = handler
        self.calls: list[tuple[str, GenerationOptions]] = []

    async def generate(self, prompt: str, options: GenerationOptions | None = None) -> GenerationResponse:
        options = options or GenerationOptions()
        self.calls.append((prompt, options))
        reply = self.handler(prompt, options)
        if inspect.isawaitable(reply):
            reply = await reply
        if isinstance(reply, BaseException):
            raise reply
        return GenerationResponse(
            content=reply,
            usage=TokenUsage(prompt_tokens=10, completion_tokens=10, total_tokens=20, cost_usd=0.001),
            model_name="scripted",
            provider=options.provider or "scripted",
        )

    def calls_for(self, role: str) -> list[str]:
        return [prompt for prompt, _ in self.calls if role_of(prompt) == role]


class PipelineReplies:
    """Well-formed replies for every soul, with unique recombination theses."""

    def __init__(self, approve: bool = True, score: int = 85):
        self.approve = approve
        self.score = score
        self.recombinations = 0
        self.refinements = 0

    def __call__(self, prompt: str, options: GenerationOptions) -> str:
        role = role_of(prompt)
        if role == "concept_extractor":
            if "<document name=" in prompt:
                name = re.search(r'<document name="([^"]+)"', prompt).group(1)
                return json.dumps({
                    "main_thesis": f"Thesis of {name}",
                    "key_arguments": [f"{name} argument one", f"{name} argument two"],
                    "entities": [{"name": f"{name} entity", "type": "concept", "description": ""}],
                    "methodology": "experimental",
                    "evidence_quality": "strong",
                    "research_gaps": [f"{name} gap"],
                })
            return json.dumps({"contradictions": [{
                "concept": "energy cost",
                "source_a": "alpha",
                "claim_a": "Inference cost grows linearly",
                "source_b": "beta",
                "claim_b": "Inference cost saturates",
                "resolution": None,
            }]})
        if role == "creative":
            if "exploring hypothesis space via recombination" in prompt:
                self.recombinations += 1
                return json.dumps({
                    "thesis": f"Recombined hypothesis number {self.recombinations}",
                    "description": "Bridges two sources through a shared mechanism.",
                    "mechanism": "Shared causal pathway",
                    "bridged_concepts": ["alpha concept", "beta concept"],
                    "prediction": "A measurable shift in cost",
                })
            if "refining a scientific hypothesis" in prompt:
                self.refinements += 1
                return json.dumps({
                    "thesis": f"Refined hypothesis number {self.refinements}",
                    "description": "A tighter causal account.",
                    "mechanism": "Specific pathway",
                    "bridged_concepts": ["alpha concept", "beta concept"],
                    "prediction": "A sharper prediction",
                })
            return json.dumps({
                "thesis": "Initial synthesis across all sources",
                "description": "Starting point.",
                "mechanism": "Unknown",
                "bridged_concepts": ["alpha concept"],
                "prediction": "Something measurable",
            })
        if role == "methodical":
            return json.dumps({
                "explanation_depth": 80,
                "hard_to_vary": True,
                "crucial_experiment": "Measure cost at two scales",
                "grade": "High",
                "critique": "Deep enough.",
            })
        if role == "skeptic":
            return json.dumps({
                "score": 75,
                "biases_detected": [],
                "fallacies_detected": [],
                "devil_advocacy": "Could be coincidence.",
                "critique": "Acceptable.",
            })
        if role == "synthesizer":
            return json.dumps({
                "synthesis_score": self.score,
                "is_approved": self.approve,
                "fundamental_breakthrough": "A causal pathway shared by both sources",
                "required_hardening": [] if self.approve else ["Quantify the mechanism"],
                "remediation_constraints": [],
                "verdict": "Approved." if self.approve else "Needs work.",
            })
        if role == "prose":
            return "We propose a shared causal pathway linking both sources."
        return ValueError(f"unexpected prompt: {prompt[:80]}")


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic hash-based embeddings; ``overrides`` pins specific texts."""

    def __init__(self, dim: int = 8, overrides: dict[str, list[float]] | None = None):
        self._dim = dim
        self.overrides = overrides or {}
        self.calls = 0

    @property
    def dimension(self) -> int:
        return self._dim

    def _vector(self, text: str) -> list[float]:
        if text in self.overrides:
            return self.overrides[text]
        digest = hashlib.sha256(text.encode()).digest()
        return [(digest[i] - 127.5) / 127.5 for i in range(self._dim)]

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        return self._vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        return [self._vector(t) for t in texts]


async def no_sleep(_: float) -> None:
    return None


@pytest.fixture
def embedding_service():
    """EmbeddingService backed by the deterministic fake provider."""
    from src.kb.embedding_service import EmbeddingService
    return EmbeddingService(provider=FakeEmbeddingProvider())


@pytest.fixture
def envelope():
    """Envelope with no backoff sleeping."""
    from src.contracts.schemas import RetryConfig
    from src.ralph.resilience import ResilientCallEnvelope
    return ResilientCallEnvelope(RetryConfig(max_attempts=3), sleep=no_sleep)


@pytest.fixture
def make_oracle():
    """Factory for ScriptedOracle instances."""
    return ScriptedOracle


@pytest.fixture
def pipeline_oracle():
    """Oracle giving well-formed, approving replies to every soul."""
    return ScriptedOracle(PipelineReplies())


@pytest.fixture
def make_provider():
    """Factory for FakeEmbeddingProvider instances."""
    return FakeEmbeddingProvider


@pytest.fixture
def make_replies():
    """Factory for PipelineReplies handlers."""
    return PipelineReplies
