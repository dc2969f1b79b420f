"""Core Pydantic schemas for the hypothesis synthesis orchestrator.

These schemas define the data contracts for:
- Source documents, extracted concepts and contradictions
- Hypotheses, calibration factors and audit verdicts
- Equivalence classes of rejected ideas
- Telemetry events and call records
- Run configuration and the final synthesis result
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, Field, field_validator, model_validator

# =============================================================================
# Enums
# =============================================================================


class PipelineStage(str, Enum):
    """Sequential stages of a synthesis run."""

    CONCEPT_EXTRACTION = "concept_extraction"
    CONTRADICTION_DETECTION = "contradiction_detection"
    EXPLORATION = "exploration"
    NOVELTY_GATE = "novelty_gate"
    REFINEMENT = "refinement"
    CONSTRAINT_VALIDATION = "constraint_validation"
    PROSE = "prose"
    RANKING = "ranking"


class EventKind(str, Enum):
    """Kinds of telemetry events emitted by the coordinator."""

    STAGE_STARTED = "stage_started"
    STAGE_PROGRESS = "stage_progress"
    STAGE_COMPLETED = "stage_completed"
    STAGE_SKIPPED = "stage_skipped"
    RETRY = "retry"
    FALLBACK = "fallback"
    HYPOTHESIS_GENERATED = "hypothesis_generated"
    HYPOTHESIS_REFUTED = "hypothesis_refuted"
    HYPOTHESIS_APPROVED = "hypothesis_approved"


class ErrorClass(str, Enum):
    """Classification of an external call failure."""

    RATE_LIMIT = "rate_limit"  # 429 / "rate limit"
    QUOTA = "quota"  # RESOURCE_EXHAUSTED, hard quota
    SERVER = "server"  # 5xx
    TIMEOUT = "timeout"
    CONNECTION = "connection"  # reset, network, temporarily unavailable
    FATAL = "fatal"  # anything else

    @property
    def retryable(self) -> bool:
        return self in (ErrorClass.RATE_LIMIT, ErrorClass.SERVER, ErrorClass.TIMEOUT, ErrorClass.CONNECTION)


class CallOutcome(str, Enum):
    """Outcome of a single attempt inside the retry envelope."""

    SUCCESS = "success"
    RETRY = "retry"
    FALLBACK = "fallback"
    FAILURE = "failure"


class TrapState(str, Enum):
    """Basis-trap controller states."""

    NORMAL = "normal"
    EXPANDING = "expanding"


class EvidenceGrade(str, Enum):
    """Grade assigned by the methodological critique."""

    HIGH = "High"
    MODERATE = "Moderate"
    LOW = "Low"
    VERY_LOW = "Very Low"


class HypothesisOrigin(str, Enum):
    """How a hypothesis entered the candidate set."""

    INITIAL = "initial"
    MCMC = "mcmc"
    EXPANSION = "expansion"
    REFINED = "refined"


def _clamp_unit(value: Any) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if v != v:  # NaN
        return 0.0
    return max(0.0, min(1.0, v))


# =============================================================================
# Oracle I/O
# =============================================================================


class TokenUsage(BaseModel):
    """Token usage and cost for a single generation."""

    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    cost_usd: float = Field(default=0.0, ge=0.0)


class GenerationOptions(BaseModel):
    """Per-call options passed to the generative oracle."""

    provider: str | None = Field(default=None, description="Route/provider to call")
    model: str | None = Field(default=None, description="Model override")
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)


class GenerationResponse(BaseModel):
    """Response from a generative oracle call."""

    content: str = Field(default="")
    tool_calls: list[dict[str, Any]] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model_name: str = Field(default="")
    provider: str = Field(default="")


# =============================================================================
# Sources
# =============================================================================


class SourceDocument(BaseModel):
    """A source document fed into the pipeline."""

    name: str = Field(..., min_length=1)
    text: str = Field(default="")
    metadata: dict[str, Any] = Field(default_factory=dict)


class Entity(BaseModel):
    """A named entity mentioned in a source."""

    name: str
    type: str = Field(default="concept")
    description: str = Field(default="")


class SourceConcepts(BaseModel):
    """Concepts extracted from one source document."""

    source_name: str = Field(default="")
    main_thesis: str = Field(default="No explicit thesis identified")
    key_arguments: list[str] = Field(default_factory=list)
    entities: list[Entity] = Field(default_factory=list)
    methodology: str = Field(default="Unspecified")
    evidence_quality: str = Field(default="moderate")
    research_gaps: list[str] = Field(default_factory=list)

    def summary(self) -> str:
        """One-line summary used in recombination prompts."""
        args = "; ".join(self.key_arguments[:4]) or "none listed"
        return f'"{self.main_thesis}" | Arguments: {args}'


class Contradiction(BaseModel):
    """A tension between two sources' claims."""

    concept: str
    source_a: str = Field(default="")
    claim_a: str = Field(default="")
    source_b: str = Field(default="")
    claim_b: str = Field(default="")
    resolution: str | None = Field(default=None)


class PriorArt(BaseModel):
    """A piece of prior art found for a hypothesis."""

    id: str
    title: str = Field(default="")
    similarity: float = Field(default=0.0)
    differentiator: str = Field(default="")

    @field_validator("similarity", mode="before")
    @classmethod
    def _clamp_similarity(cls, v: Any) -> float:
        return _clamp_unit(v)


# =============================================================================
# Calibration
# =============================================================================


class CalibrationFactors(BaseModel):
    """Five [0,1] signals combined into a calibrated confidence.

    Out-of-range inputs are clamped rather than rejected.
    """

    source_agreement: float = Field(default=0.5)
    prior_art_distance: float = Field(default=0.5)
    contradiction_resolved: float = Field(default=0.5)
    evidence_depth: float = Field(default=0.5)
    bridge_strength: float = Field(default=0.5)

    @field_validator(
        "source_agreement",
        "prior_art_distance",
        "contradiction_resolved",
        "evidence_depth",
        "bridge_strength",
        mode="before",
    )
    @classmethod
    def _clamp(cls, v: Any) -> float:
        return _clamp_unit(v)

    def as_list(self) -> list[float]:
        return [
            self.source_agreement,
            self.prior_art_distance,
            self.contradiction_resolved,
            self.evidence_depth,
            self.bridge_strength,
        ]


class CalibrationResult(BaseModel):
    """Output of the confidence calibrator."""

    score: int = Field(..., ge=0, le=100)
    geometric_mean: float = Field(..., ge=0.0)
    multiplier: float
    is_log_concave: bool
    rationale: list[str] = Field(default_factory=list)

    @property
    def explanation(self) -> str:
        return ". ".join(self.rationale)


# =============================================================================
# Hypothesis
# =============================================================================


def _new_hypothesis_id() -> str:
    return f"hyp-{uuid.uuid4().hex[:10]}"


class Hypothesis(BaseModel):
    """A candidate scientific hypothesis.

    Refinement never edits a hypothesis in place: it produces a new one whose
    ``parent_id`` points at the one it was refined from.
    """

    id: str = Field(default_factory=_new_hypothesis_id)
    thesis: str = Field(..., min_length=1, description="The core claim")
    description: str = Field(default="", description="2-3 sentences explaining the idea")
    mechanism: str = Field(default="", description="Causal mechanism")
    prediction: str = Field(default="", description="Testable, falsifiable prediction")
    crucial_experiment: str = Field(default="")
    bridged_concepts: list[str] = Field(default_factory=list)

    energy: float = Field(default=0.0, description="Sampler energy, lower is better")
    confidence: int = Field(default=50, ge=0, le=100)
    provenance: list[str] = Field(default_factory=list, description="Source names this idea bridges")

    # Lineage
    parent_id: str | None = Field(default=None)
    iteration: int = Field(default=0, ge=0)
    origin: HypothesisOrigin = Field(default=HypothesisOrigin.MCMC)

    # Calibration
    calibration: CalibrationFactors | None = Field(default=None)
    confidence_rationale: list[str] = Field(default_factory=list)
    is_log_concave: bool | None = Field(default=None)
    prior_art: list[PriorArt] = Field(default_factory=list)

    # Post-processing
    constraint_violations: list[str] = Field(default_factory=list)
    prose: str = Field(default="")
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def normalized_key(self) -> str:
        """Dedup key: lowercase alphanumerics of the thesis, first 50 chars."""
        return "".join(ch for ch in self.thesis.lower() if ch.isascii() and ch.isalnum())[:50]

    @property
    def embedding_text(self) -> str:
        return f"{self.thesis}\n{self.mechanism or 'Unspecified'}"

    # Set after an audit or in post-processing; they never change identity
    ANNOTATION_FIELDS: ClassVar[frozenset[str]] = frozenset({"crucial_experiment", "constraint_violations", "prose"})

    def annotate(self, **annotations: Any) -> "Hypothesis":
        """Copy with annotation fields set, keeping the id and the audited content.

        Verdicts refer to hypotheses by id, so anything that changes the claim
        itself must go through ``refine_from`` instead.
        """
        unknown = set(annotations) - self.ANNOTATION_FIELDS
        if unknown:
            raise ValueError(f"Not annotation fields: {', '.join(sorted(unknown))}")
        return self.model_copy(update=annotations)

    def refine_from(self, **updates: Any) -> "Hypothesis":
        """Create a child hypothesis with lineage pointing at this one."""
        data = self.model_dump(exclude={"id", "created_at", "parent_id", "iteration", "origin"})
        data.update(updates)
        data["parent_id"] = self.id
        data["iteration"] = self.iteration + 1
        data["origin"] = HypothesisOrigin.REFINED
        return Hypothesis(**data)


# =============================================================================
# Audit
# =============================================================================


class MethodologicalCritique(BaseModel):
    """Explanatory-depth critique. Defaults are the conservative fallback."""

    explanation_depth: int = Field(default=40, ge=0, le=100)
    hard_to_vary: bool = Field(default=False)
    crucial_experiment: str = Field(default="N/A")
    grade: EvidenceGrade = Field(default=EvidenceGrade.VERY_LOW)
    critique: str = Field(default="Error parsing deep explanation response.")


class AdversarialCritique(BaseModel):
    """Skeptical critique. Defaults are the conservative fallback."""

    score: int = Field(default=40, ge=0, le=100)
    biases_detected: list[str] = Field(default_factory=lambda: ["Parsing Error"])
    fallacies_detected: list[str] = Field(default_factory=lambda: ["Parsing Error"])
    devil_advocacy: str = Field(default="N/A")
    critique: str = Field(default="Error parsing skeptical audit response.")


class ArchitectSynthesis(BaseModel):
    """Synthesized verdict over both critiques. Defaults are the conservative fallback."""

    synthesis_score: int = Field(default=50, ge=0, le=100)
    is_approved: bool = Field(default=False)
    fundamental_breakthrough: str = Field(default="Parsing Failure - Manual Review Required")
    required_hardening: list[str] = Field(default_factory=lambda: ["Fix system parsing issues"])
    remediation_constraints: list[str] = Field(default_factory=list)
    verdict: str = Field(default="Synthesis failed due to output formatting errors.")


class AuditVerdict(BaseModel):
    """One audit pass over one hypothesis at one iteration."""

    hypothesis_id: str
    iteration: int = Field(default=0, ge=0)
    methodological: MethodologicalCritique = Field(default_factory=MethodologicalCritique)
    adversarial: AdversarialCritique = Field(default_factory=AdversarialCritique)
    approved: bool = Field(default=False)
    validity_score: int = Field(default=0, ge=0, le=100)
    remediation_plan: list[str] = Field(default_factory=list)
    remediation_constraints: list[str] = Field(default_factory=list)
    degraded: bool = Field(default=False, description="True if any call fell back to defaults")
    timestamp: datetime = Field(default_factory=datetime.now)


class RefinementOutcome(BaseModel):
    """Result of running the audit/refine loop on one hypothesis."""

    original_id: str
    hypothesis: Hypothesis
    verdicts: list[AuditVerdict] = Field(default_factory=list)
    converged: bool = Field(default=False)
    convergence_step: int | None = Field(default=None)
    error: str | None = Field(default=None, description="Set when refinement stopped on an unexpected failure")

    @property
    def final_verdict(self) -> AuditVerdict | None:
        return self.verdicts[-1] if self.verdicts else None


# =============================================================================
# Novelty gate
# =============================================================================


class EquivalenceClass(BaseModel):
    """A cluster of embeddings of previously rejected hypotheses."""

    class_id: str
    centroid: list[float]
    member_count: int = Field(default=1, ge=1)
    radius: float = Field(default=0.0, ge=0.0)
    representative_reason: str = Field(default="")


class EquivalenceMatch(BaseModel):
    """A gate hit: the hypothesis falls inside a forbidden region."""

    class_id: str
    member_count: int = Field(default=1, ge=1)
    representative_reason: str = Field(default="")
    distance: float = Field(default=0.0)
    source: str = Field(default="equivalence_class", description="equivalence_class | prior_rejection")


class GateRejection(BaseModel):
    """A hypothesis dropped by the novelty gate."""

    hypothesis_id: str
    thesis: str
    match: EquivalenceMatch


# =============================================================================
# Telemetry
# =============================================================================


class CallRecord(BaseModel):
    """One attempt inside the resilient call envelope."""

    timestamp: datetime = Field(default_factory=datetime.now)
    route: str
    operation: str
    attempt: int = Field(..., ge=1)
    latency_ms: float = Field(default=0.0, ge=0.0)
    outcome: CallOutcome
    error_class: ErrorClass | None = Field(default=None)
    error: str | None = Field(default=None)
    delay_ms: float | None = Field(default=None, description="Backoff before the next attempt")


class TelemetryEvent(BaseModel):
    """An event in the ordered run telemetry stream."""

    kind: EventKind
    timestamp: datetime = Field(default_factory=datetime.now)
    stage: PipelineStage | None = Field(default=None)
    operation: str | None = Field(default=None)
    hypothesis_id: str | None = Field(default=None)
    detail: str = Field(default="")
    data: dict[str, Any] = Field(default_factory=dict)


class SpectralMetrics(BaseModel):
    """Covariance spectrum of a window of hypothesis embeddings."""

    lambda_min: float = Field(default=1.0)
    lambda_max: float = Field(default=1.0)
    spectral_gap: float = Field(default=0.0)
    condition_number: float = Field(default=1.0)
    lipschitz: float = Field(default=0.1)
    threshold: float = Field(default=0.0)
    window: int = Field(default=0, ge=0)


class ConvergenceStats(BaseModel):
    """Aggregate convergence behaviour of the refinement stage."""

    total_refinements: int = Field(default=0, ge=0)
    converged_count: int = Field(default=0, ge=0)
    mean_convergence_step: float | None = Field(default=None)
    peak_concurrency: int = Field(default=0, ge=0)


# =============================================================================
# Configuration
# =============================================================================


class RetryConfig(BaseModel):
    """Retry/backoff settings for external calls."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_ms: float = Field(default=400.0, ge=0.0)
    max_delay_ms: float = Field(default=5000.0, ge=0.0)
    jitter_factor: float = Field(default=0.2, ge=0.0, le=1.0)
    timeout_seconds: float = Field(default=60.0, gt=0.0, description="Per-call timeout")
    quota_cooldown_seconds: float = Field(default=60.0, ge=0.0)

    @model_validator(mode="after")
    def _check_delays(self) -> "RetryConfig":
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        return self


class MCMCConfig(BaseModel):
    """Metropolis-Hastings exploration settings."""

    num_samples: int = Field(default=10, ge=1, le=200)
    burn_in: int = Field(default=2, ge=0)
    temperature: float = Field(default=0.5, gt=0.0, le=10.0)
    max_concepts_per_proposal: int = Field(default=3, ge=1, le=10)

    @model_validator(mode="after")
    def _check_burn_in(self) -> "MCMCConfig":
        if self.burn_in >= self.num_samples:
            raise ValueError("burn_in must be smaller than num_samples")
        return self


class BasisTrapConfig(BaseModel):
    """Basis-trap detection and temperature escalation settings."""

    window_size: int = Field(default=10, ge=2, le=100)
    threshold_multiplier: float = Field(default=1.0, gt=0.0)
    lipschitz_floor: float = Field(default=0.1, gt=0.0)
    expansion_temperature: float = Field(default=1.5, gt=0.0, le=10.0)
    recovery_threshold: float | None = Field(
        default=None,
        description="lambda_min needed to count towards recovery; defaults to the trigger threshold",
    )
    cooldown_period: int = Field(default=2, ge=1)
    burst_samples: int = Field(default=5, ge=2, le=50)
    burst_burn_in: int = Field(default=1, ge=0)

    @model_validator(mode="after")
    def _check_burst(self) -> "BasisTrapConfig":
        if self.burst_burn_in >= self.burst_samples:
            raise ValueError("burst_burn_in must be smaller than burst_samples")
        return self


class NoveltyGateConfig(BaseModel):
    """Equivalence-class gate settings."""

    enabled: bool = Field(default=True)
    base_radius: float = Field(default=0.25, gt=0.0, le=2.0)
    radius_buffer: float = Field(default=1.1, ge=1.0, le=3.0)
    prior_rejection_similarity: float = Field(default=0.75, ge=0.0, le=1.0)


class CalibrationConfig(BaseModel):
    """Calibrator weights and multipliers. Empirical defaults."""

    source_agreement_weight: float = Field(default=0.20, ge=0.0)
    prior_art_distance_weight: float = Field(default=0.30, ge=0.0)
    contradiction_resolved_weight: float = Field(default=0.15, ge=0.0)
    evidence_depth_weight: float = Field(default=0.15, ge=0.0)
    bridge_strength_weight: float = Field(default=0.20, ge=0.0)
    log_concave_multiplier: float = Field(default=1.05, gt=0.0)
    non_log_concave_multiplier: float = Field(default=0.90, gt=0.0)
    factor_floor: float = Field(default=0.01, gt=0.0, le=1.0)

    @property
    def weights(self) -> list[float]:
        return [
            self.source_agreement_weight,
            self.prior_art_distance_weight,
            self.contradiction_resolved_weight,
            self.evidence_depth_weight,
            self.bridge_strength_weight,
        ]

    @model_validator(mode="after")
    def _check_weights(self) -> "CalibrationConfig":
        if sum(self.weights) <= 0:
            raise ValueError("calibration weights must not all be zero")
        return self


class SynthesisConfig(BaseModel):
    """Configuration for a synthesis run."""

    max_refinement_iterations: int = Field(default=2, ge=1, le=10)
    novelty_threshold: float = Field(
        default=0.30,
        ge=0.0,
        le=1.0,
        description="Minimum prior-art distance for a hypothesis to be ranked",
    )
    parallel_concurrency: int = Field(default=3, ge=1, le=32)
    max_novel_ideas: int | None = Field(default=None, ge=1)
    generate_prose: bool = Field(default=True)
    research_focus: str | None = Field(default=None)
    domain: str | None = Field(default=None, description="Domain for constraint validators")
    primary_provider: str = Field(default="gemini")
    secondary_provider: str = Field(default="groq")
    flash_model: str | None = Field(default=None)
    pro_model: str | None = Field(default=None)

    retry: RetryConfig = Field(default_factory=RetryConfig)
    mcmc: MCMCConfig = Field(default_factory=MCMCConfig)
    basis_trap: BasisTrapConfig = Field(default_factory=BasisTrapConfig)
    novelty_gate: NoveltyGateConfig = Field(default_factory=NoveltyGateConfig)
    calibration: CalibrationConfig = Field(default_factory=CalibrationConfig)


# =============================================================================
# Result
# =============================================================================


class SynthesisResult(BaseModel):
    """Final result of a synthesis run."""

    run_id: str = Field(...)
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: datetime | None = Field(default=None)
    sources: list[str] = Field(default_factory=list)
    concepts: list[SourceConcepts] = Field(default_factory=list)
    contradictions: list[Contradiction] = Field(default_factory=list)
    hypotheses: list[Hypothesis] = Field(default_factory=list, description="Ranked, best first")
    outcomes: list[RefinementOutcome] = Field(default_factory=list)
    gate_rejections: list[GateRejection] = Field(default_factory=list)
    below_novelty_threshold: list[str] = Field(default_factory=list)
    spectral_metrics: SpectralMetrics | None = Field(default=None)
    expansion_triggered: bool = Field(default=False)
    exploration_acceptance_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    convergence: ConvergenceStats = Field(default_factory=ConvergenceStats)
    total_cost_usd: float = Field(default=0.0, ge=0.0)
