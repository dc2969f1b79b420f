"""Confidence calibration from five noisy signals.

The score is a weighted geometric mean of the factors, nudged up when the
sorted factor values are log-concave and down when they are not. A single
near-zero factor drags the whole score down, which an arithmetic mean would
hide.
"""

import math

from src.contracts.schemas import (
    CalibrationConfig,
    CalibrationFactors,
    CalibrationResult,
    Contradiction,
    Hypothesis,
    PriorArt,
    SourceConcepts,
)

# Values below this are treated as this in the log-concavity check
_LOG_CONCAVITY_EPSILON = 0.001


def is_log_concave(values: list[float]) -> bool:
    """Check ``v[i]^2 >= v[i-1] * v[i+1]`` over the ascending-sorted values.

    Sequences shorter than 3 are trivially log-concave.
    """
    if len(values) < 3:
        return True

    ordered = sorted(v if v > 0 else _LOG_CONCAVITY_EPSILON for v in values)
    for i in range(1, len(ordered) - 1):
        if ordered[i] ** 2 < ordered[i - 1] * ordered[i + 1]:
            return False
    return True


def weighted_geometric_mean(values: list[float], weights: list[float], floor: float = 0.01) -> float:
    """exp(sum(w * ln(max(v, floor))) / sum(w))."""
    total = sum(weights)
    if total <= 0:
        return 0.0
    log_sum = sum(w * math.log(max(v, floor)) for v, w in zip(values, weights))
    return math.exp(log_sum / total)


def _build_rationale(factors: CalibrationFactors, log_concave: bool) -> list[str]:
    parts: list[str] = []

    if factors.prior_art_distance < 0.3:
        parts.append("Similar prior art detected")
    elif factors.prior_art_distance > 0.7:
        parts.append("Novel approach with limited prior art")

    if factors.source_agreement > 0.7:
        parts.append("Strong agreement across source materials")
    elif factors.source_agreement < 0.4:
        parts.append("Limited source support")

    if factors.contradiction_resolved > 0.7:
        parts.append("Successfully bridges conflicting concepts")

    if factors.bridge_strength < 0.4:
        parts.append("Weak conceptual connection between sources")

    if log_concave:
        parts.append("Factor profile is log-concave (stable)")
    else:
        parts.append("Factor profile is not log-concave (unbalanced evidence)")

    return parts


def calibrate_confidence(
    factors: CalibrationFactors,
    config: CalibrationConfig | None = None,
) -> CalibrationResult:
    """Combine calibration factors into a 0-100 confidence score.

    Pure and deterministic.

    Args:
        factors: Five clamped [0,1] signals
        config: Weights and multipliers (defaults if omitted)

    Returns:
        CalibrationResult with score, multiplier and rationale
    """
    config = config or CalibrationConfig()
    values = factors.as_list()

    geo_mean = weighted_geometric_mean(values, config.weights, floor=config.factor_floor)
    log_concave = is_log_concave(values)
    multiplier = config.log_concave_multiplier if log_concave else config.non_log_concave_multiplier

    score = round(max(0.0, min(1.0, geo_mean * multiplier)) * 100)

    return CalibrationResult(
        score=score,
        geometric_mean=geo_mean,
        multiplier=multiplier,
        is_log_concave=log_concave,
        rationale=_build_rationale(factors, log_concave),
    )


def estimate_calibration_factors(
    concepts: list[SourceConcepts],
    contradictions: list[Contradiction],
    hypothesis: Hypothesis,
    prior_art: list[PriorArt],
) -> CalibrationFactors:
    """Derive the five factors from the run context.

    - source agreement: share of sources the hypothesis bridges
    - prior-art distance: 1 - highest prior-art similarity
    - contradiction resolution: 0.5 when tensions exist, 0.8 otherwise
    - evidence depth: description length, saturating at 1000 chars
    - bridge strength: bridged concepts, saturating at 4
    """
    bridged = len(hypothesis.bridged_concepts)
    total_sources = max(len(concepts), 1)
    max_similarity = max((p.similarity for p in prior_art), default=0.0)

    return CalibrationFactors(
        source_agreement=bridged / total_sources,
        prior_art_distance=1.0 - max_similarity,
        contradiction_resolved=0.5 if contradictions else 0.8,
        evidence_depth=len(hypothesis.description) / 1000,
        bridge_strength=bridged / 4,
    )


def apply_calibration(
    hypothesis: Hypothesis,
    factors: CalibrationFactors,
    prior_art: list[PriorArt],
    config: CalibrationConfig | None = None,
) -> Hypothesis:
    """Return a copy of ``hypothesis`` carrying the calibrated confidence."""
    result = calibrate_confidence(factors, config)
    return hypothesis.model_copy(update={
        "confidence": result.score,
        "calibration": factors,
        "confidence_rationale": result.rationale,
        "is_log_concave": result.is_log_concave,
        "prior_art": prior_art,
    })
