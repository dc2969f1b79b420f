"""Basis-trap detection and temperature escalation.

When the sampler's recent hypotheses collapse onto a narrow region of
embedding space, the smallest eigenvalue of their covariance gets small
relative to how sharply confidence changes across that region. The
controller then asks for a short high-temperature exploration burst.

    threshold = threshold_multiplier / sqrt(L)
    trapped   = lambda_min < threshold

where L is the Lipschitz estimate max |dconfidence| / ||dembedding||.
"""

from dataclasses import dataclass

import numpy as np

from src.contracts.schemas import BasisTrapConfig, Hypothesis, SpectralMetrics, TrapState

# Eigenvalues at or below this are treated as numerical zeros
EIGEN_EPSILON = 1e-10

# Pairs closer than this are ignored by the Lipschitz estimate
MIN_PAIR_DISTANCE = 1e-6


@dataclass
class TemperatureDirective:
    """Instruction to run an extra exploration burst."""
    temperature: float
    num_samples: int
    burn_in: int
    reason: str


@dataclass
class TrapEvaluation:
    metrics: SpectralMetrics
    state: TrapState
    triggered: bool
    directive: TemperatureDirective | None = None


def compute_spectrum(embeddings: list[list[float]]) -> tuple[float, float]:
    """(lambda_min, lambda_max) of the population covariance of ``embeddings``.

    Only strictly positive eigenvalues are kept; a degenerate window yields (1, 1).
    """
    if len(embeddings) < 2:
        return 1.0, 1.0
    try:
        matrix = np.asarray(embeddings, dtype=float)
        centered = matrix - matrix.mean(axis=0)
        # Population covariance (divide by n)
        cov = centered.T @ centered / matrix.shape[0]
        eigenvalues = np.linalg.eigvalsh(cov)
    except (ValueError, np.linalg.LinAlgError) as e:
        print(f"[WARN] Eigenvalue computation failed, using neutral spectrum: {e}")
        return 1.0, 1.0

    positive = eigenvalues[eigenvalues > EIGEN_EPSILON]
    if positive.size == 0:
        return 1.0, 1.0
    return float(positive.min()), float(positive.max())


def estimate_lipschitz(embeddings: list[list[float]], confidences: list[int], floor: float = 0.1) -> float:
    """Largest |dconfidence/100| / ||dembedding|| over all pairs, floored."""
    if len(embeddings) < 2:
        return max(1.0, floor)

    vectors = np.asarray(embeddings, dtype=float)
    scaled = np.asarray(confidences, dtype=float) / 100.0
    best = 0.0
    for i in range(len(vectors)):
        for j in range(i + 1, len(vectors)):
            distance = float(np.linalg.norm(vectors[i] - vectors[j]))
            if distance > MIN_PAIR_DISTANCE:
                best = max(best, abs(scaled[i] - scaled[j]) / distance)
    return max(best, floor)


class BasisTrapController:
    """Two-state controller: NORMAL and EXPANDING.

    NORMAL -> EXPANDING on a trap reading. EXPANDING -> NORMAL once
    ``lambda_min`` exceeds the recovery threshold for ``cooldown_period``
    consecutive evaluations; any reading at or below it resets the count.
    """

    def __init__(self, config: BasisTrapConfig | None = None):
        self.config = config or BasisTrapConfig()
        self.state = TrapState.NORMAL
        self._recovery_streak = 0
        self.last_metrics: SpectralMetrics | None = None

    def compute_metrics(self, embeddings: list[list[float]], confidences: list[int]) -> SpectralMetrics:
        window = embeddings[-self.config.window_size:]
        window_confidences = confidences[-self.config.window_size:]

        if len(window) < 2:
            return SpectralMetrics(window=len(window))

        lambda_min, lambda_max = compute_spectrum(window)
        lipschitz = estimate_lipschitz(window, window_confidences, self.config.lipschitz_floor)
        return SpectralMetrics(
            lambda_min=lambda_min,
            lambda_max=lambda_max,
            spectral_gap=lambda_max - lambda_min,
            condition_number=lambda_max / (lambda_min + 1e-10),
            lipschitz=lipschitz,
            threshold=float(self.config.threshold_multiplier / np.sqrt(lipschitz)),
            window=len(window),
        )

    def _directive(self, reason: str) -> TemperatureDirective:
        return TemperatureDirective(
            temperature=self.config.expansion_temperature,
            num_samples=self.config.burst_samples,
            burn_in=self.config.burst_burn_in,
            reason=reason,
        )

    def evaluate(self, hypotheses: list[Hypothesis], embeddings: list[list[float]]) -> TrapEvaluation:
        """Evaluate the current window and advance the state machine.

        Args:
            hypotheses: Candidates in chain order
            embeddings: One embedding per hypothesis (zero vectors are ignored)

        Returns:
            TrapEvaluation; ``directive`` is set while the controller is EXPANDING
        """
        pairs = [(h, e) for h, e in zip(hypotheses, embeddings) if any(e)]
        metrics = self.compute_metrics([e for _, e in pairs], [h.confidence for h, _ in pairs])
        self.last_metrics = metrics

        if metrics.window < 2:
            return TrapEvaluation(metrics=metrics, state=self.state, triggered=False)

        trapped = metrics.lambda_min < metrics.threshold
        triggered = False

        if self.state is TrapState.NORMAL:
            if trapped:
                print(
                    f"[BasisTrap] Expansion triggered: lambda_min={metrics.lambda_min:.4f} "
                    f"< {metrics.threshold:.4f} (L={metrics.lipschitz:.3f})"
                )
                self.state = TrapState.EXPANDING
                self._recovery_streak = 0
                triggered = True
        else:
            recovery = self.config.recovery_threshold
            if recovery is None:
                recovery = metrics.threshold
            if metrics.lambda_min > recovery:
                self._recovery_streak += 1
                if self._recovery_streak >= self.config.cooldown_period:
                    print("[BasisTrap] Spectrum recovered, returning to normal exploration")
                    self.state = TrapState.NORMAL
                    self._recovery_streak = 0
            else:
                self._recovery_streak = 0

        directive = None
        if self.state is TrapState.EXPANDING:
            directive = self._directive(
                f"lambda_min={metrics.lambda_min:.4f} below threshold {metrics.threshold:.4f}"
            )
        return TrapEvaluation(metrics=metrics, state=self.state, triggered=triggered, directive=directive)

    def reset(self) -> None:
        self.state = TrapState.NORMAL
        self._recovery_streak = 0
        self.last_metrics = None
