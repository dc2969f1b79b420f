"""Metropolis-Hastings exploration of hypothesis space.

A single Markov chain whose states are hypotheses. Each step asks the
Creative soul to recombine a random subset of source concepts into a new
hypothesis, then accepts or rejects it by the Metropolis criterion on its
energy. Lower energy means higher confidence and more bridged concepts.
"""

import math
import random
from dataclasses import dataclass, field

from src.contracts.schemas import (
    Contradiction,
    Hypothesis,
    HypothesisOrigin,
    MCMCConfig,
    SourceConcepts,
)
from src.soul.prompts.creative import CreativeSoul


def energy(hypothesis: Hypothesis) -> float:
    """E(h) = 0.6 * (100 - confidence) + 0.4 * (100 - 25 * bridges)."""
    confidence_component = 100 - hypothesis.confidence
    bridge_component = 100 - 25 * len(hypothesis.bridged_concepts)
    return 0.6 * confidence_component + 0.4 * bridge_component


def metropolis_accept(current_energy: float, proposal_energy: float, temperature: float, rng: random.Random) -> bool:
    """Always accept downhill moves; uphill with exp(-dE / (T * 100))."""
    if proposal_energy <= current_energy:
        return True
    probability = math.exp(-(proposal_energy - current_energy) / (temperature * 100))
    return rng.random() < probability


def deduplicate(hypotheses: list[Hypothesis]) -> list[Hypothesis]:
    """Keep the first hypothesis for each normalized thesis key."""
    seen: set[str] = set()
    unique = []
    for h in hypotheses:
        if h.normalized_key in seen:
            continue
        seen.add(h.normalized_key)
        unique.append(h)
    return unique


@dataclass
class ExplorationResult:
    """Samples and acceptance statistics of one chain."""
    samples: list[Hypothesis] = field(default_factory=list)
    proposed: int = 0
    accepted: int = 0
    self_loops: int = 0
    temperature: float = 0.0

    @property
    def acceptance_rate(self) -> float:
        return self.accepted / self.proposed if self.proposed else 0.0


class HypothesisExplorer:
    """Runs the Metropolis-Hastings chain over hypotheses.

    Usage:
        explorer = HypothesisExplorer(creative, MCMCConfig(), rng=random.Random(7))
        result = await explorer.explore(concepts, contradictions)
    """

    def __init__(
        self,
        creative: CreativeSoul,
        config: MCMCConfig | None = None,
        rng: random.Random | None = None,
    ):
        self.creative = creative
        self.config = config or MCMCConfig()
        self.rng = rng or random.Random()

    def _select_concepts(self, concepts: list[SourceConcepts]) -> list[SourceConcepts]:
        k = min(self.config.max_concepts_per_proposal, len(concepts))
        return self.rng.sample(concepts, k)

    async def explore(
        self,
        concepts: list[SourceConcepts],
        contradictions: list[Contradiction],
        *,
        temperature: float | None = None,
        num_samples: int | None = None,
        burn_in: int | None = None,
        initial: Hypothesis | None = None,
        research_focus: str | None = None,
        origin: HypothesisOrigin = HypothesisOrigin.MCMC,
    ) -> ExplorationResult:
        """Run the chain.

        Args:
            concepts: Extracted source concepts to recombine
            contradictions: Detected contradictions (used for the initial state)
            temperature: Sampling temperature; defaults to the configured one
            num_samples: Chain length; defaults to the configured one
            burn_in: States discarded from the start of the chain
            initial: Starting state; generated from all sources if omitted
            research_focus: Optional focus passed to initial-state generation
            origin: Origin tag for proposed hypotheses

        Returns:
            ExplorationResult with post-burn-in states deduplicated by
            normalized thesis and sorted by ascending energy
        """
        temperature = temperature if temperature is not None else self.config.temperature
        num_samples = num_samples if num_samples is not None else self.config.num_samples
        burn_in = burn_in if burn_in is not None else self.config.burn_in

        print(f"[MCMC] Starting exploration: {num_samples} samples, burn-in {burn_in}, T={temperature}")

        if initial is None:
            initial = await self.creative.generate_initial(concepts, contradictions, research_focus)
        current = initial.model_copy(update={"energy": energy(initial)})

        result = ExplorationResult(temperature=temperature)
        chain: list[Hypothesis] = []

        for step in range(num_samples):
            result.proposed += 1
            proposal = None
            if concepts:
                proposal = await self.creative.propose_recombination(
                    current,
                    self._select_concepts(concepts),
                    temperature=min(temperature, 2.0),
                    origin=origin,
                )

            if proposal is None:
                # Self-loop: the chain stays where it is
                result.self_loops += 1
            else:
                proposal = proposal.model_copy(update={"energy": energy(proposal)})
                if metropolis_accept(current.energy, proposal.energy, temperature, self.rng):
                    current = proposal
                    result.accepted += 1

            if step >= burn_in:
                chain.append(current)

        result.samples = sorted(deduplicate(chain), key=lambda h: h.energy)
        print(
            f"[MCMC] Exploration complete. Acceptance rate: {result.acceptance_rate:.1%}, "
            f"unique samples: {len(result.samples)}"
        )
        return result
