"""Domain constraint validators for final hypotheses.

Each validator checks the mechanism text against known empirical
constraints of one domain and reports violations. Validators only fire
when the text is relevant to their domain, so running several over the
same hypothesis is safe.

Validators are composed by ``ConstraintPipeline`` rather than subclassed
per domain.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from src.contracts.schemas import Hypothesis


@dataclass
class ConstraintViolation:
    """A broken domain constraint."""
    constraint: str
    description: str
    severity: str  # fatal, warning
    suggested_fix: str = ""

    def __str__(self) -> str:
        return f"[{self.severity}] {self.constraint}: {self.description}"


class ConstraintValidator(ABC):
    """Checks hypothesis text against one domain's constraints."""

    domain: str = ""

    @abstractmethod
    def validate(self, text: str) -> list[ConstraintViolation]:
        ...


# =============================================================================
# Scaling laws
# =============================================================================


class ScalingLawsValidator(ConstraintValidator):
    """Beta-regime checks for growth equations of the form dN/dt = a*N^beta - b*N.

    beta < 1 (sublinear) means bounded growth towards a carrying capacity.
    beta > 1 (superlinear) means a finite-time singularity unless innovation
    resets the cycle.
    """

    domain = "scaling_laws"

    GROWTH_KEYWORDS = (
        "growth", "scale", "scaling", "grows", "growing", "expand", "increase",
        "metabolic", "power law", "carrying capacity", "equilibrium", "singularity",
        "n^", "exponent", "beta",
    )

    # (pattern, system, empirical beta)
    KNOWN_SYSTEMS = (
        (r"biolog|organism|metabolic|kleiber|mammal|animal", "biological organisms", 0.75),
        (r"compan|corporate|business|\bfirms?\b", "companies", 0.9),
        (r"infrastructure|road|pipe|wire|utility", "urban infrastructure", 0.85),
    )
    KNOWN_BETA_TOLERANCE = 0.15

    UNBOUNDED = re.compile(r"unbounded|indefinite|infinite|limitless|without bound|exponential.*forever|grow.*forever", re.I)
    CARRYING_CAPACITY = re.compile(r"carrying capacity|\bbounded|equilibrium|asymptot|N\*|stasis|stops growing|approaches.*limit", re.I)
    SINGULARITY = re.compile(r"singularity|finite.time|t_sing|collapse|diverge|hyperbolic.*growth|infinite.*finite", re.I)
    INNOVATION_RESET = re.compile(r"innovation.*reset|reset.*cycle|accelerating.*innovation|innovation.*treadmill", re.I)
    STABLE = re.compile(r"stable.*equilibrium|steady.*state|long.term.*stability|sustainable.*equilibrium", re.I)

    @staticmethod
    def extract_beta(text: str) -> float | None:
        """Scaling exponent from 'beta = x', 'N^x', a common fraction or 'exponent x'."""
        match = re.search(r"(?:β|beta)\s*=\s*(\d+(?:\.\d+)?)", text, re.I)
        if match:
            return float(match.group(1))

        match = re.search(r"[NM]\^[{(]?(\d+(?:\.\d+)?)[})]?", text, re.I)
        if match:
            return float(match.group(1))

        match = re.search(r"\b(3/4|1/4|9/10)\b", text)
        if match:
            return {"3/4": 0.75, "1/4": 0.25, "9/10": 0.9}[match.group(1)]

        match = re.search(r"exponent\s*[=:~]?\s*(\d+(?:\.\d+)?)", text, re.I)
        if match:
            return float(match.group(1))
        return None

    def _known_system(self, lower: str) -> tuple[str, float] | None:
        for pattern, system, beta in self.KNOWN_SYSTEMS:
            if re.search(pattern, lower):
                return system, beta
        if re.search(r"\bcit(?:y|ies)\b|urban|socioeconomic|gdp|patent|wage|crime", lower) and re.search(r"scale|growth", lower):
            return "city socioeconomic outputs", 1.15
        return None

    def validate(self, text: str) -> list[ConstraintViolation]:
        lower = text.lower()
        if not any(k in lower for k in self.GROWTH_KEYWORDS):
            return []

        beta = self.extract_beta(text)
        if beta is None:
            claims_scaling = "scale" in lower and any(w in lower for w in ("law", "exponent", "power", "metabolic"))
            if claims_scaling:
                return [ConstraintViolation(
                    "beta_regime",
                    "Growth/scaling claim should specify the scaling exponent beta or identify its regime.",
                    "warning",
                )]
            return []

        if beta <= 0 or beta > 2:
            return [ConstraintViolation(
                "beta_regime",
                f"Scaling exponent beta={beta:.2f} is outside the observed range (0 < beta <= 2).",
                "fatal",
            )]

        violations = []
        if beta < 1 and self.UNBOUNDED.search(text) and not self.CARRYING_CAPACITY.search(text):
            violations.append(ConstraintViolation(
                "beta_regime",
                f"Sublinear scaling (beta={beta:.2f} < 1) implies bounded growth towards a carrying capacity; "
                "cannot claim unbounded growth.",
                "fatal",
            ))

        if beta > 1:
            if self.STABLE.search(text):
                violations.append(ConstraintViolation(
                    "singularity_risk",
                    f"Superlinear scaling (beta={beta:.2f} > 1) leads to a finite-time singularity, "
                    "not a stable equilibrium.",
                    "fatal",
                ))
            elif not self.SINGULARITY.search(text) and not self.INNOVATION_RESET.search(text):
                violations.append(ConstraintViolation(
                    "singularity_risk",
                    f"Superlinear scaling (beta={beta:.2f} > 1) must acknowledge collapse risk "
                    "or an innovation-reset requirement.",
                    "warning",
                ))

        known = self._known_system(lower)
        if known and abs(beta - known[1]) > self.KNOWN_BETA_TOLERANCE:
            system, expected = known
            violations.append(ConstraintViolation(
                "beta_regime",
                f"Claims beta={beta:.2f} for {system}, but the empirical value is about {expected}.",
                "warning",
            ))
        return violations


# =============================================================================
# Educational claims
# =============================================================================


class EducationalClaimsValidator(ConstraintValidator):
    """Flags learning interventions that contradict established learning science."""

    domain = "education"

    # (constraint, patterns, description, severity, suggested fix)
    RULES = (
        (
            "cognitive_overload",
            (r"learn.*10.*concepts.*one.*session", r"information.*overwhelming"),
            "Intervention exceeds working memory capacity (7 +/- 2 items).",
            "fatal",
            "Reduce information density or chunk content",
        ),
        (
            "prerequisite_gap",
            (r"student.*doesn'?t.*understand.*basic", r"skipped.*prerequisite", r"foundation.*missing"),
            "Content assumes knowledge the learner lacks.",
            "fatal",
            "Provide prerequisite review or remediation",
        ),
        (
            "massed_practice",
            (r"cram", r"all[- ]?night", r"study.*entire.*day", r"marathon.*session"),
            "Massed practice (cramming) is ineffective for retention.",
            "warning",
            "Distribute practice sessions over multiple days",
        ),
        (
            "passive_learning",
            (r"just.*re[- ]?read", r"highlight.*again", r"passive.*consumption", r"watch.*video.*without.*practice"),
            "Passive re-reading predicts low retention.",
            "warning",
            "Add active recall (practice tests, teach-back)",
        ),
        (
            "fixed_mindset_language",
            (r"you'?re.*smart", r"you'?re.*talented", r"natural.*ability", r"gifted.*student", r"not.*a.*math.*person"),
            "Feedback emphasizes ability over effort.",
            "warning",
            "Use effort-based feedback",
        ),
    )

    def validate(self, text: str) -> list[ConstraintViolation]:
        lower = text.lower()
        return [
            ConstraintViolation(constraint, description, severity, fix)
            for constraint, patterns, description, severity, fix in self.RULES
            if any(re.search(p, lower) for p in patterns)
        ]


# =============================================================================
# Legal causation
# =============================================================================


class LegalCausationValidator(ConstraintValidator):
    """Legal causation checks on an Intent -> Action -> Harm chain.

    Covers the but-for test, proximate cause (foreseeability), superseding
    intervening causes, presence-without-action and the mens rea requirement.
    """

    domain = "legal"

    LEGAL_TERMS = re.compile(
        r"defendant|plaintiff|liabil|\btort|negligen|culpab|\bcourt|statut|crimin|lawsuit|litigat|prosecut",
        re.I,
    )

    BUT_FOR_FAILURE = re.compile(
        r"would have occurred anyway|independent cause|unrelated to|mere coincidence|regardless of|"
        r"would still have happened|inevitable",
        re.I,
    )
    UNFORESEEABLE = re.compile(
        r"unforeseeable|freak accident|extraordinary|unprecedented|could not have anticipated|no reasonable person",
        re.I,
    )
    INTERVENING = re.compile(r"intervening|independent.*cause|third.party", re.I)
    SUPERSEDING = re.compile(
        r"superseding cause|broke the chain|independent.*intervening|act of god|force majeure|"
        r"sole proximate cause|superseded by",
        re.I,
    )
    PRESENCE = re.compile(r"was present|at the scene|nearby|witnessed|observed|in the area|around the time", re.I)
    ACTION = re.compile(
        r"\b(?:did|performed|caused|struck|shot|drove|attacked|pushed|threw|injected|administered|"
        r"operated|manufactured|sold|provided)\b",
        re.I,
    )
    MENTAL_STATE = re.compile(r"purposeful|knowing|reckless|negligen|strict liability|intentional", re.I)

    def validate(self, text: str) -> list[ConstraintViolation]:
        if not self.LEGAL_TERMS.search(text):
            return []

        violations = []
        but_for = self.BUT_FOR_FAILURE.search(text)
        if but_for:
            violations.append(ConstraintViolation(
                "but_for",
                f"But-for test fails: the harm would have occurred without the action ('{but_for.group(0)}').",
                "fatal",
                "Show the harm would not have occurred absent the defendant's action",
            ))

        superseding = self.SUPERSEDING.search(text)
        unforeseeable = self.UNFORESEEABLE.search(text)
        intervening = self.INTERVENING.search(text)
        if unforeseeable:
            violations.append(ConstraintViolation(
                "proximate_cause",
                f"Harm was not a foreseeable consequence of the action ('{unforeseeable.group(0)}').",
                "fatal",
                "Establish that a reasonable person would foresee this type of harm",
            ))
        elif intervening and not superseding:
            violations.append(ConstraintViolation(
                "proximate_cause",
                f"Possible intervening cause weakens proximate causation ('{intervening.group(0)}').",
                "warning",
                "Show the intervening cause was foreseeable or dependent on the defendant's conduct",
            ))

        if superseding:
            violations.append(ConstraintViolation(
                "intervening_cause",
                f"Superseding cause breaks the causal chain ('{superseding.group(0)}').",
                "fatal",
                "Show the intervening cause was foreseeable or not truly independent",
            ))

        if self.PRESENCE.search(text) and not self.ACTION.search(text):
            violations.append(ConstraintViolation(
                "correlation_trap",
                "Presence at the scene does not establish causation without an action that caused the harm.",
                "fatal",
                "Identify the specific action that caused the harm",
            ))

        if not self.MENTAL_STATE.search(text):
            violations.append(ConstraintViolation(
                "mens_rea",
                "Mental state not established.",
                "warning",
                "Classify intent as purposeful, knowing, reckless, negligent or strict liability",
            ))
        return violations


# =============================================================================
# Pipeline
# =============================================================================


DEFAULT_VALIDATORS: tuple[type[ConstraintValidator], ...] = (
    ScalingLawsValidator,
    EducationalClaimsValidator,
    LegalCausationValidator,
)


class ConstraintPipeline:
    """Runs the validators for a domain (or all of them) over hypotheses."""

    def __init__(self, validators: list[ConstraintValidator] | None = None):
        self.validators = validators if validators is not None else [cls() for cls in DEFAULT_VALIDATORS]

    @property
    def domains(self) -> list[str]:
        return [v.domain for v in self.validators]

    def validators_for(self, domain: str | None) -> list[ConstraintValidator]:
        if domain is None:
            return list(self.validators)
        return [v for v in self.validators if v.domain == domain]

    def check(self, hypothesis: Hypothesis, domain: str | None = None) -> list[ConstraintViolation]:
        text = f"{hypothesis.thesis}\n{hypothesis.mechanism}\n{hypothesis.description}"
        violations = []
        for validator in self.validators_for(domain):
            violations.extend(validator.validate(text))
        return violations

    def apply(self, hypothesis: Hypothesis, domain: str | None = None) -> Hypothesis:
        """Return a copy of ``hypothesis`` with its constraint violations attached."""
        violations = self.check(hypothesis, domain)
        if violations:
            print(f"[Constraints] {hypothesis.id}: {len(violations)} violation(s)")
        return hypothesis.annotate(constraint_violations=[str(v) for v in violations])
