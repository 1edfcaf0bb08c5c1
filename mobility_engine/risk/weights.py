"""Fixed log-odds weights for the four hospital-acquired outcomes.

Every weight is ln(relative risk) taken from published cohort estimates; the
model is not fitted. Outcome-specific weights override a common weight of
the same name.
"""

import math
from enum import StrEnum

from mobility_engine.risk.features import CognitiveStatus, MobilityLevel


class Outcome(StrEnum):
    DECONDITIONING = "deconditioning"
    VTE = "vte"
    FALLS = "falls"
    PRESSURE = "pressure"


class RiskLevel(StrEnum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


PROBABILITY_CAP = 0.95

INTERCEPTS: dict[Outcome, float] = {
    Outcome.DECONDITIONING: -2.0,
    Outcome.VTE: -4.18,
    Outcome.FALLS: -5.8,
    Outcome.PRESSURE: -3.66,
}

_MOBILITY_RR: dict[Outcome, dict[MobilityLevel, float]] = {
    Outcome.DECONDITIONING: {
        MobilityLevel.BEDBOUND: 5.6,
        MobilityLevel.CHAIR_BOUND: 3.0,
        MobilityLevel.STANDING_ASSIST: 1.8,
        MobilityLevel.WALKING_ASSIST: 1.3,
    },
    Outcome.VTE: {
        MobilityLevel.BEDBOUND: 3.6,
        MobilityLevel.CHAIR_BOUND: 2.0,
        MobilityLevel.STANDING_ASSIST: 1.5,
        MobilityLevel.WALKING_ASSIST: 1.2,
    },
    Outcome.FALLS: {
        MobilityLevel.BEDBOUND: 25.0,
        MobilityLevel.CHAIR_BOUND: 15.0,
        MobilityLevel.STANDING_ASSIST: 8.0,
        MobilityLevel.WALKING_ASSIST: 3.0,
    },
    Outcome.PRESSURE: {
        MobilityLevel.BEDBOUND: 4.0,
        MobilityLevel.CHAIR_BOUND: 2.5,
        MobilityLevel.STANDING_ASSIST: 1.6,
        MobilityLevel.WALKING_ASSIST: 1.2,
    },
}

MOBILITY_WEIGHTS: dict[Outcome, dict[MobilityLevel, float]] = {
    outcome: {level: math.log(table[level]) if level in table else 0.0 for level in MobilityLevel}
    for outcome, table in _MOBILITY_RR.items()
}

COMMON_WEIGHTS: dict[str, float] = {
    "age_65+": math.log(1.3),
    "age_70+": math.log(1.3),
    "age_80+": math.log(1.4),
    "icu": math.log(2.0),
    "stepdown": math.log(1.3),
    "malnutrition": math.log(1.6),
    "low_albumin": math.log(1.5),
    "obesity": math.log(1.3),
    "diabetes": math.log(1.2),
    "neuropathy": math.log(1.4),
    "parkinson": math.log(1.6),
    "stroke": math.log(1.8),
    "walker_baseline": math.log(1.4),
    "dependent_baseline": math.log(2.0),
}

SPECIFIC_WEIGHTS: dict[Outcome, dict[str, float]] = {
    Outcome.DECONDITIONING: {
        "cog_mild": math.log(1.3),
        "cog_delirium": math.log(1.7),
        "immobile_ge3": math.log(1.6),
    },
    Outcome.VTE: {
        "immobile_ge3": math.log(1.8),
        "active_cancer": math.log(2.0),
        "history_vte": math.log(3.0),
        "postop": math.log(1.8),
        "trauma": math.log(2.2),
        "no_prophylaxis": math.log(2.5),
    },
    Outcome.FALLS: {
        "sedating_meds": math.log(1.8),
        "cog_mild": math.log(1.6),
        "cog_delirium": math.log(2.6),
        "orthopedic": math.log(1.5),
        "stroke": math.log(1.6),
        "devices": math.log(1.3),
    },
    Outcome.PRESSURE: {
        "moisture": math.log(1.6),
        "low_albumin": math.log(1.5),
        "diabetes": math.log(1.3),
        "immobile_ge3": math.log(1.6),
    },
}

FALLS_INTERACTIONS: dict[tuple[MobilityLevel, CognitiveStatus], float] = {
    (MobilityLevel.BEDBOUND, CognitiveStatus.DELIRIUM_DEMENTIA): math.log(1.8),
    (MobilityLevel.CHAIR_BOUND, CognitiveStatus.DELIRIUM_DEMENTIA): math.log(1.5),
}

# Flags scored after the mobility (and, for falls, cognition) term, in report order
FACTOR_ORDER: dict[Outcome, tuple[str, ...]] = {
    Outcome.DECONDITIONING: (
        "age_65+", "age_70+", "age_80+", "icu", "stepdown", "malnutrition", "low_albumin",
        "walker_baseline", "dependent_baseline", "cog_mild", "cog_delirium", "immobile_ge3",
    ),
    Outcome.VTE: (
        "icu", "stepdown", "active_cancer", "history_vte", "postop", "trauma", "immobile_ge3",
        "no_prophylaxis", "age_65+", "age_70+", "age_80+", "obesity",
    ),
    Outcome.FALLS: (
        "cog_mild", "cog_delirium", "sedating_meds", "stroke", "devices", "orthopedic",
        "age_65+", "age_70+", "age_80+", "walker_baseline", "dependent_baseline",
    ),
    Outcome.PRESSURE: (
        "age_65+", "age_70+", "age_80+", "low_albumin", "diabetes", "immobile_ge3", "malnutrition",
        "obesity", "moisture", "walker_baseline", "dependent_baseline", "icu", "stepdown",
    ),
}

# Falls places its mobility x cognition interaction right after "orthopedic"
INTERACTION_AFTER: dict[Outcome, str] = {Outcome.FALLS: "orthopedic"}

RISK_BANDS: dict[Outcome, tuple[float, float]] = {
    Outcome.DECONDITIONING: (0.15, 0.25),
    Outcome.VTE: (0.02, 0.04),
    Outcome.FALLS: (0.02, 0.04),
    Outcome.PRESSURE: (0.02, 0.04),
}


def weight_for(outcome: Outcome, factor: str) -> float:
    """Outcome-specific weight if defined, else the common weight, else 0."""
    specific = SPECIFIC_WEIGHTS[outcome]
    if factor in specific:
        return specific[factor]
    return COMMON_WEIGHTS.get(factor, 0.0)
