"""
Interaction Risk Evaluator: category-pair risk between tracked substances.

Rules (on normalised categories, current substance first):
  Benzodiazepines x Opioids / Benzodiazepines  -> high
  Stimulants x Stimulants                      -> medium
  anything else                                -> low

This is a coarse, non-clinical heuristic: it only looks at categories,
the table is directional (an opioid queried against a benzodiazepine is
"low"), and "low" means "no rule matched", not "known safe". It is no
substitute for a real interaction database.
"""

from typing import Iterable, Literal, Optional

from dosetrack.core.models import CamelModel, SubstanceRecord
from dosetrack.core.timing_profiles import DEFAULT_REGISTRY, ProfileRegistry

Severity = Literal["high", "medium", "low"]

SEVERITY_RANK = {"high": 0, "medium": 1, "low": 2}

INTERACTION_RULES: dict[str, dict[str, str]] = {
    "Benzodiazepines": {
        "Opioids": "high",
        "Benzodiazepines": "high",
    },
    "Stimulants": {
        "Stimulants": "medium",
    },
}

DESCRIPTION_TEMPLATES = {
    "high": (
        "Serious interaction risk between {current} and {other}: combining "
        "central nervous system depressants can cause dangerous sedation and "
        "respiratory depression. Avoid taking them together."
    ),
    "medium": (
        "Moderate interaction risk between {current} and {other}: stacking "
        "stimulants adds strain on heart rate, blood pressure and body "
        "temperature. Space doses out and monitor vitals."
    ),
    "low": (
        "No category-level interaction rule matched {current} and {other}. "
        "This is not a clinical interaction check."
    ),
}


class InteractionResult(CamelModel):
    substance_id: str
    substance_name: str
    category: str = ""
    severity: Severity
    description: str


def classify_pair(current_category: str, other_category: str,
                  registry: Optional[ProfileRegistry] = None) -> str:
    registry = registry or DEFAULT_REGISTRY
    current = registry.normalize_category(current_category)
    other = registry.normalize_category(other_category)
    return INTERACTION_RULES.get(current, {}).get(other, "low")


def evaluate_interactions(
    current: SubstanceRecord,
    tracked: Iterable[SubstanceRecord],
    registry: Optional[ProfileRegistry] = None,
) -> list[InteractionResult]:
    """
    Pairwise risk of `current` against every other tracked substance,
    sorted high -> medium -> low. `current` itself is never included.
    """
    results = []
    for other in tracked:
        if other.id == current.id:
            continue
        severity = classify_pair(current.category, other.category, registry)
        results.append(InteractionResult(
            substance_id=other.id,
            substance_name=other.name,
            category=other.category,
            severity=severity,
            description=DESCRIPTION_TEMPLATES[severity].format(
                current=current.name, other=other.name,
            ),
        ))
    results.sort(key=lambda r: SEVERITY_RANK[r.severity])
    return results
