"""
Supply Ledger: remaining quantity bookkeeping.

Only a successfully recorded dose changes supply (minus one unit, floored
at zero). Editing, deleting or overriding doses never restores it.
Recording at zero supply is allowed; supply is informational.
"""

from typing import Optional

from dosetrack.config import LOW_SUPPLY_THRESHOLD, MEDIUM_SUPPLY_THRESHOLD
from dosetrack.core.models import DrugSettings, SubstanceRecord

SUPPLY_MESSAGES = {
    "empty": "Out of supply",
    "low": "Low supply - refill soon",
    "medium": "Medium supply",
    "good": "Good supply",
    "untracked": "Supply not tracked",
}


def apply_dose_to_supply(settings: DrugSettings) -> DrugSettings:
    """Settings after one recorded dose."""
    if not settings.features.supply_management or settings.current_supply is None:
        return settings
    return settings.model_copy(update={"current_supply": max(0.0, settings.current_supply - 1)})


def supply_status(amount: Optional[float]) -> str:
    if amount is None:
        return "untracked"
    if amount <= 0:
        return "empty"
    if amount <= LOW_SUPPLY_THRESHOLD:
        return "low"
    if amount <= MEDIUM_SUPPLY_THRESHOLD:
        return "medium"
    return "good"


def supply_summary(substance: SubstanceRecord) -> dict:
    settings = substance.settings
    tracked = settings.features.supply_management and settings.current_supply is not None
    status = supply_status(settings.current_supply if tracked else None)
    return {
        "tracked": tracked,
        "current_supply": settings.current_supply if tracked else None,
        "unit": settings.default_dosage.unit,
        "status": status,
        "message": SUPPLY_MESSAGES[status],
    }
