"""
DoseTracker: record/edit/delete flows on top of the pure evaluators.

Every mutation reads the whole collection, builds an updated list and
saves it back. Dose statuses are derived from the gaps between doses and
recomputed after each change; override statuses are kept as recorded.

Recording a dose:
  1. override without a reason          -> OverrideReasonRequired
  2. verdict = check_dose_safety(...)
  3. unsafe and not overridden          -> UnsafeDoseError(verdict)
  4. prepend dose, recompute statuses, take one unit off the supply
"""

import logging
from datetime import datetime, tzinfo
from typing import Any, Callable, Optional, Union

from dosetrack.core import catalog
from dosetrack.core.dose_stats import compute_stats
from dosetrack.core.interactions import InteractionResult, evaluate_interactions
from dosetrack.core.models import (
    LOCAL_TZ,
    CamelModel,
    Dosage,
    DoseRecord,
    DrugSettings,
    SubstanceRecord,
    load_collection,
    parse_timestamp,
)
from dosetrack.core.phase_engine import PhaseStatus, compute_phase
from dosetrack.core.safety_engine import (
    SafetyVerdict,
    calculate_next_dose_time,
    check_dose_safety,
    derive_effective_timing,
    format_countdown,
    recompute_dose_statuses,
)
from dosetrack.core.supply import apply_dose_to_supply, supply_summary
from dosetrack.core.timing_profiles import DEFAULT_REGISTRY, ProfileRegistry

log = logging.getLogger("dosetrack.tracker")


# ── Errors ───────────────────────────────────────────────────────────

class TrackerError(Exception):
    pass


class SubstanceNotFound(TrackerError):
    def __init__(self, substance_id: str):
        super().__init__(f"Substance not found: {substance_id}")
        self.substance_id = substance_id


class DoseNotFound(TrackerError):
    def __init__(self, substance_id: str, dose_id: str):
        super().__init__(f"Dose {dose_id} not found for substance {substance_id}")
        self.substance_id = substance_id
        self.dose_id = dose_id


class OverrideReasonRequired(TrackerError, ValueError):
    def __init__(self):
        super().__init__("An override needs a reason")


class InvalidDoseInput(TrackerError, ValueError):
    pass


class UnsafeDoseError(TrackerError):
    """The dose breaks an interval or quota rule; retry with an override to record it."""

    def __init__(self, verdict: SafetyVerdict):
        super().__init__(verdict.reason or "Dose is outside the safe timing rules")
        self.verdict = verdict


class RecordedDose(CamelModel):
    substance: SubstanceRecord
    dose: DoseRecord
    verdict: SafetyVerdict


class NextDoseInfo(CamelModel):
    last_dose_time: Optional[datetime] = None
    next_dose_time: Optional[datetime] = None
    ready: bool = True
    countdown: str = "Ready"
    min_time_between_doses_hours: float


class OverviewRow(CamelModel):
    substance: SubstanceRecord
    verdict: SafetyVerdict
    next_dose: NextDoseInfo
    phase: PhaseStatus
    supply: dict


# ── Helpers ──────────────────────────────────────────────────────────

def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _camel_keys(data: dict) -> dict:
    return {_camel(k): v for k, v in data.items()}


def merge_settings(base: dict, changes: Optional[dict]) -> dict:
    """Overlay `changes` (snake_case or camelCase keys) on stored settings data."""
    merged = _camel_keys(base)
    changes = _camel_keys(changes or {})
    for legacy in ("minTimeBetweenDoses", "waitingPeriod"):
        value = changes.pop(legacy, None)
        if value not in (None, ""):
            changes.setdefault("minTimeBetweenDosesHours", value)
    for key, value in changes.items():
        if key == "features" and isinstance(value, dict):
            merged["features"] = {**_camel_keys(merged.get("features") or {}), **_camel_keys(value)}
        else:
            merged[key] = value
    return merged


class DoseTracker:
    def __init__(self, repository, clock: Optional[Callable[[], datetime]] = None,
                 registry: Optional[ProfileRegistry] = None,
                 tz: Optional[tzinfo] = None):
        self.repository = repository
        self.registry = registry or DEFAULT_REGISTRY
        self.tz = tz or LOCAL_TZ
        self.clock = clock or (lambda: datetime.now(self.tz))

    def now(self) -> datetime:
        return self.clock()

    # --- Collection access ---

    def _load_with(self, substance_id: str) -> tuple[list[SubstanceRecord], int, SubstanceRecord]:
        records = self.repository.load()
        for idx, record in enumerate(records):
            if record.id == substance_id:
                return records, idx, record
        raise SubstanceNotFound(substance_id)

    def _store(self, records: list[SubstanceRecord], idx: int, record: SubstanceRecord) -> SubstanceRecord:
        updated = records[:idx] + [record] + records[idx + 1:]
        self.repository.save(updated)
        return record

    def _with_statuses(self, substance: SubstanceRecord) -> SubstanceRecord:
        return substance.model_copy(update={
            "doses": recompute_dose_statuses(substance, self.registry, self.tz),
        })

    def _parse_time(self, value: Any) -> datetime:
        if value is None:
            return self.now()
        parsed = parse_timestamp(value, self.tz)
        if parsed is None:
            raise InvalidDoseInput(f"Invalid timestamp: {value!r}")
        return parsed

    # --- Substances ---

    def list_substances(self) -> list[SubstanceRecord]:
        return self.repository.load()

    def get_substance(self, substance_id: str) -> SubstanceRecord:
        return self._load_with(substance_id)[2]

    def add_substance(self, name: str, category: Optional[str] = None,
                      description: Optional[str] = None,
                      instructions: Optional[str] = None,
                      warnings: Optional[str] = None,
                      settings: Optional[Union[dict, DrugSettings]] = None) -> SubstanceRecord:
        """Create a record; catalog data fills in anything not given."""
        entry = catalog.lookup(name) or {}
        base = {}
        if entry:
            base = {
                "defaultDosage": entry["dosage"],
                "minTimeBetweenDosesHours": entry["min_time_between_doses_hours"],
                "maxDailyDoses": entry["max_daily_doses"],
            }
        if isinstance(settings, DrugSettings):
            settings = settings.model_dump(by_alias=True, exclude_unset=True)

        record = SubstanceRecord(
            name=name.strip(),
            category=category or entry.get("category") or "Custom",
            description=description if description is not None else entry.get("description", ""),
            instructions=instructions or "",
            warnings=warnings if warnings is not None else entry.get("warnings", ""),
            date_added=self.now().isoformat(),
            settings=DrugSettings.model_validate(merge_settings(base, settings)),
        )
        records = self.repository.load()
        self.repository.save(records + [record])
        log.info("Added substance %s (%s)", record.name, record.category)
        return record

    def update_settings(self, substance_id: str, changes: dict) -> SubstanceRecord:
        records, idx, substance = self._load_with(substance_id)
        current = substance.settings.model_dump(by_alias=True)
        merged = merge_settings(current, changes)
        supply_given = any(changes.get(k) is not None for k in ("currentSupply", "current_supply"))
        if supply_given and "features" not in changes:
            # setting a supply amount switches tracking on
            merged["features"]["supplyManagement"] = True
        settings = DrugSettings.model_validate(merged)
        updated = self._with_statuses(substance.model_copy(update={"settings": settings}))
        log.info("Updated settings for %s", substance.name)
        return self._store(records, idx, updated)

    def delete_substance(self, substance_id: str) -> SubstanceRecord:
        records, idx, substance = self._load_with(substance_id)
        self.repository.save(records[:idx] + records[idx + 1:])
        log.info("Deleted substance %s", substance.name)
        return substance

    # --- Doses ---

    def record_dose(self, substance_id: str, timestamp: Any = None,
                    dosage: Any = None, override: bool = False,
                    override_reason: Optional[str] = None,
                    notes: str = "") -> RecordedDose:
        reason = (override_reason or "").strip()
        if override and not reason:
            raise OverrideReasonRequired()
        when = self._parse_time(timestamp)

        records, idx, substance = self._load_with(substance_id)
        verdict = check_dose_safety(substance, when, self.registry, self.tz)
        if not verdict.safe and not override:
            log.info("Unsafe dose for %s refused: %s", substance.name, verdict.reason)
            raise UnsafeDoseError(verdict)

        overridden = override and not verdict.safe
        dose = DoseRecord(
            timestamp=when.isoformat(),
            dosage=Dosage.model_validate(dosage) if dosage is not None else substance.settings.default_dosage,
            status="override" if overridden else "normal",
            override_reason=reason if overridden else None,
            notes=notes or "",
        )
        updated = substance.model_copy(update={
            "doses": [dose] + substance.doses,
            "settings": apply_dose_to_supply(substance.settings),
        })
        updated = self._with_statuses(updated)
        self._store(records, idx, updated)

        if overridden:
            log.warning("Override dose for %s: %s (%s)", substance.name, verdict.reason, reason)
        else:
            log.info("Recorded dose for %s at %s", substance.name, dose.timestamp)
        return RecordedDose(substance=updated, dose=updated.find_dose(dose.id), verdict=verdict)

    def edit_dose(self, substance_id: str, dose_id: str, timestamp: Any = None,
                  dosage: Any = None, notes: Optional[str] = None,
                  override_reason: Optional[str] = None) -> SubstanceRecord:
        """Correct a recorded dose. Supply is not touched."""
        records, idx, substance = self._load_with(substance_id)
        dose = substance.find_dose(dose_id)
        if dose is None:
            raise DoseNotFound(substance_id, dose_id)

        changes = {}
        if timestamp is not None:
            changes["timestamp"] = self._parse_time(timestamp).isoformat()
        if dosage is not None:
            changes["dosage"] = Dosage.model_validate(dosage)
        if notes is not None:
            changes["notes"] = notes
        if override_reason is not None and dose.status == "override":
            if not override_reason.strip():
                raise OverrideReasonRequired()
            changes["override_reason"] = override_reason.strip()

        edited = dose.model_copy(update=changes)
        doses = [edited if d.id == dose_id else d for d in substance.doses]
        updated = self._with_statuses(substance.model_copy(update={"doses": doses}))
        return self._store(records, idx, updated)

    def delete_dose(self, substance_id: str, dose_id: str) -> SubstanceRecord:
        records, idx, substance = self._load_with(substance_id)
        if substance.find_dose(dose_id) is None:
            raise DoseNotFound(substance_id, dose_id)
        doses = [d for d in substance.doses if d.id != dose_id]
        updated = self._with_statuses(substance.model_copy(update={"doses": doses}))
        log.info("Deleted dose %s of %s", dose_id, substance.name)
        return self._store(records, idx, updated)

    # --- Queries ---

    def check_safety(self, substance_id: str, timestamp: Any = None) -> SafetyVerdict:
        substance = self.get_substance(substance_id)
        proposed = self.now() if timestamp is None else timestamp
        return check_dose_safety(substance, proposed, self.registry, self.tz)

    def _next_dose(self, substance: SubstanceRecord, now: datetime) -> NextDoseInfo:
        last = substance.last_dose()
        next_time = calculate_next_dose_time(
            substance, last.timestamp if last else None, self.registry, self.tz,
        )
        return NextDoseInfo(
            last_dose_time=last.time if last else None,
            next_dose_time=next_time,
            ready=next_time is None or next_time <= now,
            countdown=format_countdown(next_time, now),
            min_time_between_doses_hours=derive_effective_timing(
                substance, self.registry).min_time_between_doses_hours,
        )

    def next_dose_time(self, substance_id: str) -> NextDoseInfo:
        return self._next_dose(self.get_substance(substance_id), self.now())

    def _phase(self, substance: SubstanceRecord, now: datetime) -> PhaseStatus:
        last = substance.last_dose()
        profile = self.registry.get_profile(substance.name, substance.category)
        return compute_phase(last.timestamp if last else None, profile, now, self.tz)

    def phase(self, substance_id: str, now: Any = None) -> PhaseStatus:
        when = self._parse_time(now)
        return self._phase(self.get_substance(substance_id), when)

    def interactions(self, substance_id: str) -> list[InteractionResult]:
        records, _, substance = self._load_with(substance_id)
        return evaluate_interactions(substance, records, self.registry)

    def stats(self, substance_id: str) -> dict:
        substance = self.get_substance(substance_id)
        result = compute_stats(substance, self.now(), self.registry, self.tz)
        result["supply"] = supply_summary(substance)
        return result

    def overview(self) -> list[OverviewRow]:
        """Every substance with its current verdict, next dose, phase and supply."""
        now = self.now()
        rows = []
        for substance in self.repository.load():
            rows.append(OverviewRow(
                substance=substance,
                verdict=check_dose_safety(substance, now, self.registry, self.tz),
                next_dose=self._next_dose(substance, now),
                phase=self._phase(substance, now),
                supply=supply_summary(substance),
            ))
        return rows

    def import_collection(self, raw: Any) -> dict:
        """Replace the collection with an exported one (legacy shapes accepted)."""
        records, rejected = load_collection(raw)
        records = [self._with_statuses(r) for r in records]
        self.repository.save(records)
        log.info("Imported %d substance records (%d rejected)", len(records), rejected)
        return {"imported": len(records), "rejected": rejected}
