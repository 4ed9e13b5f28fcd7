"""
Data model for tracked substances: settings, dose records and the
stored collection shape.

The collection is persisted with camelCase keys; Python code works with
snake_case attributes (pydantic aliases handle both directions).

Older stored shapes are upgraded here, once, at the model boundary:
  - defaultDosage as a string ("10 mg") or bare number, plus a separate
    defaultDosageUnit
  - minTimeBetweenDoses / waitingPeriod instead of minTimeBetweenDosesHours
  - trackSupply instead of features.supplyManagement
  - dosing fields stored on the record instead of inside settings
  - numeric record ids and doses without ids
"""

import json
import logging
import re
import uuid
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.parser import isoparse
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from dosetrack.config import DEFAULT_DOSAGE_UNIT, DEFAULT_MIN_HOURS, TIMEZONE

log = logging.getLogger("dosetrack.models")

DoseStatus = Literal["normal", "early", "warning", "override"]

try:
    LOCAL_TZ: tzinfo = ZoneInfo(TIMEZONE)
except (ZoneInfoNotFoundError, ValueError):
    log.warning("Unknown timezone %r, falling back to UTC", TIMEZONE)
    LOCAL_TZ = timezone.utc


# ── Time helpers ─────────────────────────────────────────────────────

def new_id() -> str:
    return uuid.uuid4().hex


def parse_timestamp(value: Any, tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """
    Parse an ISO-8601 instant into an aware datetime.
    Naive values are wall time in `tz` (default: configured TIMEZONE).
    Returns None for anything that is not a usable timestamp.
    """
    if value is None or value == "":
        return None
    tz = tz or LOCAL_TZ
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = isoparse(value.strip())
        except (ValueError, OverflowError):
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt


def local_date(dt: datetime, tz: Optional[tzinfo] = None) -> date:
    """Calendar date of an aware datetime in the tracking timezone."""
    return dt.astimezone(tz or LOCAL_TZ).date()


# ── Base ─────────────────────────────────────────────────────────────

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


_DOSAGE_RE = re.compile(r"^\s*([0-9]*[.,]?[0-9]+)\s*(.*?)\s*$")


class Dosage(CamelModel):
    amount: float = Field(default=0.0, ge=0)
    unit: str = DEFAULT_DOSAGE_UNIT

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy(cls, data: Any) -> Any:
        if isinstance(data, bool):
            return data
        if isinstance(data, (int, float)):
            return {"amount": data}
        if isinstance(data, str):
            match = _DOSAGE_RE.match(data)
            if not match:
                return {"amount": 0.0, "unit": data.strip() or DEFAULT_DOSAGE_UNIT}
            amount, unit = match.groups()
            return {"amount": float(amount.replace(",", ".")), "unit": unit or DEFAULT_DOSAGE_UNIT}
        if isinstance(data, dict):
            data = dict(data)
            if data.get("amount") in ("", None):
                data["amount"] = 0.0
            if not data.get("unit"):
                data["unit"] = DEFAULT_DOSAGE_UNIT
        return data

    def __str__(self) -> str:
        return f"{self.amount:g} {self.unit}"


class FeatureFlags(CamelModel):
    """Which rules are enforced for a substance."""
    daily_limits: bool = True
    timing_restrictions: bool = True
    supply_management: bool = False


# ── Settings ─────────────────────────────────────────────────────────

_LEGACY_INTERVAL_KEYS = ("minTimeBetweenDoses", "waitingPeriod")


def _pick(data: dict, *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


class DrugSettings(CamelModel):
    default_dosage: Dosage = Field(default_factory=Dosage)
    min_time_between_doses_hours: float = Field(default=DEFAULT_MIN_HOURS, gt=0)
    # None -> derived as floor(24 / effective interval)
    max_daily_doses: Optional[int] = Field(default=None, ge=1)
    use_recommended_timing: bool = False
    current_supply: Optional[float] = Field(default=None, ge=0)
    features: FeatureFlags = Field(default_factory=FeatureFlags)

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        has_interval = "minTimeBetweenDosesHours" in data or "min_time_between_doses_hours" in data
        for key in _LEGACY_INTERVAL_KEYS:
            value = data.pop(key, None)
            if not has_interval and value not in (None, ""):
                data["minTimeBetweenDosesHours"] = value
                has_interval = True

        unit = data.pop("defaultDosageUnit", None)
        dosage = _pick(data, "defaultDosage", "default_dosage")
        if unit and isinstance(dosage, (int, float, str)):
            data.pop("default_dosage", None)
            data["defaultDosage"] = f"{dosage} {unit}"
        elif unit and isinstance(dosage, dict) and not dosage.get("unit"):
            data.pop("default_dosage", None)
            data["defaultDosage"] = {**dosage, "unit": unit}

        for key in ("maxDailyDoses", "max_daily_doses"):
            if data.get(key) in ("", 0, "0"):
                data[key] = None

        supply = _pick(data, "currentSupply", "current_supply")
        if isinstance(supply, (int, float)) and not isinstance(supply, bool) and supply < 0:
            data.pop("current_supply", None)
            data["currentSupply"] = 0

        track = data.pop("trackSupply", None)
        features = _pick(data, "features")
        if isinstance(features, FeatureFlags):
            features = features.model_dump(by_alias=True)
        features = dict(features) if isinstance(features, dict) else {}
        if "supplyManagement" not in features and "supply_management" not in features:
            if track is not None:
                features["supplyManagement"] = bool(track)
            else:
                features["supplyManagement"] = supply not in (None, "")
        data["features"] = features
        return data


# ── Records ──────────────────────────────────────────────────────────

class DoseRecord(CamelModel):
    id: str = Field(default_factory=new_id)
    timestamp: str
    dosage: Dosage = Field(default_factory=Dosage)
    status: DoseStatus = "normal"
    override_reason: Optional[str] = None
    notes: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if value in (None, ""):
            return new_id()
        return str(value)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _valid_timestamp(cls, value: Any) -> Any:
        parsed = parse_timestamp(value)
        if parsed is None:
            raise ValueError(f"invalid timestamp: {value!r}")
        return value.isoformat() if isinstance(value, datetime) else value

    @model_validator(mode="after")
    def _override_needs_reason(self) -> "DoseRecord":
        if self.status == "override" and not (self.override_reason or "").strip():
            raise ValueError("overrideReason is required when status is 'override'")
        return self

    @property
    def time(self) -> datetime:
        return parse_timestamp(self.timestamp)


_LEGACY_RECORD_SETTING_KEYS = {
    "minTimeBetweenDoses": "minTimeBetweenDoses",
    "maxDailyDoses": "maxDailyDoses",
    "currentSupply": "currentSupply",
    "dosage": "defaultDosage",
    "dosageUnit": "defaultDosageUnit",
    "trackSupply": "trackSupply",
}


class SubstanceRecord(CamelModel):
    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1)
    category: str = "Custom"
    description: str = ""
    instructions: str = ""
    warnings: str = ""
    date_added: Optional[str] = None
    settings: DrugSettings = Field(default_factory=DrugSettings)
    doses: list[DoseRecord] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        settings = _pick(data, "settings")
        if isinstance(settings, DrugSettings):
            settings = settings.model_dump(by_alias=True)
        settings = dict(settings) if isinstance(settings, dict) else {}
        for legacy, target in _LEGACY_RECORD_SETTING_KEYS.items():
            if legacy not in data:
                continue
            value = data.pop(legacy)
            target_snake = re.sub(r"(?<!^)(?=[A-Z])", "_", target).lower()
            if target not in settings and target_snake not in settings and value not in (None, ""):
                settings[target] = value
        data.pop("settings", None)
        data["settings"] = settings
        if isinstance(data.get("warnings"), list):
            data["warnings"] = "\n".join(str(w) for w in data["warnings"])
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if value in (None, ""):
            return new_id()
        return str(value)

    @field_validator("category", "description", "instructions", "warnings", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @model_validator(mode="after")
    def _newest_first(self) -> "SubstanceRecord":
        self.doses.sort(key=lambda d: d.time, reverse=True)
        return self

    def last_dose(self) -> Optional[DoseRecord]:
        """Most recent dose by timestamp (list order is not trusted)."""
        if not self.doses:
            return None
        return max(self.doses, key=lambda d: d.time)

    def find_dose(self, dose_id: str) -> Optional[DoseRecord]:
        for dose in self.doses:
            if dose.id == dose_id:
                return dose
        return None


# ── Collection (de)serialisation ─────────────────────────────────────

def load_collection(raw: Any) -> tuple[list[SubstanceRecord], int]:
    """
    Validate a stored collection. Records that cannot be upgraded are
    skipped and counted so one bad entry never breaks the whole list.
    """
    if raw is None:
        return [], 0
    if not isinstance(raw, list):
        raise ValueError("stored substance collection must be a JSON array")
    records = []
    rejected = 0
    for item in raw:
        try:
            records.append(SubstanceRecord.model_validate(item))
        except ValidationError as e:
            rejected += 1
            name = item.get("name") if isinstance(item, dict) else None
            log.warning("Skipping unreadable substance record %r: %s", name, e)
    return records, rejected


def dump_collection(records: list[SubstanceRecord]) -> list[dict]:
    return [r.model_dump(mode="json", by_alias=True) for r in records]


def collection_fingerprint(raw: Any) -> str:
    return json.dumps(raw, sort_keys=True, default=str)
