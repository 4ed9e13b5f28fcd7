"""
Timing Profile Registry: static per-substance and per-category phase tables.

Each profile lists cumulative effect phases after a dose:
  onset     -> effects building (includes the come-up)
  peak      -> maximum effects, no redosing
  offset    -> main effects continuing, declining
  comedown  -> after-effects tail (optional)

Phase boundaries are prefix sums of the durations. total_minutes is the
authoritative "fully cleared" time and may exceed the listed phases.

Lookup order (never fails):
  1. substance name, case-insensitive (spelling aliases resolved)
  2. category (aliases resolved, e.g. "Benzodiazepiner")
  3. default profile

Durations are rough harm-reduction figures, not pharmacokinetic data.
"""

from types import MappingProxyType
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator
from pydantic.alias_generators import to_camel

PHASE_ORDER = ("onset", "peak", "offset", "comedown")

# Generic per-phase guidance, used when a profile has no message of its own.
PHASE_INFO = {
    "onset": "Initial effects - Monitor carefully",
    "peak": "Maximum effects - No redosing",
    "offset": "Effects reducing - Rest & recover",
    "comedown": "After-effects - Take it easy",
    "finished": "Effects minimal - Safe to rest",
    "none": "No dose recorded",
}


class PhaseSpec(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    duration_minutes: int = Field(..., ge=0)
    intensity: str = "moderate"
    safety_message: str = ""


class TimingProfile(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    key: str
    onset: PhaseSpec
    peak: PhaseSpec
    offset: PhaseSpec
    comedown: Optional[PhaseSpec] = None
    total_minutes: int = Field(..., ge=0)
    general_advice: str = ""
    vitals: tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _default_total(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if data.get("total_minutes") is None and data.get("totalMinutes") is None:
            data = dict(data)
            total = 0
            for phase in PHASE_ORDER:
                spec = data.get(phase)
                if spec is None:
                    continue
                if isinstance(spec, PhaseSpec):
                    total += spec.duration_minutes
                else:
                    total += spec.get("duration_minutes", spec.get("durationMinutes", 0))
            data["total_minutes"] = total
        return data

    @model_validator(mode="after")
    def _total_covers_phases(self) -> "TimingProfile":
        listed = sum(spec.duration_minutes for _, spec in self.phases())
        if self.total_minutes < listed:
            raise ValueError(
                f"{self.key}: total_minutes {self.total_minutes} < listed phases {listed}"
            )
        return self

    def phases(self) -> list[tuple[str, PhaseSpec]]:
        return [(name, getattr(self, name)) for name in PHASE_ORDER if getattr(self, name) is not None]

    def phase_spec(self, phase: str) -> Optional[PhaseSpec]:
        if phase not in PHASE_ORDER:
            return None
        return getattr(self, phase)

    def boundaries(self) -> list[tuple[str, int]]:
        """(phase, cumulative end minute) pairs; comedown always ends at total_minutes."""
        onset_end = self.onset.duration_minutes
        peak_end = onset_end + self.peak.duration_minutes
        offset_end = peak_end + self.offset.duration_minutes
        return [
            ("onset", onset_end),
            ("peak", peak_end),
            ("offset", offset_end),
            ("comedown", self.total_minutes),
        ]

    @property
    def offset_threshold_minutes(self) -> int:
        """Minutes after a dose at which the offset window starts (onset + peak)."""
        return self.onset.duration_minutes + self.peak.duration_minutes

    @computed_field(alias="safetyInfo")
    @property
    def safety_info(self) -> dict[str, str]:
        info = {"general": self.general_advice}
        for name, spec in self.phases():
            info[name] = spec.safety_message or PHASE_INFO[name]
        return info


def _profile(key: str, onset: tuple, peak: tuple, offset: tuple,
             comedown: Optional[tuple] = None, general: str = "",
             vitals: tuple = ()) -> TimingProfile:
    def spec(row: tuple) -> PhaseSpec:
        minutes, intensity, message = row
        return PhaseSpec(duration_minutes=minutes, intensity=intensity, safety_message=message)

    return TimingProfile(
        key=key,
        onset=spec(onset),
        peak=spec(peak),
        offset=spec(offset),
        comedown=spec(comedown) if comedown else None,
        general_advice=general,
        vitals=vitals,
    )


# ── Substance profiles ───────────────────────────────────────────────
# (minutes, intensity, safety message)

SUBSTANCE_PROFILES = {
    # Benzodiazepines
    "alprazolam": _profile(
        "alprazolam",
        onset=(65, "mild", "Initial calming effects beginning. Stay in a safe environment."),
        peak=(60, "high", "Strong sedation likely. Do not drive or operate machinery."),
        offset=(120, "moderate", "Effects still strong. Avoid additional doses."),
        comedown=(240, "mild", "You may still be impaired. Get rest."),
        general="Highly addictive. Do not mix with other depressants.",
        vitals=("breathing rate", "consciousness level"),
    ),
    "diazepam": _profile(
        "diazepam",
        onset=(45, "moderate", "Initial relaxation beginning. Find a comfortable setting."),
        peak=(120, "moderate", "Moderate sedation expected. No driving."),
        offset=(480, "moderate", "Long-acting effects continue. Stay hydrated."),
        comedown=(720, "mild", "Effects may persist. Rest recommended."),
        general="Long-acting benzo. Avoid alcohol and other depressants.",
        vitals=("breathing rate", "consciousness level"),
    ),
    # Stimulants
    "mdma": _profile(
        "mdma",
        onset=(50, "moderate", "Initial effects starting. Find comfortable temperature. Anxiety normal."),
        peak=(120, "very high", "Strong effects. Take breaks from dancing. Monitor temperature."),
        offset=(180, "high", "Continue hydration. Watch for overheating."),
        comedown=(360, "mild", "Rest and recover. Supplement with vitamins if available."),
        general="Wait 6-8 weeks between uses. Test your substances.",
        vitals=("heart rate", "temperature", "hydration"),
    ),
    "cocaine": _profile(
        "cocaine",
        onset=(11, "high", "Rapid onset beginning. Check heart rate."),
        peak=(20, "very high", "Intense stimulation. Watch for anxiety."),
        offset=(20, "moderate", "Avoid redosing too frequently."),
        comedown=(60, "mild", "Coming down. Don't chase the high."),
        general="High addiction potential. Monitor heart.",
        vitals=("heart rate", "chest pain", "anxiety"),
    ),
    "amphetamine": _profile(
        "amphetamine",
        onset=(35, "moderate", "Initial stimulation starting. Stay calm and hydrated."),
        peak=(180, "high", "Strong stimulation. Monitor heart rate."),
        offset=(360, "moderate", "Maintain hydration. Eat if possible."),
        comedown=(240, "mild", "Rest and recover. Food and hydration important."),
        general="Monitor heart rate and temperature. Try to eat even if not hungry.",
        vitals=("heart rate", "temperature", "hydration"),
    ),
    "methylphenidate": _profile(
        "methylphenidate",
        onset=(90, "moderate", "Gradual onset. Maintain normal routine."),
        peak=(120, "moderate", "Moderate stimulation. Don't exceed prescribed dose."),
        offset=(240, "moderate", "Effects steady. Stay hydrated."),
        comedown=(120, "mild", "Effects diminishing. Avoid late doses."),
        general="Follow prescribed dosing schedule. Avoid taking too late in day.",
        vitals=("heart rate", "sleep quality"),
    ),
    # Dissociatives
    "ketamine": _profile(
        "ketamine",
        onset=(12, "high", "Effects begin rapidly. Sit or lie down."),
        peak=(30, "very high", "Strong dissociation. Stay seated/lying."),
        offset=(30, "moderate", "Coordination impaired. Don't move much."),
        comedown=(60, "mild", "Gradual return. Take it slow."),
        general="Use in safe setting with sitter. Maintain clear airway.",
        vitals=("breathing", "consciousness"),
    ),
}

SUBSTANCE_ALIASES = {
    "kokain": "cocaine",
    "amfetamin": "amphetamine",
    "speed": "amphetamine",
    "metylfenidat": "methylphenidate",
    "ritalin": "methylphenidate",
    "ketamin": "ketamine",
    "xanax": "alprazolam",
    "valium": "diazepam",
}

# ── Category fallback profiles ───────────────────────────────────────

CATEGORY_PROFILES = {
    "Benzodiazepines": _profile(
        "Benzodiazepines",
        onset=(30, "moderate", "Initial calming effects starting. Find safe environment."),
        peak=(120, "high", "No driving or machinery. Memory affected."),
        offset=(360, "moderate", "Avoid alcohol and other depressants."),
        comedown=(240, "mild", "Rest and recovery important."),
        general="Do not mix with alcohol or opioids.",
        vitals=("breathing rate", "consciousness"),
    ),
    "Stimulants": _profile(
        "Stimulants",
        onset=(25, "high", "Initial stimulation beginning. Monitor heart rate."),
        peak=(120, "very high", "Watch temperature. Take breaks."),
        offset=(240, "high", "Stay cool. Keep hydrating."),
        comedown=(180, "mild", "Rest and recover. Eat if possible."),
        general="Monitor heart rate and temperature. Regular small sips of water.",
        vitals=("heart rate", "temperature", "hydration"),
    ),
    "Opioids": _profile(
        "Opioids",
        onset=(30, "high", "Effects beginning. Never use alone. Have naloxone ready."),
        peak=(90, "very high", "High overdose risk. No mixing."),
        offset=(180, "high", "Monitor breathing. No other depressants."),
        comedown=(240, "mild", "Still dangerous. No alcohol."),
        general="Have naloxone available. Never use alone.",
        vitals=("breathing rate", "consciousness", "skin color"),
    ),
}

CATEGORY_ALIASES = {
    "benzodiazepiner": "Benzodiazepines",
    "benzodiazepine": "Benzodiazepines",
    "benzos": "Benzodiazepines",
    "sentralstimulerende": "Stimulants",
    "stimulant": "Stimulants",
    "opioider": "Opioids",
    "opioid": "Opioids",
    "opiates": "Opioids",
}

DEFAULT_PROFILE = _profile(
    "default",
    onset=(45, "moderate", "Initial effects beginning. Find safe environment."),
    peak=(90, "high", "Peak effects. No additional doses."),
    offset=(180, "moderate", "Main effects continuing."),
    comedown=(120, "mild", "Effects reducing. Rest advised."),
    general="Monitor effects carefully. Stay in safe environment.",
    vitals=("general wellbeing",),
)


def _norm(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


class ProfileRegistry:
    """Immutable profile lookup keyed by normalised names."""

    def __init__(
        self,
        substances: Mapping[str, TimingProfile],
        categories: Mapping[str, TimingProfile],
        default: TimingProfile,
        substance_aliases: Optional[Mapping[str, str]] = None,
        category_aliases: Optional[Mapping[str, str]] = None,
    ):
        self._substances = MappingProxyType({_norm(k): v for k, v in substances.items()})
        self._categories = MappingProxyType(dict(categories))
        self._category_keys = MappingProxyType({_norm(k): k for k in categories})
        self._substance_aliases = MappingProxyType(
            {_norm(k): _norm(v) for k, v in (substance_aliases or {}).items()}
        )
        self._category_aliases = MappingProxyType(
            {_norm(k): v for k, v in (category_aliases or {}).items()}
        )
        self.default = default

    def normalize_substance(self, name: Any) -> str:
        key = _norm(name)
        return self._substance_aliases.get(key, key)

    def normalize_category(self, category: Any) -> str:
        """Canonical category name; unknown categories come back stripped as given."""
        key = _norm(category)
        if key in self._category_aliases:
            return self._category_aliases[key]
        if key in self._category_keys:
            return self._category_keys[key]
        return "" if category is None else str(category).strip()

    def get_profile(self, name_or_category: Any, category: Any = None) -> TimingProfile:
        key = self.normalize_substance(name_or_category)
        if key in self._substances:
            return self._substances[key]
        for candidate in (category, name_or_category):
            canonical = self.normalize_category(candidate)
            if canonical in self._categories:
                return self._categories[canonical]
        return self.default

    def substance_keys(self) -> list[str]:
        return sorted(self._substances)

    def category_keys(self) -> list[str]:
        return sorted(self._categories)

    def list_profiles(self) -> dict[str, list[TimingProfile]]:
        return {
            "substances": [self._substances[k] for k in self.substance_keys()],
            "categories": [self._categories[k] for k in self.category_keys()],
            "default": [self.default],
        }


DEFAULT_REGISTRY = ProfileRegistry(
    SUBSTANCE_PROFILES,
    CATEGORY_PROFILES,
    DEFAULT_PROFILE,
    substance_aliases=SUBSTANCE_ALIASES,
    category_aliases=CATEGORY_ALIASES,
)


def get_profile(name_or_category: Any, category: Any = None,
                registry: Optional[ProfileRegistry] = None) -> TimingProfile:
    """Resolve a timing profile by substance name, then category, then default."""
    return (registry or DEFAULT_REGISTRY).get_profile(name_or_category, category)


def normalize_category(category: Any, registry: Optional[ProfileRegistry] = None) -> str:
    return (registry or DEFAULT_REGISTRY).normalize_category(category)


def safety_recommendations(name: Any, phase: str, category: Any = None,
                           registry: Optional[ProfileRegistry] = None) -> dict:
    """Phase-specific message, general advice and vitals to watch."""
    profile = get_profile(name, category, registry)
    spec = profile.phase_spec(phase)
    message = spec.safety_message if spec and spec.safety_message else PHASE_INFO.get(phase, "")
    return {
        "phase": phase,
        "message": message,
        "general": profile.general_advice,
        "vitals": list(profile.vitals),
    }
