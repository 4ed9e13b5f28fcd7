"""
Safety Engine: interval and daily-quota rules for a proposed dose.

Effective timing:
  min_hours = profile.total_minutes / 60     if use_recommended_timing
            = settings.min_time_between_doses_hours   otherwise
  max_daily = settings.max_daily_doses or floor(24 / min_hours)

Verdict for a proposed dose time:
  in_offset_phase = minutes_since_last >= onset + peak
  too_soon        = not in_offset_phase and hours_since_last < min_hours
  quota_exceeded  = doses_on_same_calendar_day >= max_daily
  safe            = not too_soon and not quota_exceeded

Dosing once the last dose is past onset + peak waives the interval rule
but never the daily quota. This is deliberate harm-reduction behaviour:
a dose in the offset window no longer stacks onto peak effects the same
way. It is safety-relevant and easy to miss when reading the numbers.

Minutes (profiles) are converted to hours (user settings) only here.
An unsafe verdict is a warning; recording still happens when the caller
explicitly overrides with a reason.
"""

import logging
import math
from datetime import datetime, timedelta, tzinfo
from typing import Any, Optional

from dosetrack.core.models import (
    CamelModel,
    DoseRecord,
    SubstanceRecord,
    local_date,
    parse_timestamp,
)
from dosetrack.core.phase_engine import format_duration
from dosetrack.core.timing_profiles import DEFAULT_REGISTRY, ProfileRegistry, TimingProfile

log = logging.getLogger("dosetrack.safety")


class EffectiveTiming(CamelModel):
    min_time_between_doses_hours: float
    max_daily_doses: int
    total_minutes: int
    offset_threshold_minutes: int
    recommended: bool
    profile_key: str


class SafetyVerdict(CamelModel):
    safe: bool = True
    quota_exceeded: bool = False
    too_soon: bool = False
    doses_today: int = 0
    max_daily_doses: int = 0
    min_time_between_doses_hours: Optional[float] = None
    remaining_time_hours: float = 0.0
    time_since_last_dose_hours: Optional[float] = None
    in_offset_phase: bool = False
    reason: Optional[str] = None


def _profile_for(substance: SubstanceRecord, registry: Optional[ProfileRegistry]) -> TimingProfile:
    return (registry or DEFAULT_REGISTRY).get_profile(substance.name, substance.category)


def derive_effective_timing(substance: SubstanceRecord,
                            registry: Optional[ProfileRegistry] = None) -> EffectiveTiming:
    """Minimum interval (hours) and daily quota actually enforced for a substance."""
    profile = _profile_for(substance, registry)
    settings = substance.settings

    if settings.use_recommended_timing:
        min_hours = profile.total_minutes / 60.0
    else:
        min_hours = settings.min_time_between_doses_hours

    if settings.max_daily_doses:
        max_daily = settings.max_daily_doses
    elif min_hours > 0:
        max_daily = max(1, math.floor(24 / min_hours))
    else:
        # zero-length profile with recommended timing: no interval to divide by
        max_daily = 24

    return EffectiveTiming(
        min_time_between_doses_hours=min_hours,
        max_daily_doses=max_daily,
        total_minutes=profile.total_minutes,
        offset_threshold_minutes=profile.offset_threshold_minutes,
        recommended=settings.use_recommended_timing,
        profile_key=profile.key,
    )


def latest_dose_time(substance: SubstanceRecord, tz: Optional[tzinfo] = None) -> Optional[datetime]:
    times = [t for t in (parse_timestamp(d.timestamp, tz) for d in substance.doses) if t is not None]
    return max(times) if times else None


def count_doses_on_day(substance: SubstanceRecord, when: datetime,
                       tz: Optional[tzinfo] = None) -> int:
    """Doses on the same calendar day as `when` (not a rolling 24h window)."""
    day = local_date(when, tz)
    count = 0
    for dose in substance.doses:
        t = parse_timestamp(dose.timestamp, tz)
        if t is not None and local_date(t, tz) == day:
            count += 1
    return count


def check_dose_safety(
    substance: SubstanceRecord,
    proposed_timestamp: Any,
    registry: Optional[ProfileRegistry] = None,
    tz: Optional[tzinfo] = None,
) -> SafetyVerdict:
    """
    Decide whether a dose at `proposed_timestamp` respects the interval
    and quota rules. Pure: never records anything, never raises on bad
    timestamps (those yield a safe verdict with no timing data).
    """
    if not substance.doses:
        return SafetyVerdict(safe=True)

    timing = derive_effective_timing(substance, registry)
    min_hours = timing.min_time_between_doses_hours

    proposed = parse_timestamp(proposed_timestamp, tz)
    last = latest_dose_time(substance, tz)
    if proposed is None or last is None:
        log.debug("No verdict for %s: unusable timestamp %r", substance.name, proposed_timestamp)
        return SafetyVerdict(
            safe=True,
            max_daily_doses=timing.max_daily_doses,
            min_time_between_doses_hours=min_hours,
        )

    hours_since = (proposed - last).total_seconds() / 3600.0
    in_offset_phase = hours_since * 60.0 >= timing.offset_threshold_minutes
    doses_today = count_doses_on_day(substance, proposed, tz)

    features = substance.settings.features
    quota_exceeded = features.daily_limits and doses_today >= timing.max_daily_doses
    too_soon = (
        features.timing_restrictions
        and not in_offset_phase
        and hours_since < min_hours
    )
    remaining = max(0.0, min_hours - hours_since)

    reason = None
    if too_soon:
        reason = (
            f"Wait at least {format_hours(min_hours)} between doses "
            f"({format_hours(remaining)} remaining)"
        )
    elif quota_exceeded:
        reason = (
            f"Daily dose quota reached: {doses_today} of "
            f"{timing.max_daily_doses} doses taken today"
        )

    return SafetyVerdict(
        safe=not too_soon and not quota_exceeded,
        quota_exceeded=quota_exceeded,
        too_soon=too_soon,
        doses_today=doses_today,
        max_daily_doses=timing.max_daily_doses,
        min_time_between_doses_hours=min_hours,
        remaining_time_hours=round(remaining, 4),
        time_since_last_dose_hours=round(hours_since, 4),
        in_offset_phase=in_offset_phase,
        reason=reason,
    )


def calculate_next_dose_time(
    substance: SubstanceRecord,
    last_dose_timestamp: Any,
    registry: Optional[ProfileRegistry] = None,
    tz: Optional[tzinfo] = None,
) -> Optional[datetime]:
    """
    Earliest time the interval rule allows another dose. No clamping:
    a time in the past means "ready now".
    """
    last = parse_timestamp(last_dose_timestamp, tz)
    if last is None:
        return None
    timing = derive_effective_timing(substance, registry)
    return last + timedelta(hours=timing.min_time_between_doses_hours)


# ── Dose status ──────────────────────────────────────────────────────

def classify_dose_status(gap_hours: Optional[float], min_hours: float) -> str:
    """early: under half the interval, warning: under the interval, else normal."""
    if gap_hours is None:
        return "normal"
    if gap_hours < min_hours / 2:
        return "early"
    if gap_hours < min_hours:
        return "warning"
    return "normal"


def recompute_dose_statuses(
    substance: SubstanceRecord,
    registry: Optional[ProfileRegistry] = None,
    tz: Optional[tzinfo] = None,
) -> list[DoseRecord]:
    """
    Statuses derived from the gap to each dose's predecessor, newest first.
    Overrides are kept as recorded: they are an acknowledged decision,
    not a measurement.
    """
    min_hours = derive_effective_timing(substance, registry).min_time_between_doses_hours
    ordered = sorted(substance.doses, key=lambda d: parse_timestamp(d.timestamp, tz))
    result = []
    previous = None
    for dose in ordered:
        t = parse_timestamp(dose.timestamp, tz)
        if dose.status == "override":
            result.append(dose)
        else:
            gap = None if previous is None else (t - previous).total_seconds() / 3600.0
            result.append(dose.model_copy(update={"status": classify_dose_status(gap, min_hours)}))
        previous = t
    result.reverse()
    return result


# ── Formatting ───────────────────────────────────────────────────────

def format_hours(hours: float) -> str:
    return format_duration(hours * 60.0)


def format_countdown(next_time: Optional[datetime], now: datetime) -> str:
    """'Ready' once next_time has passed, otherwise e.g. '2h 15m'."""
    if next_time is None or next_time <= now:
        return "Ready"
    minutes = (next_time - now).total_seconds() / 60.0
    return format_duration(max(1.0, minutes))
