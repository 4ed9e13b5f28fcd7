"""
Dose statistics: adherence, sober streaks and active warnings.

  adherence  = doses in window / (window_days * 24 / min_hours), capped at 100 %
  streak     = whole days since the last dose
  longest    = largest whole-day gap between consecutive doses (or the
               current streak, if longer)

Warnings (severity high/medium):
  missed     -> gap since last dose > MISSED_DOSE_FACTOR x min interval
  limit      -> today's doses >= daily quota
  low_supply -> tracked supply at or below LOW_SUPPLY_THRESHOLD
  info       -> free-text warnings stored on the record
"""

from datetime import datetime, timedelta, tzinfo
from typing import Optional

from dosetrack.config import ADHERENCE_WINDOW_DAYS, LOW_SUPPLY_THRESHOLD, MISSED_DOSE_FACTOR
from dosetrack.core.models import SubstanceRecord, parse_timestamp
from dosetrack.core.safety_engine import (
    count_doses_on_day,
    derive_effective_timing,
    latest_dose_time,
)
from dosetrack.core.timing_profiles import ProfileRegistry


def _dose_times(substance: SubstanceRecord, tz: Optional[tzinfo] = None) -> list[datetime]:
    times = [parse_timestamp(d.timestamp, tz) for d in substance.doses]
    return sorted(t for t in times if t is not None)


def adherence_rate(substance: SubstanceRecord, now: datetime,
                   days: int = ADHERENCE_WINDOW_DAYS,
                   registry: Optional[ProfileRegistry] = None,
                   tz: Optional[tzinfo] = None) -> float:
    """Share of the maximum schedule actually taken in the last `days` days (0-100)."""
    if not substance.doses or days <= 0:
        return 0.0
    since = now - timedelta(days=days)
    recent = sum(1 for t in _dose_times(substance, tz) if since < t <= now)
    min_hours = derive_effective_timing(substance, registry).min_time_between_doses_hours
    expected = days * (24 / min_hours) if min_hours > 0 else 0
    if expected <= 0:
        return 0.0
    return round(min(100.0, recent / expected * 100.0), 1)


def sober_streak_days(substance: SubstanceRecord, now: datetime,
                      tz: Optional[tzinfo] = None) -> Optional[int]:
    """Whole days since the last dose; None when nothing was ever recorded."""
    last = latest_dose_time(substance, tz)
    if last is None:
        return None
    return int(abs((now - last).total_seconds()) // 86400)


def longest_sober_period_days(substance: SubstanceRecord, now: datetime,
                              tz: Optional[tzinfo] = None) -> Optional[int]:
    times = _dose_times(substance, tz)
    if not times:
        return None
    longest = 0
    for previous, current in zip(times, times[1:]):
        longest = max(longest, int((current - previous).total_seconds() // 86400))
    return max(longest, sober_streak_days(substance, now, tz) or 0)


def active_warnings(substance: SubstanceRecord, now: datetime,
                    registry: Optional[ProfileRegistry] = None,
                    tz: Optional[tzinfo] = None) -> list[dict]:
    warnings = []
    timing = derive_effective_timing(substance, registry)
    last = latest_dose_time(substance, tz)

    if last is not None:
        hours_since = (now - last).total_seconds() / 3600.0
        if hours_since > timing.min_time_between_doses_hours * MISSED_DOSE_FACTOR:
            warnings.append({
                "type": "missed",
                "severity": "high",
                "message": "You missed your last scheduled dose",
            })

    doses_today = count_doses_on_day(substance, now, tz)
    if substance.settings.features.daily_limits and doses_today >= timing.max_daily_doses:
        warnings.append({
            "type": "limit",
            "severity": "high",
            "message": f"Daily dose limit reached ({doses_today} of {timing.max_daily_doses})",
        })

    settings = substance.settings
    if (settings.features.supply_management and settings.current_supply is not None
            and settings.current_supply <= LOW_SUPPLY_THRESHOLD):
        warnings.append({
            "type": "low_supply",
            "severity": "medium",
            "message": f"Low supply: {settings.current_supply:g} {settings.default_dosage.unit} remaining",
        })

    if substance.warnings.strip():
        warnings.append({
            "type": "info",
            "severity": "medium",
            "message": substance.warnings.strip(),
        })

    return warnings


def compute_stats(substance: SubstanceRecord, now: datetime,
                  registry: Optional[ProfileRegistry] = None,
                  tz: Optional[tzinfo] = None) -> dict:
    """Aggregate view used by the stats endpoint and dashboard."""
    timing = derive_effective_timing(substance, registry)
    return {
        "substance_id": substance.id,
        "total_doses": len(substance.doses),
        "doses_today": count_doses_on_day(substance, now, tz),
        "max_daily_doses": timing.max_daily_doses,
        "adherence_rate": adherence_rate(substance, now, registry=registry, tz=tz),
        "sober_streak_days": sober_streak_days(substance, now, tz),
        "longest_sober_period_days": longest_sober_period_days(substance, now, tz),
        "override_count": sum(1 for d in substance.doses if d.status == "override"),
        "warnings": active_warnings(substance, now, registry, tz),
    }
