from dosetrack.core.dose_stats import (
    active_warnings,
    adherence_rate,
    compute_stats,
    longest_sober_period_days,
    sober_streak_days,
)

from conftest import NOW


def _types(warnings):
    return [w["type"] for w in warnings]


def test_adherence_rate(make_substance):
    # 4h interval -> 180 possible doses in 30 days
    doses = [f"2024-06-0{day}T08:00:00" for day in range(1, 10)]
    sub = make_substance(doses=doses, min_time_between_doses_hours=4)
    assert adherence_rate(sub, NOW) == 5.0


def test_adherence_ignores_old_doses_and_caps(make_substance):
    old = make_substance(doses=["2024-01-01T08:00:00"], min_time_between_doses_hours=4)
    assert adherence_rate(old, NOW) == 0.0

    many = make_substance(doses=[f"2024-06-10T{h:02d}:00:00" for h in range(0, 12)],
                          min_time_between_doses_hours=4)
    assert adherence_rate(many, NOW, days=1) == 100.0


def test_adherence_without_doses(make_substance):
    assert adherence_rate(make_substance(), NOW) == 0.0


def test_sober_streak(make_substance):
    assert sober_streak_days(make_substance(), NOW) is None
    sub = make_substance(doses=["2024-06-07T11:00:00", "2024-06-01T11:00:00"])
    assert sober_streak_days(sub, NOW) == 3


def test_longest_sober_period(make_substance):
    sub = make_substance(doses=["2024-06-01T08:00:00", "2024-06-06T08:00:00", "2024-06-08T08:00:00"])
    assert longest_sober_period_days(sub, NOW) == 5
    assert longest_sober_period_days(make_substance(), NOW) is None

    recent_gap = make_substance(doses=["2024-05-01T08:00:00", "2024-05-02T08:00:00"])
    assert longest_sober_period_days(recent_gap, NOW) == sober_streak_days(recent_gap, NOW)


def test_missed_dose_warning(make_substance):
    sub = make_substance(doses=["2024-06-10T02:00:00"], min_time_between_doses_hours=4)
    assert "missed" in _types(active_warnings(sub, NOW))

    recent = make_substance(doses=["2024-06-10T06:00:00"], min_time_between_doses_hours=4)
    assert "missed" not in _types(active_warnings(recent, NOW))


def test_limit_low_supply_and_info_warnings(make_substance):
    sub = make_substance(
        doses=["2024-06-10T06:00:00", "2024-06-10T07:00:00"],
        min_time_between_doses_hours=4,
        max_daily_doses=2,
        current_supply=3,
        warnings="Do not mix with alcohol",
    )
    warnings = active_warnings(sub, NOW)
    assert _types(warnings) == ["limit", "low_supply", "info"]
    assert warnings[0]["severity"] == "high"
    assert warnings[2]["message"] == "Do not mix with alcohol"


def test_no_warnings_for_fresh_substance(make_substance):
    assert active_warnings(make_substance(), NOW) == []


def test_compute_stats(make_substance):
    sub = make_substance(
        doses=[
            "2024-06-10T06:00:00",
            {"timestamp": "2024-06-10T07:00:00", "status": "override", "overrideReason": "migraine"},
        ],
        min_time_between_doses_hours=4,
    )
    stats = compute_stats(sub, NOW)
    assert stats["substance_id"] == sub.id
    assert stats["total_doses"] == 2
    assert stats["doses_today"] == 2
    assert stats["max_daily_doses"] == 6
    assert stats["override_count"] == 1
    assert stats["sober_streak_days"] == 0
    assert isinstance(stats["warnings"], list)
