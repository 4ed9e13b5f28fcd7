import asyncio
from datetime import timedelta

import pytest

from dosetrack.core.phase_engine import PhaseTicker, compute_phase, format_duration, phase_at
from dosetrack.core.timing_profiles import DEFAULT_PROFILE, get_profile

from conftest import NOW


def _at(minutes_after_dose):
    dose = NOW - timedelta(minutes=minutes_after_dose)
    return compute_phase(dose.isoformat(), DEFAULT_PROFILE, NOW)


@pytest.mark.parametrize("elapsed,phase", [
    (0, "onset"),
    (44.9, "onset"),
    (45, "peak"),
    (134, "peak"),
    (135, "offset"),
    (314, "offset"),
    (315, "comedown"),
    (434, "comedown"),
    (435, "finished"),
    (2000, "finished"),
])
def test_phase_boundaries_are_half_open(elapsed, phase):
    assert phase_at(elapsed, DEFAULT_PROFILE) == phase
    assert _at(elapsed).phase == phase


def test_no_dose_means_phase_none():
    status = compute_phase(None, DEFAULT_PROFILE, NOW)
    assert status.phase == "none"
    assert status.progress_percent == 0
    assert status.phase_end_times == {}


def test_unparseable_timestamp_means_phase_none():
    assert compute_phase("yesterday-ish", DEFAULT_PROFILE, NOW).phase == "none"


def test_progress_is_clamped():
    assert _at(0).progress_percent == 0
    assert _at(217.5).progress_percent == 50
    assert _at(5000).progress_percent == 100
    # dose in the future
    assert _at(-30).progress_percent == 0
    assert _at(-30).phase == "onset"


def test_phase_end_times_are_cumulative():
    status = _at(10)
    dose = NOW - timedelta(minutes=10)
    assert status.phase_end_times["onset"] == dose + timedelta(minutes=45)
    assert status.phase_end_times["peak"] == dose + timedelta(minutes=135)
    assert status.phase_end_times["offset"] == dose + timedelta(minutes=315)
    assert status.phase_end_times["comedown"] == dose + timedelta(minutes=435)


def test_next_phase_and_countdown():
    status = _at(10)
    assert status.next_phase == "peak"
    assert status.minutes_to_next_phase == 35
    assert status.elapsed_minutes == 10

    last = _at(400)
    assert last.next_phase == "finished"
    assert last.minutes_to_next_phase == 35

    done = _at(500)
    assert done.next_phase is None
    assert done.minutes_to_next_phase == 0


def test_profile_specific_safety_message():
    profile = get_profile("ketamine")
    dose = NOW - timedelta(minutes=20)
    status = compute_phase(dose, profile, NOW)
    assert status.phase == "peak"
    assert status.safety_message == "Strong dissociation. Stay seated/lying."
    assert status.intensity == "very high"


def test_naive_timestamps_are_local_time():
    status = compute_phase("2024-06-10T11:00:00", DEFAULT_PROFILE, NOW)
    assert status.elapsed_minutes == 60


def test_serialises_with_camel_case():
    data = _at(10).model_dump(mode="json", by_alias=True)
    assert {"phase", "progressPercent", "phaseEndTimes", "nextPhase"} <= set(data)


@pytest.mark.parametrize("minutes,text", [(90, "1h 30m"), (45, "45m"), (120, "2h"), (0, "0m"), (None, "0m")])
def test_format_duration(minutes, text):
    assert format_duration(minutes) == text


# ── PhaseTicker ──────────────────────────────────────────────────────

def test_ticker_fires_immediately_and_repeats():
    calls = []

    async def main():
        with PhaseTicker(lambda: calls.append(1), interval=0.01) as ticker:
            assert calls == [1]
            await asyncio.sleep(0.06)
        return ticker

    ticker = asyncio.run(main())
    assert len(calls) >= 2
    assert ticker.ticks == len(calls)


def test_ticker_stops_after_context_exit():
    calls = []

    async def main():
        async with PhaseTicker(lambda: calls.append(1), interval=0.01) as ticker:
            await asyncio.sleep(0.02)
        assert not ticker.running
        seen = len(calls)
        await asyncio.sleep(0.05)
        return seen

    seen = asyncio.run(main())
    assert len(calls) == seen


def test_ticker_is_cancelled_when_body_raises():
    async def main():
        ticker = PhaseTicker(lambda: None, interval=0.01)
        with pytest.raises(RuntimeError):
            with ticker:
                raise RuntimeError("view torn down")
        return ticker

    assert not asyncio.run(main()).running


def test_ticker_runs_async_callbacks():
    calls = []

    async def refresh():
        calls.append(1)

    async def main():
        with PhaseTicker(refresh, interval=10):
            await asyncio.sleep(0.01)

    asyncio.run(main())
    assert calls == [1]


def test_failing_callback_stops_ticker():
    def boom():
        raise ValueError("no data")

    async def main():
        ticker = PhaseTicker(boom, interval=0.01)
        with pytest.raises(ValueError):
            ticker.start()
        return ticker

    assert not asyncio.run(main()).running


def test_failing_async_callback_stops_ticker():
    calls = []

    async def boom():
        calls.append(1)
        raise ValueError("socket gone")

    async def main():
        ticker = PhaseTicker(boom, interval=0.01)
        ticker.start()
        await asyncio.sleep(0.08)
        return ticker

    ticker = asyncio.run(main())
    assert not ticker.running
    assert calls


def test_ticker_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        PhaseTicker(lambda: None, interval=0)
