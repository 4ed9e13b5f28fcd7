"""
Phase Engine: where a dose currently sits in its effect timeline.

  elapsed < onset                          -> onset
  elapsed < onset + peak                   -> peak
  elapsed < onset + peak + offset          -> offset
  elapsed < total_minutes                  -> comedown
  otherwise                                -> finished

Boundaries are half-open: exactly at a boundary the dose has moved on.
progress = clamp(elapsed / total * 100, 0, 100).

PhaseTicker re-runs the calculation on a fixed interval (60 s by default)
while a phase view is open. It is a single handle on the running event
loop: start on activation, cancel on teardown.
"""

import asyncio
import inspect
import logging
from datetime import datetime, timedelta, tzinfo
from typing import Any, Callable, Optional

from dosetrack.config import PHASE_TICK_INTERVAL_SEC
from dosetrack.core.models import LOCAL_TZ, CamelModel, parse_timestamp
from dosetrack.core.timing_profiles import PHASE_INFO, TimingProfile

log = logging.getLogger("dosetrack.phase")

PHASE_NONE = "none"
PHASE_FINISHED = "finished"


class PhaseStatus(CamelModel):
    phase: str = PHASE_NONE
    dose_time: Optional[datetime] = None
    elapsed_minutes: Optional[float] = None
    progress_percent: float = 0.0
    phase_end_times: dict[str, datetime] = {}
    next_phase: Optional[str] = None
    minutes_to_next_phase: Optional[float] = None
    safety_message: str = PHASE_INFO[PHASE_NONE]
    intensity: Optional[str] = None


def phase_at(elapsed_minutes: float, profile: TimingProfile) -> str:
    """Phase name for a given number of minutes after the dose."""
    for phase, end in profile.boundaries():
        if elapsed_minutes < end:
            return phase
    return PHASE_FINISHED


def _next_phase(phase: str, profile: TimingProfile) -> tuple[Optional[str], Optional[int]]:
    """Following non-empty phase and the minute the current one ends."""
    if phase == PHASE_FINISHED:
        return None, None
    bounds = profile.boundaries()
    names = [name for name, _ in bounds]
    idx = names.index(phase)
    current_end = bounds[idx][1]
    for name, end in bounds[idx + 1:]:
        if end > current_end:
            return name, current_end
    return PHASE_FINISHED, current_end


def compute_phase(
    last_dose_timestamp: Any,
    profile: TimingProfile,
    now: Any = None,
    tz: Optional[tzinfo] = None,
) -> PhaseStatus:
    """
    Current phase, progress and phase end times for the last dose.
    Returns phase "none" when there is no (usable) dose timestamp.
    """
    dose_time = parse_timestamp(last_dose_timestamp, tz)
    if dose_time is None:
        return PhaseStatus()
    current = parse_timestamp(now, tz) if now is not None else datetime.now(tz or LOCAL_TZ)
    if current is None:
        return PhaseStatus()

    elapsed = (current - dose_time).total_seconds() / 60.0
    phase = phase_at(elapsed, profile)

    total = profile.total_minutes
    if total <= 0:
        progress = 100.0
    else:
        progress = min(100.0, max(0.0, elapsed / total * 100.0))

    end_times = {
        name: dose_time + timedelta(minutes=end)
        for name, end in profile.boundaries()
    }

    next_phase, current_end = _next_phase(phase, profile)
    if current_end is None:
        minutes_to_next = 0.0
    else:
        minutes_to_next = max(0.0, current_end - elapsed)

    spec = profile.phase_spec(phase)
    message = spec.safety_message if spec and spec.safety_message else PHASE_INFO[phase]

    return PhaseStatus(
        phase=phase,
        dose_time=dose_time,
        elapsed_minutes=round(elapsed, 2),
        progress_percent=round(progress, 2),
        phase_end_times=end_times,
        next_phase=next_phase,
        minutes_to_next_phase=round(minutes_to_next, 2),
        safety_message=message,
        intensity=spec.intensity if spec else None,
    )


# ── Formatting helpers ───────────────────────────────────────────────

def format_duration(minutes: Optional[float]) -> str:
    """90 -> '1h 30m', 45 -> '45m', 120 -> '2h'."""
    if not minutes or minutes <= 0:
        return "0m"
    total = int(round(minutes))
    hours, mins = divmod(total, 60)
    if hours == 0:
        return f"{mins}m"
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"


# ── Periodic re-evaluation ───────────────────────────────────────────

class PhaseTicker:
    """
    Calls `callback` immediately on start and then every `interval`
    seconds on the running asyncio loop until cancelled.

    Use as a context manager so the timer is always cleared:

        with PhaseTicker(refresh):
            ...
    """

    def __init__(self, callback: Callable[[], Any],
                 interval: float = PHASE_TICK_INTERVAL_SEC,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.callback = callback
        self.interval = interval
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._pending: set[asyncio.Task] = set()
        self._active = False
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._active

    def start(self) -> "PhaseTicker":
        if self._active:
            return self
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._active = True
        log.debug("Phase ticker started (every %.0fs)", self.interval)
        self._tick()
        return self

    def _tick(self) -> None:
        if not self._active:
            return
        self.ticks += 1
        try:
            result = self.callback()
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result, loop=self._loop)
                self._pending.add(task)
                task.add_done_callback(self._task_done)
        except Exception:
            # A failing tick stops the ticker; the error goes to the caller
            # (start) or to the loop's exception handler.
            self.cancel()
            raise
        if self._active:
            self._handle = self._loop.call_later(self.interval, self._tick)

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log.error("Phase ticker callback failed: %s", error)
            self.cancel()

    def cancel(self) -> None:
        if self._active:
            log.debug("Phase ticker cancelled after %d ticks", self.ticks)
        self._active = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

    def __enter__(self) -> "PhaseTicker":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()

    async def __aenter__(self) -> "PhaseTicker":
        return self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.cancel()
