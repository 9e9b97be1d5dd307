"""Cycle scheduler: runs a probe cycle on a fixed-rate tick."""

from __future__ import annotations

import asyncio
import logging
import time
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from chanwatch.models.channel import CycleReport
    from chanwatch.runtime.orchestrator import ChannelCycleOrchestrator

log = logging.getLogger(__name__)


class Clock(Protocol):
    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall-clock time for production use."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class SchedulerState(StrEnum):
    RUNNING_CYCLE = "running_cycle"
    WAITING = "waiting"
    STOPPED = "stopped"


class CycleScheduler:
    """Alternates between running a cycle and waiting for the next tick.

    Ticks sit on a fixed grid anchored at the first cycle's start
    (``t0 + k * interval``). When a cycle overruns one or more ticks, the
    next cycle starts right away and the grid is kept, so a slow cycle
    never shifts later ones. The first cycle runs without delay.
    """

    def __init__(
        self,
        orchestrator: ChannelCycleOrchestrator,
        interval_seconds: float,
        *,
        clock: Clock | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._orchestrator = orchestrator
        self._interval = interval_seconds
        self._clock = clock or SystemClock()
        self._state = SchedulerState.STOPPED
        self._running = False
        self._cycles = 0
        self._last_report: CycleReport | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def cycles_completed(self) -> int:
        return self._cycles

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(self, max_cycles: int | None = None) -> None:
        """Drive cycles until stopped, or until ``max_cycles`` have run."""
        self._running = True
        anchor = self._clock.monotonic()
        last_tick = anchor
        self._state = SchedulerState.RUNNING_CYCLE
        log.info("scheduler.started interval=%.0fs", self._interval)

        try:
            while self._running:
                if self._state is SchedulerState.RUNNING_CYCLE:
                    await self._run_one_cycle()
                    if max_cycles is not None and self._cycles >= max_cycles:
                        break
                    self._state = SchedulerState.WAITING
                    continue

                now = self._clock.monotonic()
                next_tick = last_tick + self._interval
                if now >= next_tick:
                    missed = int((now - anchor) // self._interval)
                    last_tick = anchor + missed * self._interval
                    log.warning(
                        "scheduler.overrun behind=%.1fs starting_now",
                        now - next_tick,
                    )
                else:
                    log.info("scheduler.waiting seconds=%.1f", next_tick - now)
                    await self._clock.sleep(next_tick - now)
                    last_tick = next_tick
                self._state = SchedulerState.RUNNING_CYCLE
        finally:
            self._running = False
            self._state = SchedulerState.STOPPED
            log.info("scheduler.stopped cycles=%d", self._cycles)

    def stop(self) -> None:
        """Leave the loop once the current state finishes."""
        self._running = False

    async def _run_one_cycle(self) -> None:
        try:
            report = await self._orchestrator.run_cycle()
        except Exception:
            log.exception("scheduler.cycle_error")
            report = None
        self._cycles += 1
        if report is not None:
            self._last_report = report
            if report.aborted:
                log.warning("scheduler.cycle_aborted cycle=%s", report.cycle_id)
