# offers/services/scheduler.py
from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Any, Dict, Optional

from offers.cancellation import CancellationToken
from offers.config import EngineSettings
from offers.enums import SchedulerState
from offers.models import CycleReport
from offers.services.reconcile_service import ReconcileService
from utils.logger import logger
from utils.time import ms_to_iso


class Scheduler:
    """
    Drives reconciliation cycles on a fixed period.

    STOPPED --start--> ARMED --tick--> RUNNING --done--> ARMED
    A tick that lands while a cycle is in flight is dropped, not queued; the
    in-flight cycle task is kept until it really finishes, so a restart can
    never overlap it. stop() cancels the timer and raises the abort flag of
    the running cycle.
    """

    def __init__(self, reconciler: ReconcileService) -> None:
        self._reconciler = reconciler
        self._settings: Optional[EngineSettings] = None
        self._period_s: Optional[float] = None
        self._timer: Optional[asyncio.Task] = None
        self._cycle: Optional[asyncio.Task] = None
        self._token: Optional[CancellationToken] = None
        self.next_run_at: Optional[float] = None   # epoch seconds
        self.last_report: Optional[CycleReport] = None
        self.last_error: Optional[str] = None
        self.dropped_ticks = 0

    # ---- state --------------------------------------------------------------------
    @property
    def state(self) -> SchedulerState:
        if self.is_running:
            return SchedulerState.RUNNING
        if self._timer is not None and not self._timer.done():
            return SchedulerState.ARMED
        return SchedulerState.STOPPED

    @property
    def is_running(self) -> bool:
        return self._cycle is not None and not self._cycle.done()

    @property
    def settings(self) -> Optional[EngineSettings]:
        return self._settings

    # ---- control ------------------------------------------------------------------
    def start(self,
              settings: EngineSettings,
              *,
              period_s: Optional[float] = None,
              run_now: bool = False) -> None:
        """Arm (or re-arm) the repeating timer with a new settings snapshot."""
        self._cancel_timer()
        self._settings = settings
        self._period_s = float(period_s if period_s is not None else settings.check_interval_s)
        if self._period_s <= 0:
            raise ValueError("period must be positive")
        # an aborted cycle may still be winding down; the first run then waits for it
        deferred_first = run_now and self.is_running
        if run_now and not deferred_first:
            self._fire()
        self._timer = asyncio.create_task(self._timer_loop(self._period_s, deferred_first),
                                          name="offers-scheduler-timer")
        logger.info(f"Check interval started - checking every {self._period_s / 60:g} minute(s)")

    def stop(self) -> None:
        was_armed = self._cancel_timer()
        self.next_run_at = None
        if self.is_running and self._token is not None:
            self._token.cancel("scheduler stopped")
            logger.info("Check interval stopped - aborting in-progress check...")
        elif was_armed:
            logger.info("Check interval stopped")

    def reconfigure(self,
                    settings: EngineSettings,
                    *,
                    period_s: Optional[float] = None,
                    run_now: bool = False) -> None:
        """stop() then start() with a new snapshot; stays stopped when disabled."""
        self.stop()
        if not settings.enabled:
            self._settings = settings
            logger.info("Bot paused - waiting for activation")
            return
        self.start(settings, period_s=period_s, run_now=run_now)

    async def wait_idle(self) -> None:
        cycle = self._cycle
        if cycle is not None and not cycle.done():
            await asyncio.wait({cycle})

    async def shutdown(self) -> None:
        timer = self._timer
        self.stop()
        if timer is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await timer
        await self.wait_idle()

    async def run_once(self, settings: Optional[EngineSettings] = None) -> Optional[CycleReport]:
        """Run one cycle now (outside the timer); None when one is already running."""
        if settings is not None:
            self._settings = settings
        task = self._fire()
        if task is None:
            return None
        await asyncio.shield(task)
        return self.last_report

    # ---- internals ----------------------------------------------------------------
    def _cancel_timer(self) -> bool:
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()
            return True
        return False

    async def _timer_loop(self, period_s: float, run_first: bool = False) -> None:
        if run_first:
            await self.wait_idle()
            self._fire()
        while True:
            self.next_run_at = time.time() + period_s
            await asyncio.sleep(period_s)
            self._fire()

    def _fire(self) -> Optional[asyncio.Task]:
        if self.is_running:
            self.dropped_ticks += 1
            logger.warning("Previous check still in progress, skipping this cycle")
            return None
        if self._settings is None:
            raise RuntimeError("scheduler has no settings")
        self._token = CancellationToken()
        self._cycle = asyncio.create_task(self._run_cycle(self._settings, self._token), name="offers-cycle")
        return self._cycle

    async def _run_cycle(self, settings: EngineSettings, token: CancellationToken) -> None:
        try:
            self.last_report = await self._reconciler.run_cycle(settings, token)
            self.last_error = None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # persistence failures land here; the previous on-disk state stays authoritative
            self.last_error = f"{type(e).__name__}: {e}"
            logger.exception(f"Error in check cycle: {e}")

    def status(self) -> Dict[str, Any]:
        rep = self.last_report
        return {
            "state": self.state.value,
            "period_s": self._period_s,
            "next_run_at": ms_to_iso(int(self.next_run_at * 1000)) if self.next_run_at else None,
            "dropped_ticks": self.dropped_ticks,
            "last_error": self.last_error,
            "last_report": None if rep is None else {
                "started_at": ms_to_iso(rep.started_at),
                "finished_at": ms_to_iso(rep.finished_at),
                "reachable": sorted(rep.reachable),
                "offers_seen": rep.offers_seen,
                "sent": len(rep.sent),
                "send_failures": len(rep.send_failures),
                "inactive": len(rep.inactive),
                "evicted": rep.evicted,
                "aborted_at": rep.aborted_at.value if rep.aborted_at else None,
            },
        }
