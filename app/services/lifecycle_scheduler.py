"""
Lifecycle Scheduler
Drives the order lifecycle passes on wall-clock schedules:

- startup pass: alerting only, a few seconds after boot
- alerting pass: every ALERTING_INTERVAL_MINUTES
- daily pass: status transitions + alerting + calendar reconciliation

All pass kinds share one running flag. A trigger that fires while any pass
is still running is skipped, not queued.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import AutomationSettings
from .lifecycle_engine import OrderLifecycleEngine, PassKind, PassSummary

logger = logging.getLogger(__name__)

STARTUP_JOB_ID = "order_lifecycle_startup"
ALERTING_JOB_ID = "order_lifecycle_alerting"
DAILY_JOB_ID = "order_lifecycle_daily"


class LifecycleScheduler:
    """Owns the APScheduler instance and the non-overlap guard for passes"""

    def __init__(
        self,
        engine: OrderLifecycleEngine,
        settings: AutomationSettings,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.engine = engine
        self.settings = settings
        self.scheduler = scheduler or AsyncIOScheduler(timezone=settings.timezone)
        self._pass_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._current_kind: Optional[PassKind] = None
        self.last_summaries: dict[PassKind, PassSummary] = {}

    @property
    def is_running(self) -> bool:
        return self._pass_lock.locked()

    @property
    def current_kind(self) -> Optional[PassKind]:
        return self._current_kind

    def start(self) -> None:
        """Register the three jobs and start APScheduler"""
        tz = self.settings.timezone
        startup_at = datetime.now(self.engine.clock.tz) + timedelta(
            seconds=self.settings.startup_pass_delay_seconds
        )

        self._add_job(
            STARTUP_JOB_ID,
            self.run_pass,
            DateTrigger(run_date=startup_at, timezone=tz),
            args=[PassKind.STARTUP],
        )
        self._add_job(
            ALERTING_JOB_ID,
            self.run_pass,
            IntervalTrigger(minutes=self.settings.alerting_interval_minutes, timezone=tz),
            args=[PassKind.ALERTING],
        )
        self._add_job(
            DAILY_JOB_ID,
            self.run_pass,
            CronTrigger(
                hour=self.settings.daily_pass_hour,
                minute=self.settings.daily_pass_minute,
                timezone=tz,
            ),
            args=[PassKind.DAILY],
        )

        self.scheduler.start()
        logger.info("✅ Lifecycle scheduler started")
        logger.info(f"   - Startup pass: in {self.settings.startup_pass_delay_seconds}s (alerting only)")
        logger.info(f"   - Alerting pass: every {self.settings.alerting_interval_minutes} minute(s)")
        logger.info(
            f"   - Daily pass: {self.settings.daily_pass_hour:02d}:{self.settings.daily_pass_minute:02d}"
        )
        logger.info(f"   - Timezone: {tz}")

    def _add_job(self, job_id: str, func, trigger, **kwargs) -> None:
        kwargs.setdefault("max_instances", 1)
        kwargs.setdefault("coalesce", True)
        kwargs.setdefault("misfire_grace_time", 300)
        self.scheduler.add_job(func, trigger, id=job_id, replace_existing=True, **kwargs)

    async def run_pass(self, kind: PassKind) -> PassSummary:
        """
        Run one pass unless another pass is in progress.

        The check and the acquire happen with no await in between, so two
        triggers on the same event loop cannot both get through.
        """
        kind = PassKind(kind)

        if self._pass_lock.locked():
            running = self._current_kind.value if self._current_kind else "unknown"
            logger.warning(f"⚠️ Skipping {kind.value} pass - {running} pass still running")
            return PassSummary(kind=kind, skipped=True)

        if self._stop_event.is_set():
            logger.info(f"ℹ️ Skipping {kind.value} pass - scheduler is shutting down")
            return PassSummary(kind=kind, skipped=True)

        async with self._pass_lock:
            self._current_kind = kind
            try:
                if kind == PassKind.DAILY:
                    summary = await self.engine.run_daily_pass(stop_event=self._stop_event)
                else:
                    summary = await self.engine.run_alerting_pass(stop_event=self._stop_event, kind=kind)
            except Exception as e:
                logger.exception(f"❌ Unhandled error in {kind.value} pass: {e}")
                summary = PassSummary(kind=kind, aborted=True, abort_reason=str(e))
            finally:
                self._current_kind = None

        self.last_summaries[kind] = summary
        return summary

    async def run_both(self) -> list[PassSummary]:
        """Alerting pass followed by the daily pass"""
        return [await self.run_pass(PassKind.ALERTING), await self.run_pass(PassKind.DAILY)]

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stop triggering new passes and wait for the running one to finish its
        current order.
        """
        logger.info("🛑 Stopping lifecycle scheduler...")
        self._stop_event.set()

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

        if self._pass_lock.locked():
            try:
                await asyncio.wait_for(self._pass_lock.acquire(), timeout=timeout)
                self._pass_lock.release()
            except asyncio.TimeoutError:
                logger.warning("⚠️ Lifecycle pass did not finish before shutdown timeout")

        logger.info("✅ Lifecycle scheduler stopped")
