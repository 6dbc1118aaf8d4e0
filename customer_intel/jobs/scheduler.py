"""
Scheduler Loop

Drives every periodic sweep from one AsyncIOScheduler:

- queued event triggers     every trigger_interval_seconds (5s)
- due workflow jobs         every scheduler_interval_seconds (60s)
- abandoned carts           every 5 minutes
- insights refresh          every 15 minutes
- full recompute            weekly, Sunday 02:00 (and once at startup)
- at-risk VIPs              daily, 08:00
- idle session expiry       every minute
- daily tracker snapshot    hourly
- daily counter reset       midnight

Each job runs with max_instances=1 and coalesce=True, so a slow sweep is
never stacked. The due-job sweep additionally holds an asyncio lock because
run_once() can call it outside the scheduler.
"""

import asyncio
from typing import Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from customer_intel.automation.engine import WorkflowEngine
from customer_intel.core.config import Settings, get_settings
from customer_intel.jobs.sweeps import detect_abandoned_carts, detect_at_risk_vips, process_due_jobs
from customer_intel.middleware.logging_config import get_logger, sweep_context
from customer_intel.services.intelligence_service import IntelligenceService

logger = get_logger(__name__)


class SchedulerLoop:
    """
    Owns the AsyncIOScheduler and the sweep jobs registered on it.

    Usage:
        loop = SchedulerLoop(service, engine)
        loop.start()
        ...
        loop.shutdown()
    """

    def __init__(
        self,
        service: IntelligenceService,
        engine: WorkflowEngine,
        settings: Optional[Settings] = None,
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        self.service = service
        self.engine = engine
        self.settings = settings or get_settings()
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._due_lock = asyncio.Lock()
        self._registered = False

    # ==================== Sweeps ====================

    async def _run(self, sweep: str, fn: Callable[[], Awaitable]):
        with sweep_context(sweep):
            try:
                result = await fn()
            except Exception as e:
                logger.error("sweep_failed", error=str(e), exc_info=True)
                return None
            if isinstance(result, (int, dict)):
                logger.info("sweep_finished", result=result)
            return result

    async def run_due_jobs(self) -> Optional[int]:
        if self._due_lock.locked():
            logger.info("due_jobs_tick_skipped", reason="previous sweep still running")
            return None
        async with self._due_lock:
            return await self._run("due_jobs", lambda: process_due_jobs(self.engine))

    async def run_event_triggers(self) -> Optional[int]:
        return await self._run("event_triggers", self.service.process_pending_triggers)

    async def run_abandoned_carts(self) -> Optional[int]:
        return await self._run("abandoned_carts", lambda: detect_abandoned_carts(self.service))

    async def run_at_risk_vips(self) -> Optional[int]:
        return await self._run("at_risk_vips", lambda: detect_at_risk_vips(self.service))

    async def run_recompute(self):
        return await self._run("recompute", self.service.recompute)

    async def run_insights(self):
        return await self._run("insights", self.service.refresh_insights)

    async def run_session_expiry(self):
        async def expire():
            return self.service.expire_sessions()
        return await self._run("session_expiry", expire)

    async def run_daily_snapshot(self):
        async def record():
            return self.service.record_daily_snapshot()
        return await self._run("daily_snapshot", record)

    async def run_counter_reset(self):
        async def reset():
            self.service.reset_daily_counters()
        return await self._run("counter_reset", reset)

    # ==================== Registration ====================

    def register_jobs(self):
        if self._registered:
            return
        settings = self.settings
        defaults = {"max_instances": 1, "coalesce": True, "replace_existing": True}

        self.scheduler.add_job(
            self.run_event_triggers,
            'interval',
            seconds=settings.trigger_interval_seconds,
            id='event_triggers',
            name='Event Automation Triggers',
            **defaults
        )
        self.scheduler.add_job(
            self.run_due_jobs,
            'interval',
            seconds=settings.scheduler_interval_seconds,
            id='due_jobs',
            name='Workflow Due Jobs',
            **defaults
        )
        self.scheduler.add_job(
            self.run_abandoned_carts,
            'interval',
            minutes=settings.abandoned_cart_interval_minutes,
            id='abandoned_carts',
            name='Abandoned Cart Detection',
            **defaults
        )
        self.scheduler.add_job(
            self.run_insights,
            'interval',
            minutes=settings.insights_interval_minutes,
            id='insights',
            name='Insights Refresh',
            **defaults
        )
        self.scheduler.add_job(
            self.run_recompute,
            'cron',
            day_of_week=settings.rfm_recompute_day_of_week,
            hour=settings.rfm_recompute_hour,
            minute=0,
            id='recompute',
            name='RFM / LTV / Segment Recompute',
            **defaults
        )
        self.scheduler.add_job(
            self.run_at_risk_vips,
            'cron',
            hour=settings.vip_check_hour,
            minute=0,
            id='at_risk_vips',
            name='At-Risk VIP Detection',
            **defaults
        )
        self.scheduler.add_job(
            self.run_session_expiry,
            'interval',
            minutes=1,
            id='session_expiry',
            name='Idle Session Expiry',
            **defaults
        )
        self.scheduler.add_job(
            self.run_daily_snapshot,
            'interval',
            hours=1,
            id='daily_snapshot',
            name='Daily Tracker Snapshot',
            **defaults
        )
        self.scheduler.add_job(
            self.run_counter_reset,
            'cron',
            hour=0,
            minute=0,
            id='counter_reset',
            name='Daily Counter Reset',
            **defaults
        )
        self._registered = True

    def start(self):
        """Register every sweep and start the scheduler. Must be called inside a running event loop."""
        self.register_jobs()
        self.scheduler.start()
        logger.info(
            "scheduler_started",
            jobs=[job.id for job in self.scheduler.get_jobs()],
            due_job_interval_seconds=self.settings.scheduler_interval_seconds,
        )

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("scheduler_stopped")

    async def run_once(self) -> Dict[str, object]:
        """Run every sweep a single time, in dependency order."""
        results = {}
        results["recompute"] = await self.run_recompute()
        results["session_expiry"] = await self.run_session_expiry()
        results["daily_snapshot"] = await self.run_daily_snapshot()
        results["insights"] = await self.run_insights()
        results["abandoned_carts"] = await self.run_abandoned_carts()
        results["event_triggers"] = await self.run_event_triggers()
        results["at_risk_vips"] = await self.run_at_risk_vips()
        results["due_jobs"] = await self.run_due_jobs()
        return results
