"""
Customer Intelligence Service

Single owner of all analytics state: the real-time tracker, the latest
scoring/segmentation/trend/insight snapshot, and the workflow engine.

Ingestion (track_page_view / track_event) only touches the tracker and the
durable event log and never raises. Automation triggers are queued and
started later by process_pending_triggers() from the scheduler. Everything
derived is recomputed from scratch and swapped in as one frozen
IntelligenceSnapshot, so readers always see a consistent set of reports.
"""

from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from customer_intel.analytics.insights import InsightReport, generate_insights
from customer_intel.analytics.trends import TrendReport, analyze_trends
from customer_intel.automation.engine import WorkflowEngine, WorkflowInstance
from customer_intel.core.config import Settings, get_settings
from customer_intel.core.records import CustomerProfile, Order, coerce_utc, utcnow
from customer_intel.middleware.logging_config import get_logger
from customer_intel.repositories.customers import CustomerDirectory
from customer_intel.repositories.events import EventHistory
from customer_intel.repositories.orders import OrderHistory
from customer_intel.scoring.cohorts import Cohort, CohortKind, CohortTracker
from customer_intel.scoring.ltv import LTVReport, score_ltv_population
from customer_intel.scoring.rfm import RFMPolicy, RFMReport, score_population
from customer_intel.segmentation.behavioral import (
    CustomerActivitySummary,
    SegmentReport,
    segment_customers,
)
from customer_intel.tracking.events import Event, EventName, Session
from customer_intel.tracking.tracker import DailySnapshot, EventTracker, TrackerSnapshot

logger = get_logger(__name__)


@dataclass(frozen=True)
class IntelligenceSnapshot:
    """Derived reports from one recompute pass."""
    rfm: Optional[RFMReport] = None
    ltv: Optional[LTVReport] = None
    segments: Optional[SegmentReport] = None
    cohorts: Dict[CohortKind, Dict[str, Cohort]] = field(default_factory=dict)
    trends: Optional[TrendReport] = None
    insights: Optional[InsightReport] = None
    computed_at: Optional[datetime] = None


class IntelligenceService:
    """
    Ingestion and query surface for customer intelligence.

    Usage:
        service = IntelligenceService(orders, customers, events, engine)
        await service.track_event(EventName.ORDER_PLACED, {"amount": 80}, customer_id="42")
        await service.recompute()
        service.rfm().segments
    """

    def __init__(
        self,
        orders: OrderHistory,
        customers: CustomerDirectory,
        events: EventHistory,
        engine: WorkflowEngine,
        settings: Optional[Settings] = None,
        tracker: Optional[EventTracker] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.settings = settings or get_settings()
        self.orders = orders
        self.customers = customers
        self.events = events
        self.engine = engine
        self.clock = clock
        self.tracker = tracker or EventTracker(
            buffer_size=self.settings.event_buffer_size,
            session_timeout=timedelta(minutes=self.settings.session_timeout_minutes),
            session_retention=timedelta(minutes=self.settings.session_retention_minutes),
            journey_limit=self.settings.journey_limit,
            history_days=self.settings.history_days,
            clock=clock,
        )
        self.rfm_policy = RFMPolicy(self.settings.rfm_policy.lower())
        self._snapshot = IntelligenceSnapshot()
        self._pending_triggers: Deque[Tuple[str, str, Dict[str, Any]]] = deque(
            maxlen=self.settings.pending_trigger_limit
        )

    # ==================== Ingestion ====================

    async def track_page_view(
        self,
        session_id: Optional[str],
        visitor_id: Optional[str] = None,
        page: str = "/",
        referrer: Optional[str] = None,
        user_agent: Optional[str] = None,
        language: Optional[str] = None,
        customer_id: Optional[str] = None
    ) -> Optional[Session]:
        """
        Record a page request; creates a new session when needed.

        A session start for an identified customer is also written to the
        durable event log (it feeds the session_started stop condition).
        """
        session = self.tracker.touch_session(
            session_id,
            visitor_id=visitor_id,
            page=page,
            referrer=referrer,
            user_agent=user_agent,
            language=language,
            user_id=customer_id,
        )
        if session is None:
            return None

        if session.user_id and session.id != session_id:
            await self._append_history(Event(
                name=EventName.SESSION_START,
                timestamp=session.start_time,
                session_id=session.id,
                user_id=session.user_id,
            ))
        return session

    async def track_event(
        self,
        name: EventName | str,
        payload: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        trigger_automations: bool = True
    ) -> Optional[Event]:
        """
        Fire-and-forget ingestion entry point.

        Updates the tracker, appends the event to the durable log and, for an
        identified customer, queues it for the automation trigger sweep.
        Never raises and never waits on workflow work.

        Returns:
            The recorded event, or None if it was rejected
        """
        event = self.tracker.record_event(session_id, name, payload, user_id=customer_id)
        if event is None:
            return None

        await self._append_history(event)

        if trigger_automations and event.user_id:
            self._queue_trigger(event)
        return event

    def _queue_trigger(self, event: Event):
        if self._pending_triggers and len(self._pending_triggers) == self._pending_triggers.maxlen:
            dropped_name, dropped_customer, _ = self._pending_triggers[0]
            logger.warning("pending_trigger_dropped", event_name=dropped_name, customer_id=dropped_customer)
        self._pending_triggers.append((event.name.value, event.user_id, dict(event.payload)))

    @property
    def pending_triggers(self) -> int:
        return len(self._pending_triggers)

    async def process_pending_triggers(self) -> int:
        """
        Hand queued events to the workflow engine.

        Only the triggers queued before the call are drained; one that
        fails is logged and dropped.

        Returns:
            Number of workflow instances started
        """
        started = 0
        for _ in range(len(self._pending_triggers)):
            event_name, customer_id, context = self._pending_triggers.popleft()
            try:
                started += len(await self.engine.handle_event(event_name, customer_id, context))
            except Exception as e:
                logger.error(
                    "pending_trigger_failed",
                    event_name=event_name,
                    customer_id=customer_id,
                    error=str(e),
                    exc_info=True,
                )
        return started

    async def _append_history(self, event: Event):
        try:
            await self.events.append(event)
        except Exception as e:
            logger.warning(
                "event_history_append_failed",
                event_name=event.name.value,
                customer_id=event.user_id,
                error=str(e),
            )

    async def trigger_workflow(
        self,
        automation_id: str,
        customer_id: str,
        context: Optional[Dict[str, Any]] = None
    ) -> Optional[WorkflowInstance]:
        return await self.engine.trigger_workflow(automation_id, customer_id, context)

    # ==================== Tracker maintenance ====================

    def expire_sessions(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or self.clock()
        return {
            "expired": self.tracker.expire_idle_sessions(now),
            "purged": self.tracker.purge_ended_sessions(now),
        }

    def record_daily_snapshot(self, now: Optional[datetime] = None) -> DailySnapshot:
        return self.tracker.record_daily_snapshot(now)

    def reset_daily_counters(self, now: Optional[datetime] = None) -> None:
        self.tracker.reset_daily_counters(now)

    # ==================== Recompute ====================

    async def recompute(self, now: Optional[datetime] = None) -> IntelligenceSnapshot:
        """
        Full RFM / LTV / segment / cohort / trend / insight pass.

        Reads every order and profile, rebuilds each report from scratch and
        swaps in the new snapshot.
        """
        now = coerce_utc(now) or self.clock()
        orders_by_customer = await self.orders.all_orders()
        profiles = await self.customers.all_profiles()
        tracker = self.tracker.snapshot()

        rfm = score_population(orders_by_customer, now=now, policy=self.rfm_policy)
        ltv = score_ltv_population(orders_by_customer, now=now)
        last_seen = self._last_seen(orders_by_customer, profiles, tracker)
        segments = segment_customers(self._activity_summaries(orders_by_customer, last_seen), now=now)
        cohorts = self._build_cohorts(orders_by_customer, profiles, last_seen, now)
        trends = self._analyze_trends(tracker, now)
        insights = generate_insights(tracker, trends=trends, ltv=ltv, rfm=rfm, now=now)

        snapshot = IntelligenceSnapshot(
            rfm=rfm,
            ltv=ltv,
            segments=segments,
            cohorts=cohorts,
            trends=trends,
            insights=insights,
            computed_at=now,
        )
        self._snapshot = snapshot

        logger.info(
            "intelligence_recomputed",
            customers_scored=len(rfm.scores),
            ltv_customers=ltv.total_customers,
            cohorts=len(cohorts.get(CohortKind.MONTH, {})),
            alerts=len(insights.alerts),
        )
        return snapshot

    async def refresh_insights(self, now: Optional[datetime] = None) -> InsightReport:
        """Re-run trends and insights against the latest scores."""
        now = coerce_utc(now) or self.clock()
        tracker = self.tracker.snapshot()
        current = self._snapshot
        trends = self._analyze_trends(tracker, now)
        insights = generate_insights(tracker, trends=trends, ltv=current.ltv, rfm=current.rfm, now=now)
        self._snapshot = replace(current, trends=trends, insights=insights)
        return insights

    def _analyze_trends(self, tracker: TrackerSnapshot, now: datetime) -> TrendReport:
        return analyze_trends(
            tracker.daily_history,
            page_views_by_hour=tracker.page_views_by_hour,
            page_views_by_day=tracker.page_views_by_day,
            now=now,
        )

    @staticmethod
    def _last_seen(
        orders_by_customer: Dict[str, List[Order]],
        profiles: List[CustomerProfile],
        tracker: TrackerSnapshot
    ) -> Dict[str, datetime]:
        last_seen: Dict[str, datetime] = {}

        def bump(customer_id: str, when: Optional[datetime]):
            when = coerce_utc(when)
            if when is not None and (customer_id not in last_seen or when > last_seen[customer_id]):
                last_seen[customer_id] = when

        for profile in profiles:
            bump(profile.customer_id, profile.created_at)
        for customer_id, orders in orders_by_customer.items():
            for order in orders:
                bump(customer_id, order.placed_at)
        for customer_id, activity in tracker.customer_activity.items():
            bump(customer_id, activity.last_seen)
        return last_seen

    @staticmethod
    def _activity_summaries(
        orders_by_customer: Dict[str, List[Order]],
        last_seen: Dict[str, datetime]
    ) -> List[CustomerActivitySummary]:
        return [
            CustomerActivitySummary(
                customer_id=customer_id,
                purchase_count=len(orders_by_customer.get(customer_id, [])),
                total_spent=sum(o.amount for o in orders_by_customer.get(customer_id, [])),
                last_active=seen,
            )
            for customer_id, seen in last_seen.items()
        ]

    @staticmethod
    def _build_cohorts(
        orders_by_customer: Dict[str, List[Order]],
        profiles: List[CustomerProfile],
        last_seen: Dict[str, datetime],
        now: datetime
    ) -> Dict[CohortKind, Dict[str, Cohort]]:
        cohorts = CohortTracker()
        tracked = set()

        for profile in profiles:
            orders = orders_by_customer.get(profile.customer_id, [])
            acquired_at = profile.created_at or (min(o.placed_at for o in orders) if orders else None)
            if acquired_at is None:
                continue
            cohorts.track(profile.customer_id, acquired_at, profile.acquisition_source)
            tracked.add(profile.customer_id)

        for customer_id, orders in orders_by_customer.items():
            if customer_id not in tracked and orders:
                cohorts.track(customer_id, min(o.placed_at for o in orders), "direct")
            for order in orders:
                cohorts.add_revenue(customer_id, order.amount)

        cohorts.compute_retention(last_seen, now)
        return cohorts.all_cohorts()

    # ==================== Read surface ====================

    @property
    def snapshot(self) -> IntelligenceSnapshot:
        return self._snapshot

    def rfm(self) -> Optional[RFMReport]:
        return self._snapshot.rfm

    def ltv(self) -> Optional[LTVReport]:
        return self._snapshot.ltv

    def segments(self) -> Optional[SegmentReport]:
        return self._snapshot.segments

    def cohorts(self) -> Dict[CohortKind, Dict[str, Cohort]]:
        return self._snapshot.cohorts

    def trends(self) -> Optional[TrendReport]:
        return self._snapshot.trends

    def insights(self) -> Optional[InsightReport]:
        return self._snapshot.insights

    def tracker_snapshot(self) -> TrackerSnapshot:
        return self.tracker.snapshot()
