"""
Real-Time Event Tracker

The ingestion hot path. Owns session lifecycle and a set of cheap counters
that the dashboards and the insight rules read through snapshot().

Responsibilities:
- Session reuse/expiry (30 min inactivity by default)
- Bounce detection, entry/exit pages, journey archive
- Page views by page/hour/day
- Bounded global event buffer and per-name counters
- Checkout and signup funnels
- Business counters (carts, orders, revenue, products)
- Daily historical snapshots (last 90 days); older per-day counters and
  idle visitors are pruned at the daily reset

Nothing here talks to the network or the database, and no method raises:
tracking must never break the request that produced the event.
"""

import uuid
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Set

from customer_intel.core.records import utcnow
from customer_intel.middleware.logging_config import get_logger
from customer_intel.tracking.events import (
    Event,
    EventName,
    Journey,
    Session,
    VisitorProfile,
    parse_user_agent,
)

logger = get_logger(__name__)

FUNNELS: Dict[str, List[str]] = {
    "checkout": ["view_product", "add_to_cart", "view_cart", "checkout", "payment", "order_complete"],
    "signup": ["landing", "signup_start", "signup_complete", "first_action"],
}

CUSTOMER_SESSION_LIMIT = 50


@dataclass
class DailySnapshot:
    """One day of headline metrics, consumed by the trend analyzer."""
    date: date
    revenue: float = 0.0
    orders: int = 0
    visitors: int = 0
    sessions: int = 0
    page_views: int = 0
    conversion: float = 0.0
    avg_order_value: float = 0.0
    bounce_rate: float = 0.0


@dataclass
class CustomerActivity:
    """Last-known activity of an identified customer."""
    customer_id: str
    first_seen: datetime
    last_seen: datetime
    session_ids: Sequence[str] = field(default_factory=lambda: deque(maxlen=CUSTOMER_SESSION_LIMIT))


@dataclass(frozen=True)
class TrackerSnapshot:
    """Read-only copy of the tracker counters at a point in time."""
    taken_at: datetime
    page_views_total: int
    page_views_by_page: Dict[str, int]
    page_views_by_hour: List[int]
    page_views_by_day: Dict[str, int]
    entry_pages: Dict[str, int]
    exit_pages: Dict[str, int]
    bounce_count: int
    sessions_total: int
    sessions_ended: int
    active_sessions: int
    avg_session_duration_seconds: float
    avg_pages_per_session: float
    new_users: int
    returning_users: int
    active_users_daily: int
    active_users_weekly: int
    active_users_monthly: int
    carts_created: int
    carts_abandoned: int
    carts_converted: int
    orders_total: int
    orders_today: int
    orders_completed: int
    orders_cancelled: int
    revenue_total: float
    revenue_today: float
    revenue_by_day: Dict[str, float]
    average_order_value: float
    product_views: Dict[str, int]
    product_added_to_cart: Dict[str, int]
    product_purchased: Dict[str, int]
    device_types: Dict[str, int]
    browsers: Dict[str, int]
    operating_systems: Dict[str, int]
    languages: Dict[str, int]
    event_counts: Dict[str, int]
    recent_events: List[Event]
    funnels: Dict[str, Dict[str, Dict[str, int]]]
    journeys: List[Journey]
    daily_history: List[DailySnapshot]
    customer_activity: Dict[str, CustomerActivity]

    @property
    def bounce_rate(self) -> float:
        return (self.bounce_count / self.sessions_ended * 100) if self.sessions_ended else 0.0

    @property
    def cart_abandonment_rate(self) -> float:
        return (self.carts_abandoned / self.carts_created * 100) if self.carts_created else 0.0

    @property
    def conversion_rate(self) -> float:
        return (self.carts_converted / self.carts_created * 100) if self.carts_created else 0.0


class EventTracker:
    """
    Owns every real-time counter. A single instance lives inside the
    IntelligenceService; callers never mutate its state directly.
    """

    def __init__(
        self,
        buffer_size: int = 1000,
        session_timeout: timedelta = timedelta(minutes=30),
        session_retention: timedelta = timedelta(minutes=60),
        journey_limit: int = 1000,
        history_days: int = 90,
        clock: Callable[[], datetime] = utcnow
    ):
        """
        Args:
            buffer_size: Number of most recent events kept globally
            session_timeout: Inactivity after which a session ends
            session_retention: How long ended sessions stay queryable
            journey_limit: Maximum archived journeys
            history_days: Daily snapshots kept; also how long per-day counters
                and idle visitor / customer activity are retained
            clock: Time source (injected for tests)
        """
        self.session_timeout = session_timeout
        self.session_retention = session_retention
        self.journey_limit = journey_limit
        self.history_days = history_days
        self.clock = clock

        self._sessions: Dict[str, Session] = {}
        self._visitors: Dict[str, VisitorProfile] = {}
        self._customers: Dict[str, CustomerActivity] = {}

        self._events: Deque[Event] = deque(maxlen=buffer_size)
        self._event_counts: Counter = Counter()

        self._page_views_total = 0
        self._page_views_by_page: Counter = Counter()
        self._page_views_by_hour: List[int] = [0] * 24
        self._page_views_by_day: Counter = Counter()

        self._entry_pages: Counter = Counter()
        self._exit_pages: Counter = Counter()
        self._bounce_count = 0
        self._sessions_total = 0
        self._sessions_ended = 0
        self._sessions_by_day: Counter = Counter()
        self._avg_session_duration = 0.0
        self._avg_pages_per_session = 0.0
        self._journeys: List[Journey] = []

        self._new_users = 0
        self._returning_users = 0
        self._active_daily: Set[str] = set()
        self._active_weekly: Set[str] = set()
        self._active_monthly: Set[str] = set()

        self._carts = {"created": 0, "abandoned": 0, "converted": 0}
        self._orders = {"total": 0, "today": 0, "completed": 0, "cancelled": 0}
        self._revenue_total = 0.0
        self._revenue_today = 0.0
        self._revenue_by_day: Dict[str, float] = {}
        self._average_order_value = 0.0
        self._product_views: Counter = Counter()
        self._product_added: Counter = Counter()
        self._product_purchased: Counter = Counter()

        self._device_types: Counter = Counter()
        self._browsers: Counter = Counter()
        self._os: Counter = Counter()
        self._languages: Counter = Counter()

        self._funnels: Dict[str, Dict[str, Dict[str, int]]] = {name: {} for name in FUNNELS}
        self._daily_history: List[DailySnapshot] = []

    # ==================== Sessions ====================

    def touch_session(
        self,
        session_id: Optional[str],
        visitor_id: Optional[str] = None,
        page: str = "/",
        referrer: Optional[str] = None,
        user_agent: Optional[str] = None,
        language: Optional[str] = None,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Optional[Session]:
        """
        Get or create the session for a request and record its page view.

        A session is reused while `now - last_activity` is within the timeout;
        otherwise it is ended and a fresh one is created.

        Returns:
            The live session, or None if tracking failed
        """
        try:
            now = now or self.clock()

            if not visitor_id:
                visitor_id = uuid.uuid4().hex
                self._new_users += 1
            elif visitor_id not in self._visitors:
                self._returning_users += 1

            session = self._sessions.get(session_id) if session_id else None
            if session and (session.is_ended or now - session.last_activity > self.session_timeout):
                if not session.is_ended:
                    self.end_session(session.id, now=now)
                session = None

            if session is None:
                session = self._start_session(visitor_id, page, referrer, user_agent, language, now)
            else:
                session.last_activity = now

            visitor = self._visitors.get(visitor_id)
            if visitor is None:
                visitor = VisitorProfile(visitor_id=visitor_id, first_seen=now, last_seen=now)
                self._visitors[visitor_id] = visitor
            visitor.last_seen = now
            if session.start_time == now and not session.pages:
                visitor.session_count += 1

            self._active_daily.add(visitor_id)
            self._active_weekly.add(visitor_id)
            self._active_monthly.add(visitor_id)

            if user_id:
                session.user_id = user_id
            self._record_page_view(session, visitor, page, now)
            if session.user_id:
                self._touch_customer(session.user_id, session.id, now)
            return session
        except Exception as e:
            logger.warning("session_tracking_failed", session_id=session_id, error=str(e))
            return None

    def _start_session(self, visitor_id, page, referrer, user_agent, language, now) -> Session:
        session = Session(
            id=uuid.uuid4().hex,
            visitor_id=visitor_id,
            start_time=now,
            last_activity=now,
            entry_page=page,
            referrer=referrer or "direct",
            device=parse_user_agent(user_agent),
            language=(language or "unknown").split(",")[0].split("-")[0] or "unknown",
        )
        self._sessions[session.id] = session
        self._sessions_total += 1
        self._sessions_by_day[now.date().isoformat()] += 1

        self._entry_pages[page] += 1
        self._device_types[session.device.type] += 1
        self._browsers[session.device.browser] += 1
        self._os[session.device.os] += 1
        self._languages[session.language] += 1

        self._append_event(Event(name=EventName.SESSION_START, timestamp=now, session_id=session.id))
        return session

    def _record_page_view(self, session: Session, visitor: VisitorProfile, page: str, now: datetime):
        self._page_views_total += 1
        self._page_views_by_page[page] += 1
        self._page_views_by_hour[now.hour] += 1
        self._page_views_by_day[now.date().isoformat()] += 1
        session.pages.append(page)
        visitor.total_page_views += 1

    def end_session(self, session_id: str, now: Optional[datetime] = None) -> None:
        """End a session: bounce/exit accounting, engagement averages, journey archive."""
        try:
            session = self._sessions.get(session_id)
            if session is None or session.is_ended:
                return
            now = now or self.clock()
            session.ended_at = now

            duration = (session.last_activity - session.start_time).total_seconds()
            page_count = len(session.pages)

            if session.pages:
                self._exit_pages[session.pages[-1]] += 1
            if page_count <= 1:
                self._bounce_count += 1

            self._sessions_ended += 1
            n = self._sessions_ended
            self._avg_session_duration = (self._avg_session_duration * (n - 1) + duration) / n
            self._avg_pages_per_session = (self._avg_pages_per_session * (n - 1) + page_count) / n

            if page_count > 1 and len(self._journeys) < self.journey_limit:
                self._journeys.append(Journey(
                    pages=session.pages[:10],
                    duration_seconds=duration,
                    converted=session.converted,
                ))

            self._append_event(Event(
                name=EventName.SESSION_END,
                timestamp=now,
                session_id=session.id,
                user_id=session.user_id,
            ))
        except Exception as e:
            logger.warning("session_end_failed", session_id=session_id, error=str(e))

    def expire_idle_sessions(self, now: Optional[datetime] = None) -> int:
        """End every live session idle for longer than the timeout."""
        now = now or self.clock()
        idle = [
            s.id for s in self._sessions.values()
            if not s.is_ended and now - s.last_activity > self.session_timeout
        ]
        for session_id in idle:
            self.end_session(session_id, now=now)
        return len(idle)

    def purge_ended_sessions(self, now: Optional[datetime] = None) -> int:
        """Drop ended sessions older than the retention window."""
        now = now or self.clock()
        stale = [
            s.id for s in self._sessions.values()
            if s.is_ended and now - s.ended_at > self.session_retention
        ]
        for session_id in stale:
            del self._sessions[session_id]
        return len(stale)

    def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    # ==================== Events ====================

    def record_event(
        self,
        session_id: Optional[str],
        name: EventName | str,
        payload: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Optional[Event]:
        """
        Record a behavioural event.

        Appends to the session and the global buffer, bumps the per-name and
        funnel counters, then updates business counters for commerce events.

        Returns:
            The recorded event, or None if it could not be tracked
        """
        try:
            now = now or self.clock()
            event_name = EventName(name)
            payload = dict(payload or {})
            session = self._sessions.get(session_id) if session_id else None

            if event_name == EventName.USER_LOGIN and session is not None:
                session.user_id = payload.get("userId") or user_id or session.user_id

            event = Event(
                name=event_name,
                timestamp=now,
                session_id=session_id,
                user_id=user_id or (session.user_id if session else None),
                payload=payload,
            )

            if session is not None:
                session.events.append(event)
                session.last_activity = max(session.last_activity, now)
            self._append_event(event)
            self._update_funnels(event_name.value, now)
            self._handle_business_event(event, now)

            if event.user_id:
                self._touch_customer(event.user_id, session_id, now)
            return event
        except Exception as e:
            logger.warning("event_tracking_failed", session_id=session_id, event_name=str(name), error=str(e))
            return None

    def _append_event(self, event: Event):
        self._events.append(event)
        self._event_counts[event.name.value] += 1

    def _update_funnels(self, event_name: str, now: datetime):
        today = now.date().isoformat()
        for funnel_name, steps in FUNNELS.items():
            if event_name in steps:
                day = self._funnels[funnel_name].setdefault(today, {step: 0 for step in steps})
                day[event_name] += 1

    def _handle_business_event(self, event: Event, now: datetime):
        data = event.payload
        today = now.date().isoformat()

        if event.name == EventName.VIEW_PRODUCT:
            self._product_views[str(data.get("productId", "unknown"))] += 1

        elif event.name == EventName.ADD_TO_CART:
            self._carts["created"] += 1
            if data.get("productId"):
                self._product_added[str(data["productId"])] += 1

        elif event.name == EventName.ORDER_COMPLETE:
            amount = float(data.get("amount") or 0)
            self._orders["total"] += 1
            self._orders["today"] += 1
            self._orders["completed"] += 1
            self._revenue_total += amount
            self._revenue_today += amount
            self._revenue_by_day[today] = self._revenue_by_day.get(today, 0.0) + amount
            self._carts["converted"] += 1
            for product in data.get("products") or []:
                self._product_purchased[str(product.get("id"))] += int(product.get("quantity") or 1)
            self._average_order_value = self._revenue_total / self._orders["completed"]

        elif event.name == EventName.ORDER_CANCELLED:
            self._orders["cancelled"] += 1

        elif event.name == EventName.CART_ABANDONED:
            self._carts["abandoned"] += 1

        elif event.name == EventName.USER_SIGNUP:
            self._new_users += 1

    def _touch_customer(self, customer_id: str, session_id: Optional[str], now: datetime):
        activity = self._customers.get(customer_id)
        if activity is None:
            activity = CustomerActivity(customer_id=customer_id, first_seen=now, last_seen=now)
            self._customers[customer_id] = activity
        activity.last_seen = max(activity.last_seen, now)
        if session_id and session_id not in activity.session_ids:
            activity.session_ids.append(session_id)

    # ==================== Daily history ====================

    def record_daily_snapshot(self, now: Optional[datetime] = None) -> DailySnapshot:
        """Record (or overwrite) today's snapshot; keeps the last history_days."""
        now = now or self.clock()
        today = now.date()
        key = today.isoformat()
        ended = self._sessions_ended

        snapshot = DailySnapshot(
            date=today,
            revenue=self._revenue_today,
            orders=self._orders["today"],
            visitors=len(self._active_daily),
            sessions=self._sessions_by_day.get(key, 0),
            page_views=self._page_views_by_day.get(key, 0),
            conversion=(self._carts["converted"] / self._carts["created"] * 100) if self._carts["created"] else 0.0,
            avg_order_value=self._average_order_value,
            bounce_rate=(self._bounce_count / ended * 100) if ended else 0.0,
        )

        for i, existing in enumerate(self._daily_history):
            if existing.date == today:
                self._daily_history[i] = snapshot
                break
        else:
            self._daily_history.append(snapshot)
            if len(self._daily_history) > self.history_days:
                self._daily_history.pop(0)

        return snapshot

    def reset_daily_counters(self, now: Optional[datetime] = None) -> None:
        """Midnight reset of "today" counters; weekly on Sunday, monthly on the 1st."""
        now = now or self.clock()
        self._revenue_today = 0.0
        self._orders["today"] = 0
        self._active_daily.clear()
        if now.weekday() == 6:
            self._active_weekly.clear()
        if now.day == 1:
            self._active_monthly.clear()
        self.prune_history(now)

    def prune_history(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Drop per-day counters older than history_days, and visitors and
        customers not seen within that window.

        Returns:
            Number of entries removed per structure
        """
        now = now or self.clock()
        cutoff = now - timedelta(days=self.history_days)
        cutoff_day = cutoff.date().isoformat()

        removed = {
            "page_views_by_day": _drop_days_before(self._page_views_by_day, cutoff_day),
            "sessions_by_day": _drop_days_before(self._sessions_by_day, cutoff_day),
            "revenue_by_day": _drop_days_before(self._revenue_by_day, cutoff_day),
            "funnel_days": sum(_drop_days_before(days, cutoff_day) for days in self._funnels.values()),
            "visitors": _drop_seen_before(self._visitors, cutoff),
            "customers": _drop_seen_before(self._customers, cutoff),
        }
        if any(removed.values()):
            logger.info("tracker_history_pruned", **removed)
        return removed

    # ==================== Read surface ====================

    def snapshot(self) -> TrackerSnapshot:
        """Copy every counter into an immutable snapshot."""
        return TrackerSnapshot(
            taken_at=self.clock(),
            page_views_total=self._page_views_total,
            page_views_by_page=dict(self._page_views_by_page),
            page_views_by_hour=list(self._page_views_by_hour),
            page_views_by_day=dict(sorted(self._page_views_by_day.items())),
            entry_pages=dict(self._entry_pages),
            exit_pages=dict(self._exit_pages),
            bounce_count=self._bounce_count,
            sessions_total=self._sessions_total,
            sessions_ended=self._sessions_ended,
            active_sessions=sum(1 for s in self._sessions.values() if not s.is_ended),
            avg_session_duration_seconds=self._avg_session_duration,
            avg_pages_per_session=self._avg_pages_per_session,
            new_users=self._new_users,
            returning_users=self._returning_users,
            active_users_daily=len(self._active_daily),
            active_users_weekly=len(self._active_weekly),
            active_users_monthly=len(self._active_monthly),
            carts_created=self._carts["created"],
            carts_abandoned=self._carts["abandoned"],
            carts_converted=self._carts["converted"],
            orders_total=self._orders["total"],
            orders_today=self._orders["today"],
            orders_completed=self._orders["completed"],
            orders_cancelled=self._orders["cancelled"],
            revenue_total=self._revenue_total,
            revenue_today=self._revenue_today,
            revenue_by_day=dict(self._revenue_by_day),
            average_order_value=self._average_order_value,
            product_views=dict(self._product_views),
            product_added_to_cart=dict(self._product_added),
            product_purchased=dict(self._product_purchased),
            device_types=dict(self._device_types),
            browsers=dict(self._browsers),
            operating_systems=dict(self._os),
            languages=dict(self._languages),
            event_counts=dict(self._event_counts),
            recent_events=list(self._events),
            funnels={name: {day: dict(steps) for day, steps in days.items()} for name, days in self._funnels.items()},
            journeys=list(self._journeys),
            daily_history=list(self._daily_history),
            customer_activity={
                cid: CustomerActivity(a.customer_id, a.first_seen, a.last_seen, list(a.session_ids))
                for cid, a in self._customers.items()
            },
        )


def _drop_days_before(by_day: Dict[str, Any], cutoff_day: str) -> int:
    stale = [day for day in by_day if day < cutoff_day]
    for day in stale:
        del by_day[day]
    return len(stale)


def _drop_seen_before(by_id: Dict[str, Any], cutoff: datetime) -> int:
    stale = [key for key, item in by_id.items() if item.last_seen < cutoff]
    for key in stale:
        del by_id[key]
    return len(stale)
