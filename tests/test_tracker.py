"""
Unit Tests for the Real-Time Event Tracker

Covers:
- Session reuse, expiry, bounce and journey accounting
- Event counters, funnels and business counters
- Bounded event buffer
- Daily snapshots and counter resets
- Per-day counters and idle visitors pruned past the history window
"""

from datetime import datetime, timedelta, timezone

import pytest

from customer_intel.tracking.events import EventCategory, EventName, parse_user_agent
from customer_intel.tracking.tracker import CUSTOMER_SESSION_LIMIT, EventTracker

IPHONE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile/15E148 Safari/604.1"


@pytest.fixture
def tracker(clock):
    return EventTracker(clock=clock)


class TestSessions:
    """Test session lifecycle"""

    def test_new_session_records_entry_and_device(self, tracker):
        session = tracker.touch_session(None, visitor_id=None, page="/", user_agent=IPHONE_UA, language="en-US,en")

        snapshot = tracker.snapshot()
        assert session is not None
        assert snapshot.sessions_total == 1
        assert snapshot.entry_pages == {"/": 1}
        assert snapshot.device_types == {"mobile": 1}
        assert snapshot.languages == {"en": 1}
        assert snapshot.new_users == 1
        assert snapshot.event_counts[EventName.SESSION_START.value] == 1

    def test_session_reused_within_timeout(self, tracker, clock):
        first = tracker.touch_session(None, visitor_id="v1", page="/")
        clock.advance(minutes=10)
        second = tracker.touch_session(first.id, visitor_id="v1", page="/products")

        assert second.id == first.id
        assert second.pages == ["/", "/products"]
        assert tracker.snapshot().page_views_total == 2

    def test_session_replaced_after_timeout(self, tracker, clock):
        first = tracker.touch_session(None, visitor_id="v1", page="/")
        tracker.touch_session(first.id, visitor_id="v1", page="/products")
        clock.advance(minutes=31)
        second = tracker.touch_session(first.id, visitor_id="v1", page="/")

        snapshot = tracker.snapshot()
        assert second.id != first.id
        assert tracker.get_session(first.id).is_ended
        assert snapshot.sessions_ended == 1
        assert snapshot.bounce_count == 0
        assert snapshot.exit_pages == {"/products": 1}
        assert len(snapshot.journeys) == 1
        assert snapshot.journeys[0].pages == ["/", "/products"]

    def test_single_page_session_is_bounce(self, tracker, clock):
        tracker.touch_session(None, visitor_id="v1", page="/landing")
        clock.advance(minutes=31)

        assert tracker.expire_idle_sessions() == 1
        snapshot = tracker.snapshot()
        assert snapshot.bounce_count == 1
        assert snapshot.bounce_rate == 100.0
        assert snapshot.journeys == []

    def test_ended_sessions_purged_after_retention(self, tracker, clock):
        session = tracker.touch_session(None, visitor_id="v1", page="/")
        clock.advance(minutes=31)
        tracker.expire_idle_sessions()

        assert tracker.purge_ended_sessions() == 0
        clock.advance(minutes=61)
        assert tracker.purge_ended_sessions() == 1
        assert tracker.get_session(session.id) is None

    def test_identified_page_view_tracks_customer(self, tracker):
        session = tracker.touch_session(None, visitor_id="v1", page="/", user_id="c1")

        assert session.user_id == "c1"
        activity = tracker.snapshot().customer_activity["c1"]
        assert activity.session_ids == [session.id]

    def test_customer_session_ids_are_bounded(self, tracker):
        for i in range(CUSTOMER_SESSION_LIMIT + 10):
            tracker.record_event(f"s{i}", EventName.VIEW_PRODUCT, {"productId": "p1"}, user_id="c1")
        tracker.record_event("s59", EventName.VIEW_PRODUCT, {"productId": "p2"}, user_id="c1")

        session_ids = tracker.snapshot().customer_activity["c1"].session_ids
        assert len(session_ids) == CUSTOMER_SESSION_LIMIT
        assert session_ids[0] == "s10"
        assert session_ids[-1] == "s59"


class TestEvents:
    """Test event recording and counters"""

    def test_unknown_event_is_rejected(self, tracker):
        assert tracker.record_event(None, "teleported") is None
        assert tracker.snapshot().event_counts == {}

    def test_category_derived_from_name(self, tracker):
        event = tracker.record_event(None, EventName.ADD_TO_CART, {"productId": "p1"})
        assert event.category == EventCategory.CART

    def test_order_complete_updates_business_counters(self, tracker):
        tracker.record_event(None, EventName.ADD_TO_CART, {"productId": "p1"})
        tracker.record_event(None, EventName.ORDER_COMPLETE, {
            "amount": 120.0,
            "products": [{"id": "p1", "quantity": 2}],
        })

        snapshot = tracker.snapshot()
        assert snapshot.carts_created == 1
        assert snapshot.carts_converted == 1
        assert snapshot.orders_completed == 1
        assert snapshot.revenue_total == 120.0
        assert snapshot.revenue_today == 120.0
        assert snapshot.average_order_value == 120.0
        assert snapshot.product_added_to_cart == {"p1": 1}
        assert snapshot.product_purchased == {"p1": 2}
        assert snapshot.conversion_rate == 100.0

    def test_funnel_counts_per_day(self, tracker, clock):
        tracker.record_event(None, EventName.VIEW_PRODUCT, {"productId": "p1"})
        tracker.record_event(None, EventName.ADD_TO_CART, {"productId": "p1"})

        today = clock().date().isoformat()
        checkout = tracker.snapshot().funnels["checkout"][today]
        assert checkout["view_product"] == 1
        assert checkout["add_to_cart"] == 1
        assert checkout["payment"] == 0

    def test_login_identifies_session(self, tracker):
        session = tracker.touch_session(None, visitor_id="v1", page="/")
        event = tracker.record_event(session.id, EventName.USER_LOGIN, {"userId": "c9"})

        assert tracker.get_session(session.id).user_id == "c9"
        assert event.session_id == session.id
        later = tracker.record_event(session.id, EventName.VIEW_PRODUCT, {"productId": "p1"})
        assert later.user_id == "c9"

    def test_event_buffer_is_bounded(self, clock):
        tracker = EventTracker(buffer_size=3, clock=clock)
        for i in range(5):
            tracker.record_event(None, EventName.VIEW_PRODUCT, {"productId": f"p{i}"})

        snapshot = tracker.snapshot()
        assert len(snapshot.recent_events) == 3
        assert snapshot.recent_events[-1].payload["productId"] == "p4"
        assert snapshot.event_counts["view_product"] == 5


class TestDailyHistory:
    """Test daily snapshots and resets"""

    def test_snapshot_overwrites_same_day(self, tracker):
        tracker.record_event(None, EventName.ORDER_COMPLETE, {"amount": 50.0})
        tracker.record_daily_snapshot()
        tracker.record_event(None, EventName.ORDER_COMPLETE, {"amount": 30.0})
        snapshot = tracker.record_daily_snapshot()

        history = tracker.snapshot().daily_history
        assert len(history) == 1
        assert snapshot.revenue == 80.0
        assert snapshot.orders == 2

    def test_history_is_bounded(self, clock):
        tracker = EventTracker(history_days=3, clock=clock)
        for _ in range(5):
            tracker.record_daily_snapshot()
            clock.advance(days=1)

        history = tracker.snapshot().daily_history
        assert len(history) == 3
        assert history[-1].date == (clock() - timedelta(days=1)).date()

    def test_weekday_reset_keeps_weekly_actives(self, tracker):
        tracker.touch_session(None, visitor_id="v1", page="/")
        tracker.record_event(None, EventName.ORDER_COMPLETE, {"amount": 40.0})

        tracker.reset_daily_counters(datetime(2025, 6, 18, 0, 0, tzinfo=timezone.utc))

        snapshot = tracker.snapshot()
        assert snapshot.revenue_today == 0.0
        assert snapshot.orders_today == 0
        assert snapshot.revenue_total == 40.0
        assert snapshot.active_users_daily == 0
        assert snapshot.active_users_weekly == 1

    def test_sunday_reset_clears_weekly_actives(self, tracker):
        tracker.touch_session(None, visitor_id="v1", page="/")

        tracker.reset_daily_counters(datetime(2025, 6, 22, 0, 0, tzinfo=timezone.utc))

        snapshot = tracker.snapshot()
        assert snapshot.active_users_weekly == 0
        assert snapshot.active_users_monthly == 1

    def test_reset_prunes_past_history_window(self, clock):
        tracker = EventTracker(history_days=3, clock=clock)
        old_day = clock().date().isoformat()
        tracker.touch_session(None, visitor_id="v_old", page="/")
        tracker.record_event(None, EventName.ORDER_COMPLETE, {"amount": 40.0}, user_id="c_old")

        clock.advance(days=5)
        tracker.touch_session(None, visitor_id="v_new", page="/", user_id="c_new")
        tracker.record_event(None, EventName.VIEW_PRODUCT, {"productId": "p1"})
        today = clock().date().isoformat()

        tracker.reset_daily_counters()

        snapshot = tracker.snapshot()
        assert list(snapshot.page_views_by_day) == [today]
        assert snapshot.revenue_by_day == {}
        assert old_day not in snapshot.funnels["checkout"]
        assert today in snapshot.funnels["checkout"]
        assert set(snapshot.customer_activity) == {"c_new"}
        assert snapshot.revenue_total == 40.0
        assert tracker.prune_history() == {
            "page_views_by_day": 0,
            "sessions_by_day": 0,
            "revenue_by_day": 0,
            "funnel_days": 0,
            "visitors": 0,
            "customers": 0,
        }

    def test_idle_visitor_is_evicted(self, clock):
        tracker = EventTracker(history_days=3, clock=clock)
        tracker.touch_session(None, visitor_id="v1", page="/")
        clock.advance(days=5)

        assert tracker.prune_history()["visitors"] == 1
        tracker.touch_session(None, visitor_id="v1", page="/")
        assert tracker.snapshot().returning_users == 2


class TestUserAgentParsing:
    """Test coarse device classification"""

    def test_iphone(self):
        device = parse_user_agent(IPHONE_UA)
        assert (device.type, device.browser, device.os) == ("mobile", "Safari", "iOS")

    def test_missing_user_agent(self):
        device = parse_user_agent(None)
        assert device.type == "unknown"
