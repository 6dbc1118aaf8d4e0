"""
Real-Time Event Tracking

Session lifecycle, behavioural events and cheap in-memory counters.

Usage:
    from customer_intel.tracking import EventTracker, EventName

    tracker = EventTracker(buffer_size=1000)
    session = tracker.touch_session(None, visitor_id="v1", page="/")
    tracker.record_event(session.id, EventName.ADD_TO_CART, {"productId": "p1"})
"""

from customer_intel.tracking.events import (
    DeviceInfo,
    Event,
    EventCategory,
    EventName,
    Journey,
    Session,
    VisitorProfile,
    parse_user_agent,
)
from customer_intel.tracking.tracker import (
    CustomerActivity,
    DailySnapshot,
    EventTracker,
    TrackerSnapshot,
)

__all__ = [
    "CustomerActivity",
    "DailySnapshot",
    "DeviceInfo",
    "Event",
    "EventCategory",
    "EventName",
    "EventTracker",
    "Journey",
    "Session",
    "TrackerSnapshot",
    "VisitorProfile",
    "parse_user_agent",
]
