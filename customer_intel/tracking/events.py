"""
Behavioural event and session types.

Events form a closed vocabulary: anything the storefront reports is mapped
onto EventName before it reaches the tracker. The category of an event is
derived from its name, never supplied by the caller.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class EventCategory(str, Enum):
    """Event families"""
    SESSION = "session"
    PAGE = "page"
    PRODUCT = "product"
    SEARCH = "search"
    CART = "cart"
    CHECKOUT = "checkout"
    ORDER = "order"
    USER = "user"
    SYSTEM = "system"


class EventName(str, Enum):
    """Closed set of trackable events"""
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    PAGE_VIEW = "page_view"
    LANDING = "landing"
    VIEW_PRODUCT = "view_product"
    SEARCH_PERFORMED = "search_performed"
    ADD_TO_CART = "add_to_cart"
    REMOVE_FROM_CART = "remove_from_cart"
    VIEW_CART = "view_cart"
    CART_ABANDONED = "cart_abandoned"
    CHECKOUT = "checkout"
    PAYMENT = "payment"
    ORDER_STARTED = "order_started"
    ORDER_PLACED = "order_placed"
    ORDER_COMPLETE = "order_complete"
    ORDER_CANCELLED = "order_cancelled"
    SIGNUP_START = "signup_start"
    SIGNUP_COMPLETE = "signup_complete"
    USER_SIGNUP = "user_signup"
    USER_REGISTERED = "user_registered"
    USER_LOGIN = "user_login"
    FIRST_ACTION = "first_action"
    AUTOMATION_ACTION_EXECUTED = "automation_action_executed"


EVENT_CATEGORIES: Dict[EventName, EventCategory] = {
    EventName.SESSION_START: EventCategory.SESSION,
    EventName.SESSION_END: EventCategory.SESSION,
    EventName.PAGE_VIEW: EventCategory.PAGE,
    EventName.LANDING: EventCategory.PAGE,
    EventName.VIEW_PRODUCT: EventCategory.PRODUCT,
    EventName.SEARCH_PERFORMED: EventCategory.SEARCH,
    EventName.ADD_TO_CART: EventCategory.CART,
    EventName.REMOVE_FROM_CART: EventCategory.CART,
    EventName.VIEW_CART: EventCategory.CART,
    EventName.CART_ABANDONED: EventCategory.CART,
    EventName.CHECKOUT: EventCategory.CHECKOUT,
    EventName.PAYMENT: EventCategory.CHECKOUT,
    EventName.ORDER_STARTED: EventCategory.ORDER,
    EventName.ORDER_PLACED: EventCategory.ORDER,
    EventName.ORDER_COMPLETE: EventCategory.ORDER,
    EventName.ORDER_CANCELLED: EventCategory.ORDER,
    EventName.SIGNUP_START: EventCategory.USER,
    EventName.SIGNUP_COMPLETE: EventCategory.USER,
    EventName.USER_SIGNUP: EventCategory.USER,
    EventName.USER_REGISTERED: EventCategory.USER,
    EventName.USER_LOGIN: EventCategory.USER,
    EventName.FIRST_ACTION: EventCategory.USER,
    EventName.AUTOMATION_ACTION_EXECUTED: EventCategory.SYSTEM,
}

# Events that mean the customer bought something
PURCHASE_EVENTS = frozenset({EventName.ORDER_PLACED, EventName.ORDER_COMPLETE})
CART_MODIFICATION_EVENTS = frozenset({EventName.ADD_TO_CART, EventName.REMOVE_FROM_CART})


@dataclass
class Event:
    """A single tracked event (append-only)."""
    name: EventName
    timestamp: datetime
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def category(self) -> EventCategory:
        return EVENT_CATEGORIES[self.name]

    @property
    def cart_value(self) -> float:
        cart = self.payload.get("cart") or {}
        return float(cart.get("totalValue", self.payload.get("cartTotal", 0)) or 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name.value,
            "category": self.category.value,
            "timestamp": self.timestamp.isoformat(),
            "session_id": self.session_id,
            "user_id": self.user_id,
            "payload": dict(self.payload),
        }


@dataclass
class DeviceInfo:
    type: str = "unknown"
    browser: str = "unknown"
    os: str = "unknown"


@dataclass
class Session:
    """One visit; expires after the configured inactivity timeout."""
    id: str
    visitor_id: str
    start_time: datetime
    last_activity: datetime
    entry_page: str
    referrer: str = "direct"
    device: DeviceInfo = field(default_factory=DeviceInfo)
    language: str = "unknown"
    user_id: Optional[str] = None
    pages: List[str] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)
    ended_at: Optional[datetime] = None

    @property
    def is_ended(self) -> bool:
        return self.ended_at is not None

    @property
    def converted(self) -> bool:
        return any(e.name in PURCHASE_EVENTS for e in self.events)


@dataclass
class VisitorProfile:
    visitor_id: str
    first_seen: datetime
    last_seen: datetime
    session_count: int = 0
    total_page_views: int = 0


@dataclass
class Journey:
    """Archived multi-page session path."""
    pages: List[str]
    duration_seconds: float
    converted: bool


def parse_user_agent(ua: Optional[str]) -> DeviceInfo:
    """Coarse device/browser/OS classification from a User-Agent header."""
    if not ua:
        return DeviceInfo()

    if re.search(r"mobile", ua, re.I):
        device_type = "mobile"
    elif re.search(r"tablet|ipad", ua, re.I):
        device_type = "tablet"
    else:
        device_type = "desktop"

    browser = "other"
    if re.search(r"chrome", ua, re.I) and not re.search(r"edge|opr", ua, re.I):
        browser = "Chrome"
    elif re.search(r"firefox", ua, re.I):
        browser = "Firefox"
    elif re.search(r"safari", ua, re.I) and not re.search(r"chrome", ua, re.I):
        browser = "Safari"
    elif re.search(r"edge", ua, re.I):
        browser = "Edge"
    elif re.search(r"opr|opera", ua, re.I):
        browser = "Opera"

    os_name = "other"
    if re.search(r"windows", ua, re.I):
        os_name = "Windows"
    elif re.search(r"android", ua, re.I):
        os_name = "Android"
    elif re.search(r"iphone|ipad", ua, re.I):
        os_name = "iOS"
    elif re.search(r"mac", ua, re.I):
        os_name = "macOS"
    elif re.search(r"linux", ua, re.I):
        os_name = "Linux"

    return DeviceInfo(type=device_type, browser=browser, os=os_name)
