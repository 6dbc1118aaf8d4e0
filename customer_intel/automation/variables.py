"""
Template variable resolution.

Only names in ALLOWED_VARIABLES are resolved; each has a dedicated lookup
against the customer profile, order history or event history. Context data
supplied at trigger time (e.g. cartItems from the abandoned-cart sweep)
takes precedence over a lookup.
"""

import hashlib
import logging
import re
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from customer_intel.core.config import Settings
from customer_intel.core.records import CustomerProfile
from customer_intel.repositories.events import EventHistory
from customer_intel.repositories.orders import OrderHistory
from customer_intel.tracking.events import Event, EventName

logger = logging.getLogger(__name__)

ALLOWED_VARIABLES = frozenset({
    "firstName", "lastName", "email", "phone",
    "cartItems", "cartTotal", "cartLink",
    "lastOrderDate", "lastPurchaseDate",
    "personalizedProducts", "topCategories",
    "discountCode", "welcomeDiscount", "exclusiveOffer",
    "urgencyMessage", "expiryDate", "agentName", "storeName",
})

PROFILE_VARIABLES = ("firstName", "lastName", "email", "phone")

CART_ITEM_LIMIT = 10
PERSONALIZED_LIMIT = 5
TOP_CATEGORY_LIMIT = 3
DISCOUNT_VALIDITY_DAYS = 7
DEFAULT_WELCOME_DISCOUNT = 10
DEFAULT_EXCLUSIVE_DISCOUNT = 25

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def interpolate(template: Optional[str], variables: Dict[str, Any]) -> str:
    """Replace {{name}} placeholders; unknown or empty ones are left intact."""
    if not template:
        return ""

    def replace(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return match.group(0) if value is None else str(value)

    return _PLACEHOLDER.sub(replace, template)


def discount_code(automation_id: str, customer_id: str, step_index: int, percent: Optional[int]) -> str:
    """Deterministic per (automation, customer, step) code, e.g. SAVE10-3F9A21BC."""
    digest = hashlib.sha256(f"{automation_id}:{customer_id}:{step_index}".encode()).hexdigest()
    return f"SAVE{percent or 10}-{digest[:8].upper()}"


def product_fields(event: Event, include_quantity: bool) -> Dict[str, Any]:
    product = event.payload.get("product") or event.payload
    item = {
        "productId": product.get("productId"),
        "name": product.get("name"),
        "price": product.get("price"),
    }
    if include_quantity:
        item["quantity"] = product.get("quantity", 1)
    return item


class VariableResolver:
    """
    Resolves a step's variable names for one customer.

    Lookups are async callables keyed by variable name; see _lookups().
    """

    def __init__(
        self,
        orders: OrderHistory,
        events: EventHistory,
        settings: Settings,
        clock: Callable[[], datetime]
    ):
        self.orders = orders
        self.events = events
        self.settings = settings
        self.clock = clock

    async def resolve(
        self,
        names: Iterable[str],
        profile: CustomerProfile,
        context: Dict[str, Any],
        automation_id: str,
        step_index: int,
        offer_discount: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Build the variable map for a step.

        Args:
            names: Variable names the step asks for
            profile: Customer profile
            context: Instance context data
            automation_id: Running automation
            step_index: Step being executed
            offer_discount: Discount percent attached to the step

        Returns:
            Profile fields, context data and every resolvable requested name
        """
        variables: Dict[str, Any] = {
            "firstName": profile.first_name,
            "lastName": profile.last_name,
            "email": profile.email,
            "phone": profile.phone,
        }
        variables.update(context)

        lookups = self._lookups(profile.customer_id, automation_id, step_index, offer_discount)
        for name in names:
            if name not in ALLOWED_VARIABLES:
                logger.warning(f"Variable {name} is not allowed in templates; skipped")
                continue
            if name in PROFILE_VARIABLES or variables.get(name) is not None:
                continue
            lookup = lookups.get(name)
            if lookup is None:
                continue
            variables[name] = await lookup()

        return variables

    def _lookups(
        self,
        customer_id: str,
        automation_id: str,
        step_index: int,
        offer_discount: Optional[int]
    ) -> Dict[str, Callable[[], Awaitable[Any]]]:
        async def cart_items():
            return await self.cart_items(customer_id)

        async def cart_total():
            return await self.cart_total(customer_id)

        async def cart_link():
            return f"{self.settings.store_url.rstrip('/')}/cart"

        async def last_order_date():
            return await self.last_order_date(customer_id)

        async def personalized_products():
            return await self.personalized_products(customer_id)

        async def top_categories():
            return await self.top_categories(customer_id)

        async def code():
            return discount_code(automation_id, customer_id, step_index, offer_discount)

        async def welcome_discount():
            return f"{DEFAULT_WELCOME_DISCOUNT}%"

        async def exclusive_offer():
            return f"{offer_discount or DEFAULT_EXCLUSIVE_DISCOUNT}% off your next order"

        async def urgency_message():
            return "Items in your cart are selling fast. Complete your order before they're gone!"

        async def expiry_date():
            return (self.clock() + timedelta(days=DISCOUNT_VALIDITY_DAYS)).date().isoformat()

        async def agent_name():
            return self.settings.support_agent_name

        async def store_name():
            return self.settings.store_name

        return {
            "cartItems": cart_items,
            "cartTotal": cart_total,
            "cartLink": cart_link,
            "lastOrderDate": last_order_date,
            "lastPurchaseDate": last_order_date,
            "personalizedProducts": personalized_products,
            "topCategories": top_categories,
            "discountCode": code,
            "welcomeDiscount": welcome_discount,
            "exclusiveOffer": exclusive_offer,
            "urgencyMessage": urgency_message,
            "expiryDate": expiry_date,
            "agentName": agent_name,
            "storeName": store_name,
        }

    # ==================== Lookups ====================

    async def cart_items(self, customer_id: str) -> List[Dict[str, Any]]:
        events = await self.events.events_for_customer(
            customer_id, names=[EventName.ADD_TO_CART], limit=CART_ITEM_LIMIT
        )
        return [product_fields(e, include_quantity=True) for e in events]

    async def cart_total(self, customer_id: str) -> float:
        events = await self.events.events_for_customer(customer_id, names=[EventName.ADD_TO_CART], limit=1)
        return events[0].cart_value if events else 0.0

    async def last_order_date(self, customer_id: str) -> Optional[str]:
        orders = await self.orders.orders_for_customer(customer_id)
        if not orders:
            return None
        return max(o.placed_at for o in orders).date().isoformat()

    async def personalized_products(self, customer_id: str) -> List[Dict[str, Any]]:
        events = await self.events.events_for_customer(
            customer_id, names=[EventName.VIEW_PRODUCT], limit=PERSONALIZED_LIMIT
        )
        return [product_fields(e, include_quantity=False) for e in events]

    async def top_categories(self, customer_id: str) -> List[str]:
        events = await self.events.events_for_customer(customer_id, names=[EventName.VIEW_PRODUCT], limit=50)
        counts = Counter(
            (e.payload.get("product") or e.payload).get("category")
            for e in events
        )
        counts.pop(None, None)
        return [category for category, _ in counts.most_common(TOP_CATEGORY_LIMIT)]
