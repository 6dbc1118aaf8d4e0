"""
Workflow condition evaluation.

Entry conditions gate trigger_workflow, step conditions gate a single step,
stop conditions abort a live instance before its next due step.

Every evaluation fails closed: an error while checking counts as "not met",
so a broken lookup neither starts nor stops a workflow.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from customer_intel.automation.definitions import (
    EntryConditions,
    StepCondition,
    StopCondition,
    WorkflowDefinition,
)
from customer_intel.core.records import days_between, from_ms
from customer_intel.repositories.customers import CustomerDirectory
from customer_intel.repositories.events import EventHistory
from customer_intel.repositories.orders import OrderHistory
from customer_intel.segmentation.vip import vip_tier
from customer_intel.tracking.events import CART_MODIFICATION_EVENTS, PURCHASE_EVENTS, EventName

logger = logging.getLogger(__name__)

RECENT_PURCHASE_WINDOW = timedelta(hours=24)
RECENT_SESSION_WINDOW = timedelta(hours=24)


class ConditionEvaluator:
    """Evaluates entry, step and stop conditions against collaborator data."""

    def __init__(
        self,
        orders: OrderHistory,
        customers: CustomerDirectory,
        events: EventHistory,
        clock: Callable[[], datetime]
    ):
        self.orders = orders
        self.customers = customers
        self.events = events
        self.clock = clock

    # ==================== Entry ====================

    async def entry_conditions_met(
        self,
        definition: WorkflowDefinition,
        customer_id: str,
        context: Dict[str, Any]
    ) -> bool:
        conditions = definition.entry_conditions
        if conditions.is_empty:
            return True
        try:
            return await self._check_entry(conditions, customer_id, context)
        except Exception as e:
            logger.warning(
                f"Entry condition check failed for {definition.automation_id}/{customer_id}: {e}"
            )
            return False

    async def _check_entry(self, conditions: EntryConditions, customer_id: str, context: Dict[str, Any]) -> bool:
        profile = await self.customers.get_profile(customer_id)
        if profile is None:
            return False

        if conditions.min_cart_value is not None:
            cart_value = await self._cart_value(customer_id, context)
            if cart_value < conditions.min_cart_value:
                return False

        if conditions.requires_email and not profile.email:
            return False

        if conditions.vip_tiers or conditions.min_days_since_last_order is not None:
            orders = await self.orders.orders_for_customer(customer_id)

            if conditions.vip_tiers:
                total = sum(o.amount for o in orders)
                if vip_tier(total, len(orders)) not in conditions.vip_tiers:
                    return False

            if conditions.min_days_since_last_order is not None:
                if not orders:
                    return False
                last_order = max(o.placed_at for o in orders)
                if days_between(last_order, self.clock()) < conditions.min_days_since_last_order:
                    return False

        return True

    async def _cart_value(self, customer_id: str, context: Dict[str, Any]) -> float:
        if context.get("cartTotal") is not None:
            return float(context["cartTotal"])
        events = await self.events.events_for_customer(customer_id, names=[EventName.ADD_TO_CART], limit=1)
        return events[0].cart_value if events else 0.0

    # ==================== Step ====================

    async def step_condition_met(self, condition: Optional[StepCondition], customer_id: str) -> bool:
        if condition is None:
            return True
        try:
            if condition == StepCondition.HAS_NOT_PURCHASED:
                since = self.clock() - RECENT_PURCHASE_WINDOW
                return not await self.orders.orders_for_customer(customer_id, since=since)
            return True
        except Exception as e:
            logger.warning(f"Step condition {condition.value} failed for {customer_id}: {e}")
            return False

    # ==================== Stop ====================

    async def first_stop_condition(
        self,
        definition: WorkflowDefinition,
        customer_id: str,
        started_at_ms: int
    ) -> Optional[StopCondition]:
        """First matching stop condition in definition order, or None."""
        started_at = from_ms(started_at_ms)
        for condition in definition.stop_conditions:
            try:
                if await self._stop_matches(condition, customer_id, started_at):
                    return condition
            except Exception as e:
                logger.warning(f"Stop condition {condition.value} failed for {customer_id}: {e}")
        return None

    async def _stop_matches(self, condition: StopCondition, customer_id: str, started_at: datetime) -> bool:
        if condition == StopCondition.ORDER_PLACED:
            if await self.orders.orders_for_customer(customer_id, since=started_at):
                return True
            return bool(await self.events.events_for_customer(
                customer_id, names=PURCHASE_EVENTS, since=started_at, limit=1
            ))

        if condition == StopCondition.CART_UPDATED:
            return bool(await self.events.events_for_customer(
                customer_id, names=CART_MODIFICATION_EVENTS, since=started_at, limit=1
            ))

        if condition == StopCondition.UNSUBSCRIBED:
            profile = await self.customers.get_profile(customer_id)
            return profile is None or not profile.email_notifications

        if condition == StopCondition.SESSION_STARTED:
            since = self.clock() - RECENT_SESSION_WINDOW
            return bool(await self.events.events_for_customer(
                customer_id, names=[EventName.SESSION_START], since=since, limit=1
            ))

        return False
