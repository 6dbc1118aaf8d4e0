"""
Tests for Workflow Conditions

Tests:
- Entry conditions fail closed on errors and missing profiles
- Stop conditions match in definition order
- Session-started stop condition looks back 24h
- A failing stop condition lookup neither stops nor blocks the due step
"""

from datetime import timedelta

import pytest

from customer_intel.automation.conditions import ConditionEvaluator
from customer_intel.automation.definitions import (
    CART_RECOVERY_EMAIL,
    VIP_WINBACK_CAMPAIGN,
    StepCondition,
    StopCondition,
    WorkflowDefinition,
)
from customer_intel.core.records import to_ms
from customer_intel.jobs.sweeps import process_due_jobs
from customer_intel.tracking.events import Event, EventName
from tests.conftest import NOW


@pytest.fixture
def evaluator(orders, customers, events, clock):
    return ConditionEvaluator(orders, customers, events, clock)


class TestEntryConditions:
    """Test entry checks"""

    @pytest.mark.asyncio
    async def test_missing_profile_fails(self, evaluator):
        assert not await evaluator.entry_conditions_met(CART_RECOVERY_EMAIL, "ghost", {"cartTotal": 500})

    @pytest.mark.asyncio
    async def test_lookup_error_fails_closed(self, evaluator, customers, orders):
        customers.add("c1")

        async def broken(customer_id, since=None):
            raise ConnectionError("orders unavailable")

        orders.orders_for_customer = broken
        assert not await evaluator.entry_conditions_met(VIP_WINBACK_CAMPAIGN, "c1", {})

    @pytest.mark.asyncio
    async def test_vip_needs_lapse(self, evaluator, customers, orders):
        customers.add("c1")
        orders.add("c1", 12000.0, NOW - timedelta(days=30))

        assert not await evaluator.entry_conditions_met(VIP_WINBACK_CAMPAIGN, "c1", {})

    @pytest.mark.asyncio
    async def test_no_entry_conditions(self, evaluator):
        definition = WorkflowDefinition(automation_id="open", name="Open", trigger_event="x", steps=())
        assert await evaluator.entry_conditions_met(definition, "anyone", {})


class TestStepConditions:
    """Test per-step guards"""

    @pytest.mark.asyncio
    async def test_has_not_purchased(self, evaluator, orders):
        assert await evaluator.step_condition_met(StepCondition.HAS_NOT_PURCHASED, "c1")

        orders.add("c1", 20.0, NOW - timedelta(hours=3))
        assert not await evaluator.step_condition_met(StepCondition.HAS_NOT_PURCHASED, "c1")

    @pytest.mark.asyncio
    async def test_old_purchase_does_not_block(self, evaluator, orders):
        orders.add("c1", 20.0, NOW - timedelta(days=3))
        assert await evaluator.step_condition_met(StepCondition.HAS_NOT_PURCHASED, "c1")


class TestStopConditions:
    """Test stop condition matching"""

    @pytest.mark.asyncio
    async def test_first_match_in_definition_order(self, evaluator, customers, events):
        customers.add("c1", email_notifications=False)
        started = NOW - timedelta(hours=2)
        events.events.append(Event(
            name=EventName.ADD_TO_CART,
            timestamp=NOW - timedelta(hours=1),
            user_id="c1",
        ))

        matched = await evaluator.first_stop_condition(CART_RECOVERY_EMAIL, "c1", to_ms(started))
        assert matched == StopCondition.CART_UPDATED

    @pytest.mark.asyncio
    async def test_events_before_start_ignored(self, evaluator, customers, events):
        customers.add("c1")
        events.events.append(Event(
            name=EventName.ORDER_COMPLETE,
            timestamp=NOW - timedelta(hours=5),
            user_id="c1",
        ))

        started = NOW - timedelta(hours=2)
        assert await evaluator.first_stop_condition(CART_RECOVERY_EMAIL, "c1", to_ms(started)) is None

    @pytest.mark.asyncio
    async def test_session_started(self, evaluator, customers, events):
        definition = WorkflowDefinition(
            automation_id="browse",
            name="Browse",
            trigger_event="x",
            steps=(),
            stop_conditions=(StopCondition.SESSION_STARTED,),
        )
        customers.add("c1")
        started = to_ms(NOW - timedelta(days=3))
        assert await evaluator.first_stop_condition(definition, "c1", started) is None

        events.events.append(Event(
            name=EventName.SESSION_START,
            timestamp=NOW - timedelta(hours=6),
            user_id="c1",
        ))
        assert await evaluator.first_stop_condition(definition, "c1", started) == StopCondition.SESSION_STARTED

    @pytest.mark.asyncio
    async def test_lookup_error_does_not_stop(self, evaluator, customers, events):
        customers.add("c1")

        async def broken(customer_id, names=None, since=None, limit=None):
            raise ConnectionError("event log unavailable")

        events.events_for_customer = broken
        started = to_ms(NOW - timedelta(hours=2))

        assert await evaluator.first_stop_condition(CART_RECOVERY_EMAIL, "c1", started) is None

    @pytest.mark.asyncio
    async def test_due_step_runs_when_stop_lookup_fails(self, engine, customers, events, dispatcher, clock):
        customers.add("c1")
        await engine.trigger_workflow("cart_recovery_email", "c1", {"cartTotal": 150, "cartItems": []})

        async def broken(customer_id, names=None, since=None, limit=None):
            raise ConnectionError("event log unavailable")

        events.events_for_customer = broken
        clock.advance(hours=1, minutes=1)

        assert await process_due_jobs(engine) == 1
        assert dispatcher.templates == ["cart_reminder_1"]
        assert (await engine.load_instance("cart_recovery_email", "c1")).current_step == 1
