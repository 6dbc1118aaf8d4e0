"""
Periodic sweeps.

Each sweep is an async function that does one pass and returns a count.
The scheduler loop decides when they run; every sweep is also safe to call
directly (tests, `--once`).

Sweeps:
- process_due_jobs: run workflow steps whose execute_at has passed
- detect_abandoned_carts: cart_recovery_email for carts idle > 1h
- detect_at_risk_vips: vip_winback_campaign for lapsed high spenders
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from customer_intel.automation.engine import WorkflowEngine, parse_job_member
from customer_intel.automation.variables import product_fields
from customer_intel.core.exceptions import WorkflowNotFoundError
from customer_intel.core.records import coerce_utc, days_between, to_ms
from customer_intel.middleware.logging_config import get_logger
from customer_intel.services.intelligence_service import IntelligenceService
from customer_intel.tracking.events import PURCHASE_EVENTS, Event, EventName

logger = get_logger(__name__)

CART_RECOVERY_AUTOMATION = "cart_recovery_email"
VIP_WINBACK_AUTOMATION = "vip_winback_campaign"


async def process_due_jobs(engine: WorkflowEngine, now: Optional[datetime] = None) -> int:
    """
    Consume every scheduled job with execute_at <= now.

    Each job is claimed (atomically removed) before it is processed, so a job
    runs at most once across processes and is never re-queued. A step that
    raises removes its instance. Jobs whose instance is gone or has moved on
    are dropped.

    Returns:
        Number of jobs resumed
    """
    now = coerce_utc(now) or engine.clock()
    jobs = await engine.store.due(engine.queue_key, to_ms(now))
    if jobs:
        logger.info("due_jobs_found", count=len(jobs))

    resumed = 0
    for member, execute_at in jobs:
        if not await engine.store.claim(engine.queue_key, member):
            logger.debug("due_job_already_claimed", execute_at=execute_at)
            continue

        try:
            job = parse_job_member(member)
            definition = engine.get_definition(job.automation_id)

            instance = await engine.load_instance(job.automation_id, job.customer_id)
            if instance is None:
                logger.info("due_job_instance_missing", automation_id=job.automation_id, customer_id=job.customer_id)
                continue
            if instance.current_step != job.current_step:
                logger.info(
                    "due_job_stale",
                    automation_id=job.automation_id,
                    customer_id=job.customer_id,
                    job_step=job.current_step,
                    instance_step=instance.current_step,
                )
                continue

            if await engine.check_stop_conditions(instance, definition):
                await engine.stop_workflow(instance)
                continue

            try:
                await engine.resume(instance, definition)
            except Exception as e:
                await engine.fail_workflow(instance, e)
                continue
            resumed += 1
        except WorkflowNotFoundError as e:
            logger.error("due_job_unknown_automation", error=e.message, details=e.details)
        except Exception as e:
            logger.error("due_job_failed", execute_at=execute_at, error=str(e), exc_info=True)

    return resumed


def _abandoned_sessions(
    events: List[Event],
    window_end: datetime,
    min_value: float
) -> List[Dict[str, Any]]:
    by_session: Dict[str, List[Event]] = defaultdict(list)
    for event in events:
        if event.session_id:
            by_session[event.session_id].append(event)

    candidates = []
    for session_id, session_events in by_session.items():
        if any(e.name in PURCHASE_EVENTS or e.name == EventName.CART_ABANDONED for e in session_events):
            continue

        cart_events = [
            e for e in session_events
            if e.name == EventName.ADD_TO_CART and coerce_utc(e.timestamp) <= window_end
        ]
        if not cart_events:
            continue

        cart_events.sort(key=lambda e: e.timestamp)
        latest = cart_events[-1]
        customer_id = next((e.user_id for e in reversed(cart_events) if e.user_id), None)
        if customer_id is None:
            continue

        cart_total = latest.cart_value
        if cart_total < min_value:
            continue

        candidates.append({
            "session_id": session_id,
            "customer_id": customer_id,
            "cart_total": cart_total,
            "cart_items": [product_fields(e, include_quantity=True) for e in cart_events],
            "last_activity": latest.timestamp,
        })

    candidates.sort(key=lambda c: c["last_activity"])
    return candidates


async def detect_abandoned_carts(service: IntelligenceService, now: Optional[datetime] = None) -> int:
    """
    Find sessions with add_to_cart in [now - 24h, now - 1h] and no purchase.

    Each qualifying session is recorded once as cart_abandoned (a later
    sweep skips it) and the customer enters cart_recovery_email with
    {cartId, cartItems, cartTotal}.

    Returns:
        Number of workflows started
    """
    settings = service.settings
    now = coerce_utc(now) or service.clock()
    window_start = now - timedelta(hours=settings.abandoned_cart_lookback_hours)
    window_end = now - timedelta(hours=settings.abandoned_cart_grace_hours)

    events = await service.events.events_between(
        [EventName.ADD_TO_CART, EventName.CART_ABANDONED, *PURCHASE_EVENTS],
        window_start,
        now,
    )
    candidates = _abandoned_sessions(events, window_end, settings.abandoned_cart_min_value)
    candidates = candidates[:settings.abandoned_cart_limit]
    if candidates:
        logger.info("abandoned_carts_found", count=len(candidates))

    started = 0
    for cart in candidates:
        context = {
            "cartId": cart["session_id"],
            "cartItems": cart["cart_items"],
            "cartTotal": cart["cart_total"],
        }
        try:
            await service.track_event(
                EventName.CART_ABANDONED,
                context,
                session_id=cart["session_id"],
                customer_id=cart["customer_id"],
                trigger_automations=False,
            )
            instance = await service.trigger_workflow(CART_RECOVERY_AUTOMATION, cart["customer_id"], context)
        except Exception as e:
            logger.error("abandoned_cart_trigger_failed", customer_id=cart["customer_id"], error=str(e))
            continue
        if instance is not None:
            started += 1

    return started


async def detect_at_risk_vips(service: IntelligenceService, now: Optional[datetime] = None) -> int:
    """
    Lapsed high-value customers: spent >= 2000 or >= 4 orders, last order
    60-180 days ago. Longest-lapsed first, at most vip_limit per sweep.

    Returns:
        Number of workflows started
    """
    settings = service.settings
    now = coerce_utc(now) or service.clock()
    orders_by_customer = await service.orders.all_orders()

    candidates = []
    for customer_id, orders in orders_by_customer.items():
        if not orders:
            continue
        total_spent = sum(o.amount for o in orders)
        if total_spent < settings.vip_min_spent and len(orders) < settings.vip_min_orders:
            continue
        days_since = days_between(max(o.placed_at for o in orders), now)
        if settings.vip_window_min_days <= days_since <= settings.vip_window_max_days:
            candidates.append((customer_id, days_since, total_spent, len(orders)))

    candidates.sort(key=lambda c: (-c[1], c[0]))
    candidates = candidates[:settings.vip_limit]
    if candidates:
        logger.info("at_risk_vips_found", count=len(candidates))

    started = 0
    for customer_id, days_since, total_spent, order_count in candidates:
        context = {
            "daysSinceLastOrder": int(days_since),
            "totalSpent": total_spent,
            "orderCount": order_count,
        }
        try:
            instance = await service.trigger_workflow(VIP_WINBACK_AUTOMATION, customer_id, context)
        except Exception as e:
            logger.error("vip_winback_trigger_failed", customer_id=customer_id, error=str(e))
            continue
        if instance is not None:
            started += 1

    return started
