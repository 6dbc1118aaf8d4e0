"""
Workflow Automation Engine

Runs multi-step, delay-based marketing automations per customer.

Instance lifecycle:
    PENDING (step scheduled) -> EXECUTING (step running)
        -> ADVANCING (next step chained or scheduled)
        -> STOPPED (stop condition matched, instance deleted)
        -> COMPLETED (sequence exhausted, instance deleted)

Guarantees:
- At most one live instance per (automation_id, customer_id): creation is an
  atomic set-if-absent on `automation:{automation_id}:{customer_id}`
- current_step only ever increases
- Zero-delay steps are chained in a loop bounded by the step count
- Delayed steps go to the time-ordered job queue scored by execute_at (ms)

Stop conditions are checked lazily by the scheduler right before a due step
runs, so one extra step can fire if the stopping event lands between the
check and the dispatch.
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from customer_intel.automation.conditions import ConditionEvaluator
from customer_intel.automation.definitions import (
    BUILTIN_WORKFLOWS,
    ActionKind,
    WorkflowDefinition,
    WorkflowStep,
    definitions_for_trigger,
)
from customer_intel.automation.notifications import (
    DispatchResult,
    NotificationChannel,
    NotificationDispatcher,
    NotificationMessage,
)
from customer_intel.automation.variables import VariableResolver, interpolate
from customer_intel.cache.redis_store import DurableStore
from customer_intel.core.config import Settings, get_settings
from customer_intel.core.exceptions import DurableStoreError, WorkflowNotFoundError
from customer_intel.core.records import to_ms, utcnow
from customer_intel.middleware.logging_config import get_logger, log_business_event
from customer_intel.repositories.customers import CustomerDirectory
from customer_intel.repositories.events import EventHistory
from customer_intel.repositories.orders import OrderHistory
from customer_intel.tracking.events import Event, EventName

logger = get_logger(__name__)


class WorkflowState(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    ADVANCING = "advancing"
    STOPPED = "stopped"
    COMPLETED = "completed"


def instance_key(automation_id: str, customer_id: str) -> str:
    return f"automation:{automation_id}:{customer_id}"


@dataclass
class WorkflowInstance:
    """One customer's progress through an automation (durable)."""
    automation_id: str
    customer_id: str
    started_at: int  # epoch ms
    current_step: int = 0
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return instance_key(self.automation_id, self.customer_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "automation_id": self.automation_id,
            "customer_id": self.customer_id,
            "started_at": self.started_at,
            "current_step": self.current_step,
            "context": self.context,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowInstance":
        return cls(
            automation_id=data["automation_id"],
            customer_id=str(data["customer_id"]),
            started_at=int(data["started_at"]),
            current_step=int(data.get("current_step", 0)),
            context=dict(data.get("context") or {}),
        )


def job_member(instance: WorkflowInstance) -> str:
    """Serialized ScheduledJob payload {workflow, automation_id}."""
    return json.dumps(
        {"workflow": instance.to_dict(), "automation_id": instance.automation_id},
        sort_keys=True,
    )


def parse_job_member(member: str) -> WorkflowInstance:
    data = json.loads(member)
    return WorkflowInstance.from_dict(data["workflow"])


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff for notification dispatch."""
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0

    async def run(
        self,
        send: Callable[[], Awaitable[DispatchResult]],
        channel: NotificationChannel,
        recipient: str,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ) -> DispatchResult:
        """
        Call send() until it succeeds or attempts run out.

        Exceptions from send() count as failed attempts. A non-retryable
        failure is returned at once.
        """
        delay = self.backoff_seconds
        result = DispatchResult(success=False, channel=channel, recipient=recipient, error="not attempted")

        for attempt in range(1, max(1, self.max_attempts) + 1):
            try:
                result = await send()
            except Exception as e:
                result = DispatchResult(success=False, channel=channel, recipient=recipient, error=str(e))

            if result.success or not result.retryable:
                return result

            if attempt < self.max_attempts:
                logger.warning(
                    "dispatch_retry",
                    channel=channel.value,
                    attempt=attempt,
                    delay_seconds=delay,
                    error=result.error,
                )
                await sleep(delay)
                delay *= self.backoff_multiplier

        return result


class WorkflowEngine:
    """
    Owns workflow instances and the scheduled job queue.

    Usage:
        engine = WorkflowEngine(store, orders, customers, events, dispatcher)
        await engine.trigger_workflow("cart_recovery_email", "42", {"cartTotal": 180.0})
    """

    def __init__(
        self,
        store: DurableStore,
        orders: OrderHistory,
        customers: CustomerDirectory,
        events: EventHistory,
        dispatcher: NotificationDispatcher,
        settings: Optional[Settings] = None,
        definitions: Optional[Dict[str, WorkflowDefinition]] = None,
        clock: Callable[[], datetime] = utcnow,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.customers = customers
        self.events = events
        self.dispatcher = dispatcher
        self.definitions = dict(definitions if definitions is not None else BUILTIN_WORKFLOWS)
        self.clock = clock
        self.sleep = sleep
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=self.settings.dispatch_max_attempts,
            backoff_seconds=self.settings.dispatch_backoff_seconds,
            backoff_multiplier=self.settings.dispatch_backoff_multiplier,
        )
        self.conditions = ConditionEvaluator(orders, customers, events, clock)
        self.variables = VariableResolver(orders, events, self.settings, clock)

    @property
    def queue_key(self) -> str:
        return self.settings.job_queue_key

    def get_definition(self, automation_id: str) -> WorkflowDefinition:
        definition = self.definitions.get(automation_id)
        if definition is None:
            raise WorkflowNotFoundError(automation_id)
        return definition

    # ==================== Entry points ====================

    async def trigger_workflow(
        self,
        automation_id: str,
        customer_id: str,
        context: Optional[Dict[str, Any]] = None
    ) -> Optional[WorkflowInstance]:
        """
        Start an automation for a customer.

        No-op when the automation is unknown, an instance is already live,
        entry conditions fail, or the store cannot be reached. An instance
        whose first step raises is removed again.

        Returns:
            The new instance, or None if nothing was started
        """
        context = dict(context or {})
        try:
            definition = self.get_definition(automation_id)
        except WorkflowNotFoundError as e:
            logger.warning("workflow_not_found", automation_id=automation_id, error=e.message)
            return None

        key = instance_key(automation_id, customer_id)
        try:
            if await self.store.exists(key):
                logger.info("workflow_already_running", automation_id=automation_id, customer_id=customer_id)
                return None
        except DurableStoreError as e:
            logger.error("workflow_trigger_failed", automation_id=automation_id, customer_id=customer_id, error=e.message)
            return None

        if not await self.conditions.entry_conditions_met(definition, customer_id, context):
            logger.info("workflow_entry_conditions_not_met", automation_id=automation_id, customer_id=customer_id)
            return None

        instance = WorkflowInstance(
            automation_id=automation_id,
            customer_id=customer_id,
            started_at=to_ms(self.clock()),
            current_step=0,
            context=context,
        )
        try:
            created = await self.store.set_if_absent(key, instance.to_dict(), ttl=self.settings.workflow_ttl_seconds)
        except DurableStoreError as e:
            logger.error("workflow_trigger_failed", automation_id=automation_id, customer_id=customer_id, error=e.message)
            return None
        if not created:
            logger.info("workflow_already_running", automation_id=automation_id, customer_id=customer_id)
            return None

        log_business_event("workflow_started", automation_id=automation_id, customer_id=customer_id)
        try:
            await self.execute_step(instance, definition)
        except Exception as e:
            await self.fail_workflow(instance, e)
            return None
        return instance

    async def handle_event(
        self,
        event_name: str,
        customer_id: str,
        context: Optional[Dict[str, Any]] = None
    ) -> List[WorkflowInstance]:
        """Trigger every automation whose trigger_event matches. Never raises."""
        started: List[WorkflowInstance] = []
        for definition in definitions_for_trigger(event_name, self.definitions):
            try:
                instance = await self.trigger_workflow(definition.automation_id, customer_id, context)
            except Exception as e:
                logger.error(
                    "workflow_event_handling_failed",
                    automation_id=definition.automation_id,
                    customer_id=customer_id,
                    event_name=event_name,
                    error=str(e),
                )
                continue
            if instance is not None:
                started.append(instance)
        return started

    async def load_instance(self, automation_id: str, customer_id: str) -> Optional[WorkflowInstance]:
        data = await self.store.get(instance_key(automation_id, customer_id))
        return WorkflowInstance.from_dict(data) if data else None

    # ==================== Step execution ====================

    async def execute_step(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        due: bool = False
    ) -> WorkflowState:
        """
        Advance an instance as far as it can go right now.

        Args:
            instance: Live instance (mutated in place)
            definition: Its workflow definition
            due: The current step's delay has already elapsed (scheduler resume)

        Returns:
            ADVANCING when a later step was scheduled, otherwise COMPLETED
        """
        for _ in range(len(definition.steps) + 1):
            step = definition.step_at(instance.current_step)
            if step is None:
                await self.complete_workflow(instance)
                return WorkflowState.COMPLETED

            if not await self.conditions.step_condition_met(step.condition, instance.customer_id):
                logger.info(
                    "workflow_step_skipped",
                    automation_id=instance.automation_id,
                    customer_id=instance.customer_id,
                    step=instance.current_step,
                    condition=step.condition.value if step.condition else None,
                )
                await self._advance(instance)
                due = False
                continue

            if step.delay_ms > 0 and not due:
                await self.schedule_step(instance, step.delay_ms)
                return WorkflowState.ADVANCING

            due = False
            logger.debug(
                "workflow_step_executing",
                automation_id=instance.automation_id,
                customer_id=instance.customer_id,
                step=instance.current_step,
            )
            await self.execute_action(instance, step)
            await self._advance(instance)

        # Loop bound reached
        await self.complete_workflow(instance)
        return WorkflowState.COMPLETED

    async def resume(self, instance: WorkflowInstance, definition: WorkflowDefinition) -> WorkflowState:
        """Run a due step (condition re-checked) and continue the sequence."""
        return await self.execute_step(instance, definition, due=True)

    async def _advance(self, instance: WorkflowInstance):
        instance.current_step += 1
        await self.store.set(instance.key, instance.to_dict(), ttl=self.settings.workflow_ttl_seconds)

    async def schedule_step(self, instance: WorkflowInstance, delay_ms: int) -> int:
        """Persist the instance and enqueue its current step at now + delay."""
        execute_at = to_ms(self.clock()) + delay_ms
        await self.store.set(instance.key, instance.to_dict(), ttl=self.settings.workflow_ttl_seconds)
        await self.store.schedule(self.queue_key, job_member(instance), execute_at)
        logger.info(
            "workflow_step_scheduled",
            automation_id=instance.automation_id,
            customer_id=instance.customer_id,
            step=instance.current_step,
            execute_at=execute_at,
        )
        return execute_at

    async def check_stop_conditions(self, instance: WorkflowInstance, definition: WorkflowDefinition) -> bool:
        condition = await self.conditions.first_stop_condition(
            definition, instance.customer_id, instance.started_at
        )
        if condition is not None:
            logger.info(
                "workflow_stop_condition_matched",
                automation_id=instance.automation_id,
                customer_id=instance.customer_id,
                condition=condition.value,
            )
            return True
        return False

    async def stop_workflow(self, instance: WorkflowInstance, reason: str = "stop_condition") -> None:
        await self.store.delete(instance.key)
        log_business_event(
            "workflow_stopped",
            automation_id=instance.automation_id,
            customer_id=instance.customer_id,
            step=instance.current_step,
            reason=reason,
        )

    async def fail_workflow(self, instance: WorkflowInstance, error: Exception) -> None:
        """Drop an instance whose step raised so the pair can be triggered again."""
        logger.error(
            "workflow_step_failed",
            automation_id=instance.automation_id,
            customer_id=instance.customer_id,
            step=instance.current_step,
            error=str(error),
            exc_info=True,
        )
        try:
            await self.stop_workflow(instance, reason="step_failed")
        except DurableStoreError as e:
            logger.error(
                "workflow_cleanup_failed",
                automation_id=instance.automation_id,
                customer_id=instance.customer_id,
                error=e.message,
            )

    async def complete_workflow(self, instance: WorkflowInstance) -> None:
        await self.store.delete(instance.key)
        log_business_event(
            "workflow_completed",
            automation_id=instance.automation_id,
            customer_id=instance.customer_id,
        )

    # ==================== Actions ====================

    async def execute_action(self, instance: WorkflowInstance, step: WorkflowStep) -> bool:
        """
        Render and dispatch one step.

        Dispatch failures are retried under the retry policy; a final failure
        is logged and the workflow still advances past the step.

        Returns:
            True if the message was delivered
        """
        profile = await self.customers.get_profile(instance.customer_id)
        if profile is None:
            logger.warning(
                "workflow_action_skipped",
                automation_id=instance.automation_id,
                customer_id=instance.customer_id,
                step=instance.current_step,
                reason="customer_not_found",
            )
            return False

        variables = await self.variables.resolve(
            step.variables,
            profile,
            instance.context,
            instance.automation_id,
            instance.current_step,
            step.offer_discount,
        )

        if step.action == ActionKind.SEND_CHAT:
            channel = NotificationChannel.CHAT
            recipient = profile.phone
            body = interpolate(step.message, variables)
        else:
            channel = NotificationChannel.EMAIL
            recipient = profile.email
            body = interpolate(step.message or step.subject, variables)

        if not recipient:
            logger.warning(
                "workflow_action_skipped",
                automation_id=instance.automation_id,
                customer_id=instance.customer_id,
                step=instance.current_step,
                reason=f"no_{channel.value}_recipient",
            )
            return False

        message = NotificationMessage(
            body=body,
            subject=interpolate(step.subject, variables) if step.subject else None,
            template=step.template,
            data=variables,
        )

        result = await self.retry_policy.run(
            lambda: self.dispatcher.send(channel, recipient, message),
            channel,
            recipient,
            sleep=self.sleep,
        )
        if not result.success:
            logger.error(
                "workflow_action_failed",
                automation_id=instance.automation_id,
                customer_id=instance.customer_id,
                step=instance.current_step,
                action=step.action.value,
                attempts=self.retry_policy.max_attempts if result.retryable else 1,
                error=result.error,
            )
            return False

        await self._log_action(instance, step)
        return True

    async def _log_action(self, instance: WorkflowInstance, step: WorkflowStep):
        event = Event(
            name=EventName.AUTOMATION_ACTION_EXECUTED,
            timestamp=self.clock(),
            user_id=instance.customer_id,
            payload={
                "automationId": instance.automation_id,
                "step": instance.current_step,
                "action": step.action.value,
                "template": step.template,
            },
        )
        try:
            await self.events.append(event)
        except Exception as e:
            logger.warning(
                "workflow_action_log_failed",
                automation_id=instance.automation_id,
                customer_id=instance.customer_id,
                error=str(e),
            )
