"""
Marketing Automation

Workflow definitions, condition evaluation, template variables,
notification dispatch and the workflow engine.

Usage:
    from customer_intel.automation import WorkflowEngine

    engine = WorkflowEngine(store, orders, customers, events, dispatcher)
    await engine.trigger_workflow("welcome_sequence", customer_id)
"""

from customer_intel.automation.conditions import ConditionEvaluator
from customer_intel.automation.definitions import (
    BUILTIN_WORKFLOWS,
    ActionKind,
    EntryConditions,
    StepCondition,
    StopCondition,
    WorkflowDefinition,
    WorkflowStep,
)
from customer_intel.automation.engine import (
    RetryPolicy,
    WorkflowEngine,
    WorkflowInstance,
    WorkflowState,
    instance_key,
    job_member,
    parse_job_member,
)
from customer_intel.automation.notifications import (
    DispatchResult,
    HttpNotificationDispatcher,
    LoggingNotificationDispatcher,
    NotificationChannel,
    NotificationDispatcher,
    NotificationMessage,
    create_dispatcher,
)
from customer_intel.automation.variables import ALLOWED_VARIABLES, VariableResolver, interpolate

__all__ = [
    "ConditionEvaluator",
    "BUILTIN_WORKFLOWS",
    "ActionKind",
    "EntryConditions",
    "StepCondition",
    "StopCondition",
    "WorkflowDefinition",
    "WorkflowStep",
    "RetryPolicy",
    "WorkflowEngine",
    "WorkflowInstance",
    "WorkflowState",
    "instance_key",
    "job_member",
    "parse_job_member",
    "DispatchResult",
    "HttpNotificationDispatcher",
    "LoggingNotificationDispatcher",
    "NotificationChannel",
    "NotificationDispatcher",
    "NotificationMessage",
    "create_dispatcher",
    "ALLOWED_VARIABLES",
    "VariableResolver",
    "interpolate",
]
