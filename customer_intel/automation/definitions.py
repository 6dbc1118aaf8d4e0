"""
Workflow Definitions

Static configuration for the marketing automations. A definition is never
persisted; instances refer to it by automation_id.

Built-in automations:
- cart_recovery_email: three reminders over 4 days after an abandoned cart
- welcome_sequence: onboarding emails over the first week
- vip_winback_campaign: offer plus personal chat outreach for lapsed VIPs
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from customer_intel.core.records import MS_PER_DAY, MS_PER_HOUR
from customer_intel.segmentation.vip import VIPTier


class ActionKind(str, Enum):
    SEND_EMAIL = "send_email"
    SEND_CHAT = "send_chat"


class StopCondition(str, Enum):
    ORDER_PLACED = "order_placed"
    CART_UPDATED = "cart_updated"
    UNSUBSCRIBED = "unsubscribed"
    SESSION_STARTED = "session_started"


class StepCondition(str, Enum):
    HAS_NOT_PURCHASED = "has_not_purchased"  # no order in the last 24h


@dataclass(frozen=True)
class EntryConditions:
    min_cart_value: Optional[float] = None
    requires_email: bool = False
    vip_tiers: FrozenSet[VIPTier] = frozenset()
    min_days_since_last_order: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.min_cart_value is None
            and not self.requires_email
            and not self.vip_tiers
            and self.min_days_since_last_order is None
        )


@dataclass(frozen=True)
class WorkflowStep:
    delay_ms: int
    action: ActionKind
    template: str
    subject: Optional[str] = None
    message: Optional[str] = None
    variables: Tuple[str, ...] = ()
    condition: Optional[StepCondition] = None
    offer_discount: Optional[int] = None


@dataclass(frozen=True)
class WorkflowDefinition:
    automation_id: str
    name: str
    trigger_event: str
    steps: Tuple[WorkflowStep, ...]
    entry_conditions: EntryConditions = field(default_factory=EntryConditions)
    stop_conditions: Tuple[StopCondition, ...] = ()

    def step_at(self, index: int) -> Optional[WorkflowStep]:
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None


CART_RECOVERY_EMAIL = WorkflowDefinition(
    automation_id="cart_recovery_email",
    name="Cart Recovery Email Sequence",
    trigger_event="cart_abandoned",
    entry_conditions=EntryConditions(min_cart_value=100, requires_email=True),
    steps=(
        WorkflowStep(
            delay_ms=1 * MS_PER_HOUR,
            action=ActionKind.SEND_EMAIL,
            template="cart_reminder_1",
            subject="You left something behind! 🛒",
            variables=("firstName", "cartItems", "cartTotal", "cartLink"),
        ),
        WorkflowStep(
            delay_ms=24 * MS_PER_HOUR,
            action=ActionKind.SEND_EMAIL,
            template="cart_reminder_2",
            subject="Your cart is waiting - 10% off inside!",
            variables=("firstName", "cartItems", "cartTotal", "discountCode", "cartLink"),
            offer_discount=10,
        ),
        WorkflowStep(
            delay_ms=72 * MS_PER_HOUR,
            action=ActionKind.SEND_EMAIL,
            template="cart_reminder_final",
            subject="Last chance: Items selling fast!",
            variables=("firstName", "cartItems", "urgencyMessage", "cartLink"),
        ),
    ),
    stop_conditions=(StopCondition.ORDER_PLACED, StopCondition.CART_UPDATED, StopCondition.UNSUBSCRIBED),
)

WELCOME_SEQUENCE = WorkflowDefinition(
    automation_id="welcome_sequence",
    name="New User Welcome Sequence",
    trigger_event="user_registered",
    steps=(
        WorkflowStep(
            delay_ms=0,
            action=ActionKind.SEND_EMAIL,
            template="welcome_email",
            subject="Welcome to {{storeName}}! 🎉",
            variables=("firstName", "welcomeDiscount", "storeName"),
        ),
        WorkflowStep(
            delay_ms=1 * MS_PER_DAY,
            action=ActionKind.SEND_EMAIL,
            template="onboarding_browse",
            subject="Discover our top categories",
            variables=("firstName", "topCategories", "personalizedProducts"),
        ),
        WorkflowStep(
            delay_ms=3 * MS_PER_DAY,
            action=ActionKind.SEND_EMAIL,
            template="onboarding_first_purchase",
            subject="Your exclusive first-order discount! 15% off",
            variables=("firstName", "discountCode"),
            condition=StepCondition.HAS_NOT_PURCHASED,
            offer_discount=15,
        ),
        WorkflowStep(
            delay_ms=7 * MS_PER_DAY,
            action=ActionKind.SEND_EMAIL,
            template="onboarding_last_chance",
            subject="Don't miss out - your discount expires soon!",
            variables=("firstName", "discountCode", "expiryDate"),
            condition=StepCondition.HAS_NOT_PURCHASED,
        ),
    ),
    stop_conditions=(StopCondition.ORDER_PLACED, StopCondition.UNSUBSCRIBED),
)

VIP_WINBACK_CAMPAIGN = WorkflowDefinition(
    automation_id="vip_winback_campaign",
    name="VIP Winback Campaign",
    trigger_event="vip_at_risk",
    entry_conditions=EntryConditions(
        min_days_since_last_order=60,
        vip_tiers=frozenset({VIPTier.PLATINUM, VIPTier.GOLD}),
    ),
    steps=(
        WorkflowStep(
            delay_ms=0,
            action=ActionKind.SEND_EMAIL,
            template="vip_miss_you",
            subject="We miss you! Here's something special...",
            variables=("firstName", "lastPurchaseDate", "exclusiveOffer"),
            offer_discount=25,
        ),
        WorkflowStep(
            delay_ms=3 * MS_PER_DAY,
            action=ActionKind.SEND_CHAT,
            template="vip_personal_outreach",
            message=(
                "Hi {{firstName}}, this is {{agentName}} from {{storeName}}. We noticed you haven't "
                "shopped with us lately. Is there anything I can help with? Your exclusive 25% "
                "discount is waiting!"
            ),
            variables=("firstName", "agentName", "storeName"),
            condition=StepCondition.HAS_NOT_PURCHASED,
        ),
    ),
    stop_conditions=(StopCondition.ORDER_PLACED,),
)

BUILTIN_WORKFLOWS: Dict[str, WorkflowDefinition] = {
    definition.automation_id: definition
    for definition in (CART_RECOVERY_EMAIL, WELCOME_SEQUENCE, VIP_WINBACK_CAMPAIGN)
}


def definitions_for_trigger(
    trigger_event: str,
    definitions: Dict[str, WorkflowDefinition]
) -> List[WorkflowDefinition]:
    return [d for d in definitions.values() if d.trigger_event == trigger_event]
