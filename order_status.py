"""
Order lifecycle state machine.

The transition table below is the only place that decides which status an
order may move to next. Admin views, the transition endpoint and the
customer views all consult it instead of keeping their own copies.
"""

from enum import Enum
from typing import Dict, List, NamedTuple, Optional


class OrderStatus(str, Enum):
    AWAITING_PAYMENT_VERIFICATION = "awaiting_payment_verification"
    PAYMENT_REJECTED = "payment_rejected"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"


class CheckoutFlow(str, Enum):
    NO_PAYMENT = "no_payment"
    PAYMENT_PROOF = "payment_proof"


class Transition(NamedTuple):
    action: str
    target: OrderStatus
    label: str


class StatusDisplay(NamedTuple):
    label: str
    variant: str


class TransitionRejected(Exception):
    """Requested status is not one edge away from the current status."""

    def __init__(self, current: OrderStatus, target: OrderStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from '{current.value}' to '{target.value}'")


TRANSITIONS: Dict[OrderStatus, List[Transition]] = {
    OrderStatus.AWAITING_PAYMENT_VERIFICATION: [
        Transition("approve_payment", OrderStatus.PENDING, "Approve payment"),
        Transition("reject_payment", OrderStatus.PAYMENT_REJECTED, "Reject payment"),
    ],
    OrderStatus.PAYMENT_REJECTED: [],
    OrderStatus.PENDING: [
        Transition("approve", OrderStatus.APPROVED, "Approve"),
        Transition("reject", OrderStatus.REJECTED, "Reject"),
    ],
    OrderStatus.APPROVED: [
        Transition("dispatch", OrderStatus.OUT_FOR_DELIVERY, "Out for delivery"),
    ],
    OrderStatus.REJECTED: [],
    OrderStatus.OUT_FOR_DELIVERY: [
        Transition("mark_delivered", OrderStatus.DELIVERED, "Mark delivered"),
    ],
    OrderStatus.DELIVERED: [],
}

DISPLAY: Dict[OrderStatus, StatusDisplay] = {
    OrderStatus.AWAITING_PAYMENT_VERIFICATION: StatusDisplay("Awaiting Verification", "secondary"),
    OrderStatus.PAYMENT_REJECTED: StatusDisplay("Payment Rejected", "destructive"),
    OrderStatus.PENDING: StatusDisplay("Pending", "secondary"),
    OrderStatus.APPROVED: StatusDisplay("Approved", "default"),
    OrderStatus.REJECTED: StatusDisplay("Rejected", "destructive"),
    OrderStatus.OUT_FOR_DELIVERY: StatusDisplay("Out for Delivery", "default"),
    OrderStatus.DELIVERED: StatusDisplay("Delivered", "default"),
}

# Statuses shown in the payment verification queue; the fulfillment queue shows the rest.
PAYMENT_QUEUE_STATUSES = frozenset(
    {OrderStatus.AWAITING_PAYMENT_VERIFICATION, OrderStatus.PAYMENT_REJECTED}
)


def initial_status(flow: CheckoutFlow) -> OrderStatus:
    if CheckoutFlow(flow) is CheckoutFlow.PAYMENT_PROOF:
        return OrderStatus.AWAITING_PAYMENT_VERIFICATION
    return OrderStatus.PENDING


def available_actions(status: OrderStatus) -> List[Transition]:
    return list(TRANSITIONS[OrderStatus(status)])


def allowed_transitions(status: OrderStatus) -> List[OrderStatus]:
    return [t.target for t in TRANSITIONS[OrderStatus(status)]]


def is_terminal(status: OrderStatus) -> bool:
    return not TRANSITIONS[OrderStatus(status)]


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return OrderStatus(target) in allowed_transitions(current)


def check_transition(current: OrderStatus, target: OrderStatus) -> None:
    current, target = OrderStatus(current), OrderStatus(target)
    if not can_transition(current, target):
        raise TransitionRejected(current, target)


def find_action(status: OrderStatus, action: str) -> Optional[Transition]:
    for transition in TRANSITIONS[OrderStatus(status)]:
        if transition.action == action:
            return transition
    return None


def display(status: OrderStatus) -> StatusDisplay:
    return DISPLAY[OrderStatus(status)]
