"""
Read-side views over the order collection.

The admin payment queue and fulfillment queue partition the same set of
orders by status; the customer view is unfiltered by status.
"""

from typing import Any, Dict, Optional

from order_status import PAYMENT_QUEUE_STATUSES, OrderStatus, available_actions, display

_PAYMENT_QUEUE_VALUES = sorted(s.value for s in PAYMENT_QUEUE_STATUSES)


def payment_queue_filter() -> Dict[str, Any]:
    return {"status": {"$in": _PAYMENT_QUEUE_VALUES}}


def fulfillment_queue_filter() -> Dict[str, Any]:
    return {"status": {"$nin": _PAYMENT_QUEUE_VALUES}}


def customer_orders_filter(user_id: str) -> Dict[str, Any]:
    return {"user_id": user_id}


def in_payment_queue(status: str) -> bool:
    return OrderStatus(status) in PAYMENT_QUEUE_STATUSES


def in_fulfillment_queue(status: str) -> bool:
    return not in_payment_queue(status)


def order_card(order: Dict[str, Any]) -> Dict[str, Any]:
    """Order as rendered in a list: status badge plus the admin actions it offers."""
    status = OrderStatus(order["status"])
    badge = display(status)
    return {
        **order,
        "status_label": badge.label,
        "status_variant": badge.variant,
        "item_count": sum(i.get("quantity", 0) for i in order.get("order_items", [])),
        "actions": [
            {"action": t.action, "status": t.target.value, "label": t.label}
            for t in available_actions(status)
        ],
    }


def tracking_view(order: Dict[str, Any]) -> Dict[str, Any]:
    """What the customer's live tracking panel shows for one order.

    The delivery person's position is stored whatever the status is, but it
    is only surfaced while the order is out for delivery.
    """
    status = OrderStatus(order["status"])
    destination: Optional[Dict[str, float]] = order.get("location")
    live = status is OrderStatus.OUT_FOR_DELIVERY and destination is not None
    return {
        "order_id": order.get("id"),
        "status": status.value,
        "status_label": display(status).label,
        "show_live_map": live,
        "destination": destination,
        "courier": order.get("delivery_location") if live else None,
    }
