"""
Checkout: turn a customer's cart into an order document.

Everything is validated before the first network call. If the screenshot
upload or the order insert fails, the cart is left untouched so the
customer can submit again.
"""

from dataclasses import dataclass
from typing import Dict, Optional

import structlog
from pymongo.database import Database
from pymongo.errors import PyMongoError

from cart import Cart
from database import ORDERS, create_document, utcnow
from order_status import CheckoutFlow, initial_status
from schemas import Location, Order, OrderItem
from storage import ACCEPTED_SCREENSHOT_TYPES, ImageRejected, StorageError, screenshot_path, validate_image

logger = structlog.get_logger()


class CheckoutInvalid(ValueError):
    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))


class CheckoutFailed(Exception):
    """Upload or write failed; nothing was cleared."""


@dataclass
class CustomerDetails:
    name: str
    phone: str
    address: str
    location: Optional[Location] = None


@dataclass
class Screenshot:
    data: bytes
    content_type: Optional[str]
    filename: Optional[str]


def validate_checkout(
    details: CustomerDetails,
    cart: Cart,
    flow: CheckoutFlow,
    screenshot: Optional[Screenshot],
    max_image_bytes: int,
) -> None:
    errors: Dict[str, str] = {}
    if not (details.name or "").strip():
        errors["customer_name"] = "Name is required"
    if not (details.phone or "").strip():
        errors["customer_phone"] = "Phone number is required"
    if not (details.address or "").strip():
        errors["customer_address"] = "Address is required"
    if cart.is_empty():
        errors["cart"] = "Cart is empty"

    if CheckoutFlow(flow) is CheckoutFlow.PAYMENT_PROOF or screenshot is not None:
        try:
            validate_image(
                screenshot.data if screenshot else None,
                screenshot.content_type if screenshot else None,
                max_image_bytes,
                accepted=ACCEPTED_SCREENSHOT_TYPES,
                field="payment_screenshot",
            )
        except ImageRejected as e:
            errors[e.field] = e.message

    if errors:
        raise CheckoutInvalid(errors)


def build_order(
    user_id: str,
    details: CustomerDetails,
    cart: Cart,
    flow: CheckoutFlow,
    screenshot_url: Optional[str] = None,
) -> Order:
    items = [
        OrderItem(product_id=i.product_id, name=i.name, price=i.price, quantity=i.quantity)
        for i in cart.items
    ]
    # total is fixed here and never recomputed
    total = round(sum(i.price * i.quantity for i in items), 2)
    return Order(
        user_id=user_id,
        customer_name=details.name.strip(),
        customer_phone=details.phone.strip(),
        customer_address=details.address.strip(),
        location=details.location,
        order_date=utcnow(),
        order_items=items,
        total_price=total,
        payment_screenshot_url=screenshot_url,
        status=initial_status(flow),
    )


def place_order(
    database: Database,
    storage,
    cart: Cart,
    user_id: str,
    details: CustomerDetails,
    flow: CheckoutFlow,
    screenshot: Optional[Screenshot] = None,
    max_image_bytes: int = 5 * 1024 * 1024,
) -> dict:
    flow = CheckoutFlow(flow)
    validate_checkout(details, cart, flow, screenshot, max_image_bytes)

    try:
        screenshot_url = None
        if screenshot is not None:
            screenshot_url = storage.put(
                screenshot_path(user_id, screenshot.filename),
                screenshot.data,
                screenshot.content_type,
            )
        order = build_order(user_id, details, cart, flow, screenshot_url)
        order_id = create_document(database, ORDERS, order)
    except (StorageError, PyMongoError) as e:
        logger.error("checkout_failed", user_id=user_id, error=str(e))
        raise CheckoutFailed("Could not place the order. Please try again.") from e

    cart.clear()
    logger.info("order_placed", order_id=order_id, user_id=user_id, status=order.status, total_price=order.total_price)
    return {"id": order_id, **order.model_dump()}
