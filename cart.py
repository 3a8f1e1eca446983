"""
Cart store: per-customer in-memory carts.

Carts are never persisted. They live only as long as the process and are
turned into an order's line items at checkout.
"""

import threading
from dataclasses import asdict, dataclass
from typing import Dict, List


@dataclass
class CartItem:
    product_id: str
    name: str
    price: float
    image_url: str
    quantity: int

    @property
    def line_total(self) -> float:
        return self.price * self.quantity


class Cart:
    def __init__(self) -> None:
        self._items: Dict[str, CartItem] = {}

    @property
    def items(self) -> List[CartItem]:
        return list(self._items.values())

    def add(self, product: dict, quantity: int = 1) -> CartItem:
        """Add a product snapshot, or bump the quantity if it is already in the cart."""
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        product_id = str(product["id"])
        item = self._items.get(product_id)
        if item is None:
            item = CartItem(
                product_id=product_id,
                name=product["name"],
                price=float(product["price"]),
                image_url=product.get("image_url", ""),
                quantity=quantity,
            )
            self._items[product_id] = item
        else:
            item.quantity += quantity
        return item

    def update_quantity(self, product_id: str, quantity: int) -> None:
        if product_id not in self._items:
            raise KeyError(product_id)
        if quantity <= 0:
            del self._items[product_id]
        else:
            self._items[product_id].quantity = quantity

    def remove(self, product_id: str) -> None:
        self._items.pop(product_id, None)

    def clear(self) -> None:
        self._items.clear()

    @property
    def total_items(self) -> int:
        return sum(i.quantity for i in self._items.values())

    @property
    def total_price(self) -> float:
        return round(sum(i.line_total for i in self._items.values()), 2)

    def is_empty(self) -> bool:
        return not self._items

    def snapshot(self) -> dict:
        return {
            "items": [asdict(i) for i in self._items.values()],
            "total_items": self.total_items,
            "total_price": self.total_price,
        }


class CartStore:
    """One cart per customer identity, guarded by a lock for the worker threads."""

    def __init__(self) -> None:
        self._carts: Dict[str, Cart] = {}
        self._lock = threading.RLock()

    def get(self, user_id: str) -> Cart:
        with self._lock:
            cart = self._carts.get(user_id)
            if cart is None:
                cart = Cart()
                self._carts[user_id] = cart
            return cart

    def discard(self, user_id: str) -> None:
        with self._lock:
            self._carts.pop(user_id, None)
