"""
Inventory ledger: validate a cart against on_hand counts, then reserve.

Reservation is two-phase. Every line is checked before any product is
touched, so a cart that fails on its last line leaves stock unchanged.
Repeated product ids in one cart are cumulative: their quantities add up
against the same on_hand.
"""

from collections import OrderedDict
from typing import Dict, List, Sequence

from pydantic import BaseModel

from errors import InsufficientStock, ProductNotFound
from schemas import CartItem, Product


class ReservedLine(BaseModel):
    product_id: str
    quantity: int
    unit_price: float


class InventoryLedger:
    def __init__(self, products: Sequence[Product]):
        self._products: Dict[str, Product] = {p.id: p for p in products}

    def available(self, product_id: str) -> int:
        product = self._products.get(product_id)
        if product is None:
            raise ProductNotFound(product_id)
        return product.on_hand

    def validate(self, cart: Sequence[CartItem]) -> Dict[str, int]:
        """Check every line and return the total requested per product id."""
        requested: Dict[str, int] = OrderedDict()
        for item in cart:
            product = self._products.get(item.product_id)
            if product is None:
                raise ProductNotFound(item.product_id)
            wanted = requested.get(product.id, 0) + item.quantity
            if item.quantity < 1 or product.on_hand < wanted:
                raise InsufficientStock(product.id, available=product.on_hand, requested=wanted)
            requested[product.id] = wanted
        return requested

    def reserve(self, cart: Sequence[CartItem]) -> List[ReservedLine]:
        """Validate the whole cart, then decrement stock for every line.

        Prices are read here, at reservation time, and travel with the
        returned lines.
        """
        requested = self.validate(cart)
        for product_id, quantity in requested.items():
            self._products[product_id].on_hand -= quantity
        return [
            ReservedLine(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=self._products[item.product_id].price,
            )
            for item in cart
        ]
