"""
Checkout: turn a cart into a persisted order under the store lock.

Either the order and every stock decrement are committed in one write, or
the store is left exactly as it was and a typed rejection is raised.
"""

import math
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

import structlog
from pydantic import BaseModel

from database import JsonStore, generate_id
from errors import InsufficientStock, ProductNotFound, ValidationError
from inventory import InventoryLedger
from schemas import CartItem, CreditCard, Order, OrderItem
from security import Identity

logger = structlog.get_logger(__name__)

PAYMENT_PROCESSED = "processed"


class Settlement(BaseModel):
    message: str = "Order placed successfully"
    order: Order
    payment_status: str = PAYMENT_PROCESSED


def order_total(items: Sequence[OrderItem]) -> float:
    return round(sum(item.subtotal for item in items), 2)


def _process_payment(username: str, card: CreditCard, amount: float) -> str:
    """Simulated charge; no gateway is contacted."""
    logger.info("Processing payment", username=username, amount=f"{amount:.2f}", card_last4=card.last4)
    return PAYMENT_PROCESSED


def checkout(
    store: JsonStore,
    identity: Identity,
    cart: Sequence[CartItem],
    ship_address: str,
    card: CreditCard,
    clock: Optional[Callable[[], datetime]] = None,
) -> Settlement:
    if not cart:
        raise ValidationError("Cart is empty; at least one item is required")
    if not ship_address or not ship_address.strip():
        raise ValidationError("Shipping address is required")

    now = clock() if clock else datetime.now(timezone.utc)

    try:
        with store.transaction() as snapshot:
            lines = InventoryLedger(snapshot.products).reserve(cart)
            items = [
                OrderItem(product_id=line.product_id, quantity=line.quantity, unit_price_at_purchase=line.unit_price)
                for line in lines
            ]
            total = order_total(items)
            if not math.isfinite(total):
                raise ValidationError(
                    "Order total is not a finite amount",
                    product_ids=[line.product_id for line in lines],
                )
            order = Order(
                id=generate_id(),
                username=identity.username,
                order_date=now,
                ship_address=ship_address.strip(),
                items=items,
                total=total,
                status="confirmed",
            )
            snapshot.orders.append(order)
    except (ProductNotFound, InsufficientStock) as exc:
        logger.info("Checkout rejected", username=identity.username, reason=exc.code, **exc.context)
        raise

    payment_status = _process_payment(identity.username, card, order.total)
    logger.info(
        "Checkout accepted",
        username=identity.username,
        order_id=order.id,
        lines=len(items),
        total=order.total,
    )
    return Settlement(order=order, payment_status=payment_status)
