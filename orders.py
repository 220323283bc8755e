"""
Order queries and admin management.

Reads go straight to the latest committed snapshot; updates and deletes
run inside the store transaction like every other write.
"""

from typing import List, Optional

import structlog

from database import JsonStore
from errors import Forbidden, NotFound, ValidationError
from schemas import Order, Role
from security import Identity, require_role

logger = structlog.get_logger(__name__)

# Fields an admin may patch. Items, total, owner and date stay as placed.
PATCHABLE_FIELDS = ("status", "ship_address")


def list_orders(store: JsonStore, identity: Identity) -> List[Order]:
    orders = store.load_snapshot().orders
    if identity.is_admin:
        return orders
    return [o for o in orders if o.username == identity.username]


def get_order(store: JsonStore, identity: Identity, order_id: str) -> Order:
    order = store.load_snapshot().find_order(order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found", order_id=order_id)
    if not identity.is_admin and order.username != identity.username:
        raise Forbidden("Access denied", order_id=order_id, username=identity.username)
    return order


def update_order(store: JsonStore, identity: Identity, order_id: str, changes: dict) -> Order:
    require_role(identity, Role.admin)
    changes = {k: v for k, v in changes.items() if v is not None}
    unknown = sorted(set(changes) - set(PATCHABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Order fields cannot be changed: {', '.join(unknown)}", fields=unknown)
    for field in PATCHABLE_FIELDS:
        if field in changes and not str(changes[field]).strip():
            raise ValidationError(f"Order {field} cannot be blank", field=field)

    with store.transaction() as snapshot:
        index = _index_of(snapshot.orders, order_id)
        updated = snapshot.orders[index].model_copy(update={k: str(v).strip() for k, v in changes.items()})
        snapshot.orders[index] = updated

    logger.info("Order updated", order_id=order_id, by=identity.username, fields=sorted(changes))
    return updated


def delete_order(store: JsonStore, identity: Identity, order_id: str) -> None:
    require_role(identity, Role.admin)
    with store.transaction() as snapshot:
        index = _index_of(snapshot.orders, order_id)
        del snapshot.orders[index]
    logger.info("Order deleted", order_id=order_id, by=identity.username)


def _index_of(orders: List[Order], order_id: str) -> int:
    index: Optional[int] = next((i for i, o in enumerate(orders) if o.id == order_id), None)
    if index is None:
        raise NotFound(f"Order {order_id} not found", order_id=order_id)
    return index
