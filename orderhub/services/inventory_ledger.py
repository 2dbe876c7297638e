"""
Inventory ledger: non-negative stock counters per (tenant, menu item).

Every stock change is a single conditional UPDATE evaluated by the database, so
two transactions reserving the same item can never both pass a stale check.
Reservations and releases run on the caller's transaction connection; restock
opens its own.
"""
import logging
from typing import Any, Dict, List, Mapping
from uuid import UUID

from tortoise.expressions import F
from tortoise.transactions import in_transaction

from orderhub.models.menu import MenuItem
from orderhub.services.exceptions import InsufficientStock, InvalidQuantity, MenuItemNotFound

log = logging.getLogger(__name__)


def _require_positive(qty: Any) -> int:
    # bool is an int subclass; True is not a quantity
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise InvalidQuantity(f"Quantity must be a positive integer, got {qty!r}")
    return qty


def compute_stock_deltas(old: Mapping[UUID, int], new: Mapping[UUID, int]) -> Dict[UUID, int]:
    """
    Signed stock movement needed to go from the old item set to the new one.

    A positive delta consumes stock, a negative one returns it. Items whose
    quantity did not change are left out.
    """
    deltas = {}
    for item_id in set(old) | set(new):
        delta = new.get(item_id, 0) - old.get(item_id, 0)
        if delta:
            deltas[item_id] = delta
    return deltas


async def check_for_low_stock(tenant_id: UUID, item_id: UUID, conn: Any) -> None:
    """Logs an alert if the item's stock is at or below its threshold."""
    item = await MenuItem.get_or_none(id=item_id, tenant_id=tenant_id, using_db=conn)
    if item is not None and item.is_low_stock:
        log.warning(
            f"Low stock for item {item.name} ({item_id}) in tenant {tenant_id}: "
            f"{item.stock_quantity} left, threshold {item.low_stock_threshold}"
        )


async def reserve(tenant_id: UUID, item_id: UUID, qty: int, conn: Any) -> None:
    """
    Takes `qty` units out of stock, or raises without touching the row.

    The check and the decrement are one statement:
    UPDATE menu_items SET stock_quantity = stock_quantity - qty
    WHERE id = ? AND tenant_id = ? AND stock_quantity >= qty
    """
    _require_positive(qty)
    updated = await MenuItem.filter(
        id=item_id, tenant_id=tenant_id, stock_quantity__gte=qty
    ).using_db(conn).update(stock_quantity=F("stock_quantity") - qty)

    if not updated:
        item = await MenuItem.get_or_none(id=item_id, tenant_id=tenant_id, using_db=conn)
        if item is None:
            raise MenuItemNotFound(f"Menu item with ID {item_id} not found")
        raise InsufficientStock(item.name, item.stock_quantity)

    await check_for_low_stock(tenant_id, item_id, conn)


async def release(tenant_id: UUID, item_id: UUID, qty: int, conn: Any) -> None:
    """Returns `qty` units to stock. Items removed from the menu are skipped."""
    _require_positive(qty)
    updated = await MenuItem.filter(id=item_id, tenant_id=tenant_id).using_db(conn).update(
        stock_quantity=F("stock_quantity") + qty
    )
    if not updated:
        log.warning(f"Stock release skipped: menu item {item_id} no longer exists in tenant {tenant_id}")


async def restock(tenant_id: UUID, item_id: UUID, qty: int) -> MenuItem:
    """Operator restock. Adds a positive quantity to the current stock."""
    _require_positive(qty)
    async with in_transaction() as conn:
        updated = await MenuItem.filter(id=item_id, tenant_id=tenant_id).using_db(conn).update(
            stock_quantity=F("stock_quantity") + qty
        )
        if not updated:
            raise MenuItemNotFound("Menu item not found or not authorized")
        item = await MenuItem.get(id=item_id, using_db=conn)

    log.info(f"Menu item {item_id} restocked by {qty} in tenant {tenant_id}, now {item.stock_quantity}")
    return item


async def apply_deltas(
    tenant_id: UUID,
    deltas: Mapping[UUID, int],
    menu: Mapping[UUID, MenuItem],
    conn: Any,
) -> None:
    """
    Applies signed stock deltas for one order mutation.

    Every positive delta is checked against the stock read in this transaction
    before any row is written, so the common rejection costs no writes. The
    conditional decrement in `reserve` still guards against a concurrent
    reservation landing between the check and the write.
    """
    for item_id, delta in deltas.items():
        if delta <= 0:
            continue
        item = menu.get(item_id)
        if item is None:
            raise MenuItemNotFound(f"Menu item with ID {item_id} not found")
        if item.stock_quantity < delta:
            raise InsufficientStock(item.name, item.stock_quantity)

    # Fixed row order keeps concurrent transactions from locking in opposite orders
    for item_id in sorted(deltas, key=str):
        delta = deltas[item_id]
        if delta > 0:
            await reserve(tenant_id, item_id, delta, conn)
        else:
            await release(tenant_id, item_id, -delta, conn)


async def get_stock(tenant_id: UUID, item_id: UUID) -> MenuItem:
    item = await MenuItem.get_or_none(id=item_id, tenant_id=tenant_id)
    if item is None:
        raise MenuItemNotFound(f"Menu item with ID {item_id} not found")
    return item


async def low_stock_items(tenant_id: UUID) -> List[MenuItem]:
    """Menu items at or below their low stock threshold."""
    items = await MenuItem.filter(tenant_id=tenant_id).order_by("stock_quantity")
    return [item for item in items if item.is_low_stock]
