import logging
from decimal import Decimal
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Type
from uuid import UUID

from tortoise import timezone
from tortoise.expressions import Q
from tortoise.transactions import in_transaction

from orderhub.models.menu import MenuItem
from orderhub.models.order import Order, OrderItem, OrderStatus
from orderhub.models.tenant import Tenant
from orderhub.schemas.history import AuditEntry, CanceledDetails, CreatedDetails, UpdatedDetails
from orderhub.schemas.order import OrderLine, OrderSnapshot, PushKind
from orderhub.services import audit_log, inventory_ledger, rider_policy
from orderhub.services.actors import Actor, Customer
from orderhub.services.exceptions import (
    EmptyOrder,
    InvalidItem,
    InvalidQuantity,
    InvalidStatus,
    MenuItemNotFound,
    MissingCustomerDetails,
    MissingLocation,
    OrderLocked,
    OrderNotFound,
    PermissionDenied,
    RiderRequired,
    TenantNotFound,
)
from orderhub.services.notifications import NotificationFanout
from orderhub.services.order_state import (
    RIDER_STATES,
    check_initial_status,
    check_transition,
    ensure_mutable,
    stamp_status_entry,
)

log = logging.getLogger(__name__)

SORTABLE_FIELDS = {"order_id": "id", "total_price": "total_price", "created_at": "created_at"}


class PricedLine(NamedTuple):
    item_id: UUID
    name: str
    quantity: int
    price: Decimal


# ----------- Input validation (no database access) -----------

def parse_status(value: Any) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidStatus(
            "Invalid status. Must be pending, preparing, completed, enroute, delivered, or canceled"
        )


def normalize_items(items: Sequence[Mapping[str, Any]]) -> Dict[UUID, int]:
    """
    Validates the requested items and folds them into {item_id: quantity}.

    Repeated item ids are merged by adding their quantities.
    """
    if not isinstance(items, (list, tuple)) or not items:
        raise EmptyOrder("Items must be a non-empty array")

    quantities: Dict[UUID, int] = {}
    for item in items:
        raw_id = item.get("item_id") if isinstance(item, Mapping) else None
        if raw_id is None:
            raise InvalidItem("Each item must have a valid item_id")
        try:
            item_id = raw_id if isinstance(raw_id, UUID) else UUID(str(raw_id))
        except ValueError:
            raise InvalidItem("Each item must have a valid item_id")

        qty = item.get("quantity")
        if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
            raise InvalidQuantity("Each item must have a positive integer quantity")
        quantities[item_id] = quantities.get(item_id, 0) + qty
    return quantities


def _check_delivery(is_delivery: bool, customer_location: Optional[str]) -> None:
    if is_delivery and not customer_location:
        raise MissingLocation("Customer location is required for delivery orders")


def _check_customer_details(customer_name: Any, customer_phone: Any) -> None:
    if not isinstance(customer_name, str) or not customer_name.strip() \
            or not isinstance(customer_phone, str) or not customer_phone.strip():
        raise MissingCustomerDetails("Customer name and phone are required and must be strings")


# ----------- Helpers used inside the transaction -----------

async def _ensure_tenant(tenant_id: UUID, conn: Any) -> None:
    if not await Tenant.filter(id=tenant_id).using_db(conn).exists():
        raise TenantNotFound("Tenant not found")


async def _lock_order(tenant_id: UUID, order_id: UUID, conn: Any) -> Order:
    order = await Order.filter(id=order_id, tenant_id=tenant_id).select_for_update().using_db(conn).first()
    if order is None:
        raise OrderNotFound("Order not found")
    return order


async def _resolve_menu(tenant_id: UUID, item_ids: Sequence[UUID], conn: Any) -> Dict[UUID, MenuItem]:
    """Current menu records for the requested items; prices and names come from here only."""
    rows = await MenuItem.filter(tenant_id=tenant_id, id__in=list(item_ids)).using_db(conn)
    menu = {row.id: row for row in rows}
    for item_id in item_ids:
        if item_id not in menu:
            raise MenuItemNotFound(f"Menu item with ID {item_id} not found")
    return menu


def _price_lines(quantities: Mapping[UUID, int], menu: Mapping[UUID, MenuItem]) -> Tuple[List[PricedLine], Decimal]:
    lines = [
        PricedLine(item_id, menu[item_id].name, qty, menu[item_id].price)
        for item_id, qty in quantities.items()
    ]
    total = sum((line.price * line.quantity for line in lines), Decimal("0"))
    return lines, total


async def _replace_items(
    order: Order,
    existing: Sequence[OrderItem],
    lines: Sequence[PricedLine],
    conn: Any,
) -> List[OrderItem]:
    """
    Brings the stored item rows in line with `lines`: changed rows are updated
    (quantity and refreshed menu price/name), new ones inserted, missing ones
    deleted.
    """
    by_item = {row.item_id: row for row in existing}
    rows = []
    for line in lines:
        row = by_item.pop(line.item_id, None)
        if row is None:
            row = await OrderItem.create(
                order=order,
                tenant_id=order.tenant_id,
                item_id=line.item_id,
                quantity=line.quantity,
                price=line.price,
                name=line.name,
                using_db=conn,
            )
        elif (row.quantity, row.price, row.name) != (line.quantity, line.price, line.name):
            row.quantity = line.quantity
            row.price = line.price
            row.name = line.name
            await row.save(using_db=conn, update_fields=["quantity", "price", "name"])
        rows.append(row)

    if by_item:
        await OrderItem.filter(id__in=[row.id for row in by_item.values()]).using_db(conn).delete()
    return rows


def build_snapshot(order: Order, items: Sequence[OrderItem]) -> OrderSnapshot:
    return OrderSnapshot(
        order_id=order.id,
        items=[
            OrderLine(item_id=row.item_id, name=row.name, quantity=row.quantity, price=float(row.price))
            for row in items
        ],
        total_price=float(order.total_price),
        status=order.status,
        customer_name=order.customer_name,
        customer_phone=order.customer_phone,
        preparation_start_time=order.preparation_start_time,
        preparation_end_time=order.preparation_end_time,
        delivery_start_time=order.delivery_start_time,
        delivery_end_time=order.delivery_end_time,
        is_delivery=order.is_delivery,
        customer_location=order.customer_location,
        rider_id=order.rider_id,
        created_at=order.created_at,
    )


def _audit_entry(details_cls: Type, snapshot: OrderSnapshot, tenant_id: UUID, actor: Actor) -> AuditEntry:
    details = details_cls(**snapshot.model_dump(exclude={"order_id", "created_at"}))
    return AuditEntry(
        order_id=snapshot.order_id,
        tenant_id=tenant_id,
        changed_by=actor.audit_name,
        details=details,
    )


# ----------- Operations -----------

async def create_order(
    tenant_id: UUID,
    actor: Actor,
    items: Sequence[Mapping[str, Any]],
    status: Optional[Any] = None,
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
    is_delivery: bool = False,
    customer_location: Optional[str] = None,
    rider_id: Optional[UUID] = None,
    fanout: Optional[NotificationFanout] = None,
) -> Order:
    """
    Creates an order, reserving stock for every item, in one transaction.

    Prices and names are taken from the current menu. Staff may pre-bind a
    rider on delivery orders; a rider id from anyone else is ignored.
    """
    quantities = normalize_items(items)
    target = parse_status(status) if status is not None else OrderStatus.PENDING
    check_initial_status(target, is_delivery)
    if target not in actor.initial_statuses:
        raise PermissionDenied(f"A {actor.role} cannot create an order as {target.value}")
    _check_delivery(is_delivery, customer_location)
    if isinstance(actor, Customer):
        _check_customer_details(customer_name, customer_phone)

    async with in_transaction() as conn:
        await _ensure_tenant(tenant_id, conn)
        menu = await _resolve_menu(tenant_id, list(quantities), conn)

        order = Order(
            tenant_id=tenant_id,
            status=OrderStatus.PENDING,
            total_price=Decimal("0"),
            customer_name=customer_name or None,
            customer_phone=customer_phone or None,
            is_delivery=bool(is_delivery),
            customer_location=customer_location or None,
        )

        assigned_rider = None
        if actor.can_bind_riders:
            assigned_rider = await rider_policy.assign(
                tenant_id, order, rider_id, actor, target, conn, is_new=True
            )
        if order.is_delivery and target in RIDER_STATES and assigned_rider is None:
            raise RiderRequired("Rider ID is required for delivery orders")

        # A new order consumes its full quantities
        await inventory_ledger.apply_deltas(tenant_id, quantities, menu, conn)

        lines, total = _price_lines(quantities, menu)
        order.status = target
        order.rider_id = assigned_rider
        order.total_price = total
        stamp_status_entry(order, target, timezone.now())
        await order.save(using_db=conn)

        rows = [
            OrderItem(
                order=order,
                tenant_id=tenant_id,
                item_id=line.item_id,
                quantity=line.quantity,
                price=line.price,
                name=line.name,
            )
            for line in lines
        ]
        await OrderItem.bulk_create(rows, using_db=conn)

        snapshot = build_snapshot(order, rows)
        await audit_log.write(_audit_entry(CreatedDetails, snapshot, tenant_id, actor), conn)

    log.info(f"Order {order.id} created in tenant {tenant_id} by {actor.audit_name} (status {target.value}, total {total})")
    if fanout is not None:
        fanout.publish(tenant_id, snapshot, PushKind.NEW_ORDER)
    return order


async def update_order(
    tenant_id: UUID,
    order_id: UUID,
    actor: Actor,
    items: Sequence[Mapping[str, Any]],
    status: Any,
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
    is_delivery: Optional[bool] = None,
    customer_location: Optional[str] = None,
    rider_id: Optional[UUID] = None,
    fanout: Optional[NotificationFanout] = None,
) -> Order:
    """
    Replaces an order's items and moves its status as one atomic unit.

    Stock moves by the difference between the stored and requested quantities
    per item. Customer and delivery fields left as None keep their stored value.
    Delivered orders reject every update.
    """
    if not actor.can_update:
        raise PermissionDenied(f"A {actor.role} cannot update orders")
    quantities = normalize_items(items)
    target = parse_status(status)

    async with in_transaction() as conn:
        await _ensure_tenant(tenant_id, conn)
        order = await _lock_order(tenant_id, order_id, conn)
        ensure_mutable(order)
        previous_status = order.status

        if is_delivery is not None:
            order.is_delivery = bool(is_delivery)
        if customer_location is not None:
            order.customer_location = customer_location or None
        _check_delivery(order.is_delivery, order.customer_location)
        check_transition(previous_status, target, order.is_delivery)

        assigned_rider = await rider_policy.assign(tenant_id, order, rider_id, actor, target, conn)
        if order.is_delivery and target in RIDER_STATES and assigned_rider is None:
            raise RiderRequired("Rider ID is required for delivery orders")

        menu = await _resolve_menu(tenant_id, list(quantities), conn)
        existing = await OrderItem.filter(order_id=order.id).using_db(conn)
        deltas = inventory_ledger.compute_stock_deltas(
            {row.item_id: row.quantity for row in existing}, quantities
        )
        await inventory_ledger.apply_deltas(tenant_id, deltas, menu, conn)

        lines, total = _price_lines(quantities, menu)
        rows = await _replace_items(order, existing, lines, conn)

        order.status = target
        order.rider_id = assigned_rider
        order.total_price = total
        if customer_name is not None:
            order.customer_name = customer_name or None
        if customer_phone is not None:
            order.customer_phone = customer_phone or None
        if target != previous_status:
            stamp_status_entry(order, target, timezone.now())
        await order.save(using_db=conn)

        snapshot = build_snapshot(order, rows)
        await audit_log.write(_audit_entry(UpdatedDetails, snapshot, tenant_id, actor), conn)

    log.info(
        f"Order {order.id} updated in tenant {tenant_id} by {actor.audit_name}: "
        f"{previous_status.value} -> {target.value}, stock deltas {len(deltas)}, rider {assigned_rider}"
    )
    if fanout is not None:
        fanout.publish(tenant_id, snapshot, PushKind.ORDER_UPDATED)
    return order


async def cancel_order(
    tenant_id: UUID,
    order_id: UUID,
    actor: Actor,
    fanout: Optional[NotificationFanout] = None,
) -> OrderSnapshot:
    """
    Cancels an order: returns its stock, records a `canceled` history entry
    with the full snapshot, then deletes the order and its items.
    """
    if not actor.can_cancel:
        raise PermissionDenied("Manager access required")

    async with in_transaction() as conn:
        await _ensure_tenant(tenant_id, conn)
        order = await _lock_order(tenant_id, order_id, conn)
        if order.status == OrderStatus.DELIVERED:
            raise OrderLocked("Order is delivered and cannot be deleted")

        rows = await OrderItem.filter(order_id=order.id).using_db(conn)
        for row in sorted(rows, key=lambda r: str(r.item_id)):
            await inventory_ledger.release(tenant_id, row.item_id, row.quantity, conn)

        snapshot = build_snapshot(order, rows).model_copy(update={"status": OrderStatus.CANCELED})
        await audit_log.write(_audit_entry(CanceledDetails, snapshot, tenant_id, actor), conn)

        await OrderItem.filter(order_id=order.id).using_db(conn).delete()
        await order.delete(using_db=conn)

    log.info(f"Order {order_id} canceled in tenant {tenant_id} by {actor.audit_name}")
    if fanout is not None:
        fanout.publish(tenant_id, snapshot, PushKind.ORDER_UPDATED)
    return snapshot


async def list_orders(
    tenant_id: UUID,
    status: Optional[Any] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> List[OrderSnapshot]:
    """Tenant orders, optionally filtered by status or a name/phone search."""
    query = Order.filter(tenant_id=tenant_id)
    if status:
        query = query.filter(status=parse_status(status))
    if search:
        query = query.filter(Q(customer_name__icontains=search) | Q(customer_phone__icontains=search))

    field = SORTABLE_FIELDS.get(sort_by, "created_at")
    direction = "" if str(sort_order).lower() == "asc" else "-"
    orders = await query.order_by(f"{direction}{field}").prefetch_related("items")

    log.info(f"Orders fetched for tenant {tenant_id}: {len(orders)}")
    return [build_snapshot(order, list(order.items)) for order in orders]


async def get_order_status(tenant_id: UUID, order_id: UUID, customer_phone: Optional[str]) -> OrderSnapshot:
    """Customer status lookup. The phone number stands in for a credential."""
    if not isinstance(customer_phone, str) or not customer_phone:
        raise MissingCustomerDetails("Customer phone is required and must be a string")
    if not await Tenant.filter(id=tenant_id).exists():
        raise TenantNotFound("Tenant not found")

    order = await Order.get_or_none(
        id=order_id, tenant_id=tenant_id, customer_phone=customer_phone
    ).prefetch_related("items")
    if order is None:
        raise OrderNotFound("Order not found or phone number does not match")
    return build_snapshot(order, list(order.items))


async def verify_customer_channel(tenant_id: UUID, order_id: UUID, customer_phone: Optional[str]) -> bool:
    """Customer websocket handshake: the (tenant, order, phone) triple must match a stored order."""
    if not customer_phone:
        return False
    return await Order.filter(id=order_id, tenant_id=tenant_id, customer_phone=customer_phone).exists()
