"""
Rider assignment policy.

Decides whether a rider may be bound to a delivery order. A rider can be enroute
on at most one order per tenant at a time. Rules are checked in order:

1. the candidate exists in the tenant and holds the rider role,
2. the candidate is not enroute on a different order,
3. a rider acting for themself may only pick up a completed order (unassigned
   or already theirs) or deliver an enroute order bound to them,
4. staff may pre-bind any delivery order, subject to 1 and 2.
"""
import logging
from typing import Any, List, Optional
from uuid import UUID

from orderhub.models.order import Order, OrderStatus
from orderhub.models.tenant import User, UserRole
from orderhub.schemas.rider import RiderAvailability
from orderhub.services.actors import Actor, Rider
from orderhub.services.exceptions import (
    InvalidRiderAssignment,
    RiderBusy,
    RiderNotAuthorized,
    RiderNotFound,
)

log = logging.getLogger(__name__)


def _enroute_orders(tenant_id: UUID):
    return Order.filter(tenant_id=tenant_id, status=OrderStatus.ENROUTE)


def check_rider_transition(order: Order, rider: Rider, target: OrderStatus) -> None:
    """Rule 3: what a rider may request on their own behalf."""
    own = order.rider_id is not None and order.rider_id == rider.user_id
    unassigned = order.rider_id is None

    if target == OrderStatus.ENROUTE:
        picking_up = order.status == OrderStatus.COMPLETED and (unassigned or own)
        already_enroute = order.status == OrderStatus.ENROUTE and own
        if order.is_delivery and (picking_up or already_enroute):
            return
        raise RiderNotAuthorized("Riders can only pick up completed delivery orders that are unassigned or theirs")

    if target == OrderStatus.DELIVERED:
        if order.status == OrderStatus.ENROUTE and own:
            return
        raise RiderNotAuthorized("Riders can only deliver enroute orders assigned to them")

    raise RiderNotAuthorized(f"Riders cannot move orders to {target.value}")


async def ensure_rider_available(
    tenant_id: UUID,
    rider_id: UUID,
    order_id: Optional[UUID],
    conn: Any,
) -> User:
    """
    Rules 1 and 2.

    The rider's user row is locked for the rest of the transaction so two
    orders cannot take the same rider enroute concurrently.
    """
    rider = await User.filter(id=rider_id, tenant_id=tenant_id).select_for_update().using_db(conn).first()
    if rider is None or rider.role != UserRole.RIDER:
        raise RiderNotFound("Invalid rider ID")

    busy = _enroute_orders(tenant_id).filter(rider_id=rider_id)
    if order_id is not None:
        # Reassigning a rider to the order they are already on is fine
        busy = busy.exclude(id=order_id)
    if await busy.using_db(conn).exists():
        raise RiderBusy("Selected rider is currently enroute on another order")
    return rider


async def list_riders(tenant_id: UUID) -> List[RiderAvailability]:
    """Riders of the tenant, each flagged available unless enroute on some order."""
    riders = await User.filter(tenant_id=tenant_id, role=UserRole.RIDER).order_by("username")
    busy = set(
        await _enroute_orders(tenant_id)
        .filter(rider_id__isnull=False)
        .values_list("rider_id", flat=True)
    )
    return [
        RiderAvailability(id=rider.id, username=rider.username, is_available=rider.id not in busy)
        for rider in riders
    ]


async def assign(
    tenant_id: UUID,
    order: Order,
    candidate_rider_id: Optional[UUID],
    actor: Actor,
    target_status: OrderStatus,
    conn: Any,
    is_new: bool = False,
) -> Optional[UUID]:
    """
    Returns the rider the order should be bound to after this mutation.

    `order` carries the state before the mutation (status, rider, delivery
    flag already merged with the request). Raises on rejection.
    """
    order_id = None if is_new else order.id

    if isinstance(actor, Rider):
        # A rider always binds themself; a rider id in the request is ignored
        check_rider_transition(order, actor, target_status)
        if target_status == OrderStatus.ENROUTE:
            await ensure_rider_available(tenant_id, actor.user_id, order_id, conn)
        if order.rider_id is None:
            log.info(f"Assigning rider {actor.user_id} to order {order.id}")
        return actor.user_id

    rider_id = order.rider_id
    if candidate_rider_id is not None and actor.can_bind_riders:
        if not order.is_delivery:
            raise InvalidRiderAssignment("Riders can only be assigned to delivery orders")
        await ensure_rider_available(tenant_id, candidate_rider_id, order_id, conn)
        return candidate_rider_id

    if not order.is_delivery:
        # Switched to pickup; drop any earlier binding
        return None

    if rider_id is not None and target_status == OrderStatus.ENROUTE and order.status != OrderStatus.ENROUTE:
        # A rider pre-bound earlier may have gone enroute elsewhere since
        await ensure_rider_available(tenant_id, rider_id, order_id, conn)
    return rider_id
