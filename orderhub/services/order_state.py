"""
Order state machine.

    pending -> preparing -> completed -> enroute -> delivered
    (any non-delivered state) -> canceled

Orders move freely among pending, preparing and completed; once enroute they
only move on to delivered. `canceled` is reached through cancellation, which
deletes the order, never through an update.
"""
from datetime import datetime
from typing import Optional

from orderhub.models.order import Order, OrderStatus
from orderhub.services.exceptions import InvalidStatus, InvalidTransition, OrderLocked

FLOW = [
    OrderStatus.PENDING,
    OrderStatus.PREPARING,
    OrderStatus.COMPLETED,
    OrderStatus.ENROUTE,
    OrderStatus.DELIVERED,
]
RANK = {status: position for position, status in enumerate(FLOW)}

# Timestamp recorded on the first entry into each state
ENTRY_TIMESTAMPS = {
    OrderStatus.PREPARING: "preparation_start_time",
    OrderStatus.COMPLETED: "preparation_end_time",
    OrderStatus.ENROUTE: "delivery_start_time",
    OrderStatus.DELIVERED: "delivery_end_time",
}

RIDER_STATES = (OrderStatus.ENROUTE, OrderStatus.DELIVERED)
KITCHEN_STATES = (OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.COMPLETED)


def check_initial_status(status: OrderStatus, is_delivery: bool) -> None:
    """Validates an explicit status given at creation time."""
    if status == OrderStatus.CANCELED:
        raise InvalidStatus("An order cannot be created as canceled")
    if status == OrderStatus.ENROUTE and not is_delivery:
        raise InvalidTransition("Only delivery orders can be enroute")
    if status == OrderStatus.DELIVERED and is_delivery:
        raise InvalidTransition("A delivery order must be enroute before it is delivered")


def ensure_mutable(order: Order) -> None:
    if order.status == OrderStatus.DELIVERED:
        raise OrderLocked("Order is delivered and cannot be modified")


def check_transition(current: OrderStatus, target: OrderStatus, is_delivery: bool) -> None:
    """Raises if an existing order may not move from `current` to `target`."""
    if current == OrderStatus.DELIVERED:
        raise OrderLocked("Order is delivered and cannot be modified")
    if target == OrderStatus.CANCELED:
        raise InvalidStatus("Use order cancellation to cancel an order")
    if RANK[target] < RANK[current] and current not in KITCHEN_STATES:
        raise InvalidTransition(f"Order cannot move back from {current.value} to {target.value}")
    if target == OrderStatus.ENROUTE and not is_delivery:
        raise InvalidTransition("Only delivery orders can be enroute")
    if (
        target == OrderStatus.DELIVERED
        and is_delivery
        and current != OrderStatus.ENROUTE
    ):
        raise InvalidTransition("A delivery order must be enroute before it is delivered")


def stamp_status_entry(order: Order, status: OrderStatus, now: datetime) -> Optional[str]:
    """
    Records the entry timestamp for `status` unless one is already set.

    Returns the name of the field that was set, if any.
    """
    field = ENTRY_TIMESTAMPS.get(status)
    if field is None or getattr(order, field) is not None:
        return None
    setattr(order, field, now)
    return field
