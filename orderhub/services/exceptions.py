"""Order lifecycle exceptions.

Raised by the service layer when input or business rules are violated. Every
exception carries a stable ``reason`` code so callers can tell rejections apart;
the API layer renders them through ``core.exception_handlers``.

All of these are raised before any stock or order row is written (or inside the
transaction, which then rolls back), so a rejection never leaves partial state.
"""

from __future__ import annotations


class OrderServiceError(Exception):
    """Base class for every rejection raised by the order core."""

    reason = "order_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ----------- Categories -----------

class ValidationError(OrderServiceError):
    """Malformed input. Rejected before any side effect."""

    reason = "validation_error"


class NotFoundError(OrderServiceError):
    """A referenced tenant, order, menu item or rider does not exist."""

    reason = "not_found"


class ConflictError(OrderServiceError):
    """The request is well-formed but conflicts with current state."""

    reason = "conflict"


class PermissionDenied(OrderServiceError):
    """The acting role may not perform this operation."""

    reason = "forbidden"


# ----------- Validation -----------

class EmptyOrder(ValidationError):
    reason = "empty_items"


class InvalidItem(ValidationError):
    reason = "invalid_item"


class InvalidQuantity(ValidationError):
    reason = "invalid_quantity"


class InvalidStatus(ValidationError):
    reason = "invalid_status"


class MissingLocation(ValidationError):
    reason = "missing_location"


class MissingCustomerDetails(ValidationError):
    reason = "missing_customer_details"


class RiderRequired(ValidationError):
    reason = "rider_required"


class InvalidRiderAssignment(ValidationError):
    reason = "invalid_rider_assignment"


# ----------- Not found -----------

class TenantNotFound(NotFoundError):
    reason = "tenant_not_found"


class OrderNotFound(NotFoundError):
    reason = "order_not_found"


class MenuItemNotFound(NotFoundError):
    reason = "menu_item_not_found"


class RiderNotFound(NotFoundError):
    reason = "rider_not_found"


# ----------- Conflict -----------

class InsufficientStock(ConflictError):
    reason = "insufficient_stock"

    def __init__(self, item_name: str, available: int):
        super().__init__(f"Insufficient stock for {item_name}. Available: {available}")
        self.item_name = item_name
        self.available = available


class RiderBusy(ConflictError):
    reason = "rider_busy"


class OrderLocked(ConflictError):
    """The order is delivered and can no longer change."""

    reason = "order_delivered"


class InvalidTransition(ConflictError):
    reason = "invalid_transition"


# ----------- Permission -----------

class RiderNotAuthorized(PermissionDenied):
    reason = "rider_not_authorized_for_transition"
