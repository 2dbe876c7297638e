"""
Acting parties of an order mutation.

Each role is its own variant exposing what it may request, so the lifecycle
manager asks the actor (``actor.can_cancel``, ``actor.initial_statuses``) or
dispatches on the variant (``isinstance(actor, Rider)``) instead of comparing
role strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, FrozenSet, Mapping, Optional
from uuid import UUID

from orderhub.models.order import OrderStatus
from orderhub.models.tenant import UserRole
from orderhub.services.exceptions import PermissionDenied

_STAFF_INITIAL_STATUSES = frozenset(s for s in OrderStatus if s != OrderStatus.CANCELED)
_PENDING_ONLY = frozenset({OrderStatus.PENDING})


@dataclass(frozen=True)
class Actor:
    tenant_id: UUID
    user_id: Optional[UUID]
    username: str

    role: ClassVar[str]
    initial_statuses: ClassVar[FrozenSet[OrderStatus]] = _PENDING_ONLY
    can_update: ClassVar[bool] = False
    can_cancel: ClassVar[bool] = False
    can_restock: ClassVar[bool] = False
    can_bind_riders: ClassVar[bool] = False
    can_view_history: ClassVar[bool] = False

    @property
    def audit_name(self) -> str:
        """Value written to ``order_history.changed_by``."""
        return self.username


@dataclass(frozen=True)
class Manager(Actor):
    role: ClassVar[str] = UserRole.MANAGER.value
    initial_statuses: ClassVar[FrozenSet[OrderStatus]] = _STAFF_INITIAL_STATUSES
    can_update: ClassVar[bool] = True
    can_cancel: ClassVar[bool] = True
    can_restock: ClassVar[bool] = True
    can_bind_riders: ClassVar[bool] = True
    can_view_history: ClassVar[bool] = True


@dataclass(frozen=True)
class Kitchen(Actor):
    role: ClassVar[str] = UserRole.KITCHEN.value
    initial_statuses: ClassVar[FrozenSet[OrderStatus]] = _STAFF_INITIAL_STATUSES
    can_update: ClassVar[bool] = True
    can_bind_riders: ClassVar[bool] = True


@dataclass(frozen=True)
class Rider(Actor):
    """A rider may only move delivery orders through enroute and delivered."""
    role: ClassVar[str] = UserRole.RIDER.value
    can_update: ClassVar[bool] = True


@dataclass(frozen=True)
class Customer(Actor):
    """Anonymous customer placing an order through the public endpoint."""
    role: ClassVar[str] = "customer"

    @property
    def audit_name(self) -> str:
        return "customer"


STAFF_ACTORS = {
    UserRole.MANAGER.value: Manager,
    UserRole.KITCHEN.value: Kitchen,
    UserRole.RIDER.value: Rider,
}


def actor_from_claims(claims: Mapping[str, Any]) -> Actor:
    """Builds the staff actor variant from verified token claims."""
    actor_cls = STAFF_ACTORS.get(claims.get("role"))
    if actor_cls is None:
        raise PermissionDenied(f"Role {claims.get('role')!r} cannot act on orders")
    try:
        tenant_id = UUID(str(claims["tenant_id"]))
        user_id = UUID(str(claims["user_id"]))
    except (KeyError, ValueError):
        raise PermissionDenied("Credential is missing tenant or user identity")
    return actor_cls(
        tenant_id=tenant_id,
        user_id=user_id,
        username=str(claims.get("username") or user_id),
    )


def customer(tenant_id: UUID) -> Customer:
    return Customer(tenant_id=tenant_id, user_id=None, username="customer")
