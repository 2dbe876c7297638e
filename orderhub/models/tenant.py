from enum import Enum
from tortoise import fields, models
import uuid


class UserRole(str, Enum):
    MANAGER = "manager"
    KITCHEN = "kitchen"
    RIDER = "rider"
    SUPERADMIN = "superadmin" # Platform operator, not handled by this service


class Tenant(models.Model):
    """
    A restaurant account. Provisioned and blocked by the platform service;
    read-only here apart from the existence check.
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    name = fields.CharField(max_length=255)
    is_active = fields.BooleanField(default=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "tenants"


class User(models.Model):
    """Staff account owned by the identity service. Looked up for rider binding."""
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    tenant = fields.ForeignKeyField("models.Tenant", related_name="users")
    username = fields.CharField(max_length=150)
    role = fields.CharEnumField(UserRole)

    class Meta:
        table = "users"
        unique_together = (("tenant", "username"),)
        indexes = [
            ("tenant_id", "role"),  # Rider lookups per tenant
        ]
