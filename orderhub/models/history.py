from enum import Enum
from tortoise import fields, models
import uuid


class HistoryAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    CANCELED = "canceled"


class OrderHistory(models.Model):
    """
    Append-only audit trail of accepted order mutations.

    Rows are written in the same transaction as the mutation they describe and
    are never updated or deleted. `order_id` is a plain column rather than a
    foreign key so entries outlive the order row (canceled orders are deleted).
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    order_id = fields.UUIDField()
    tenant = fields.ForeignKeyField("models.Tenant", related_name="order_history")
    action = fields.CharEnumField(HistoryAction)
    details = fields.JSONField() # Serialized typed details, see schemas.history
    changed_by = fields.CharField(max_length=150)
    change_timestamp = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "order_history"
        indexes = [
            ("tenant_id", "change_timestamp"),  # Tenant history, newest first
            ("order_id",),                      # Single order trail
        ]
