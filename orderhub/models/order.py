from enum import Enum
from tortoise import fields, models
import uuid


class OrderStatus(str, Enum):
    PENDING = "pending"  # Default state for new orders
    PREPARING = "preparing"
    COMPLETED = "completed" # Kitchen is done, waiting for pickup or rider
    ENROUTE = "enroute"
    DELIVERED = "delivered" # Final, the order is locked from here on
    CANCELED = "canceled"


class Order(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    tenant = fields.ForeignKeyField("models.Tenant", related_name="orders")
    status = fields.CharEnumField(OrderStatus, default=OrderStatus.PENDING)
    total_price = fields.DecimalField(max_digits=14, decimal_places=2, default=0)
    customer_name = fields.CharField(max_length=255, null=True)
    customer_phone = fields.CharField(max_length=32, null=True)
    is_delivery = fields.BooleanField(default=False)
    customer_location = fields.TextField(null=True)
    # Weak reference to users.id; riders may be removed without touching orders
    rider_id = fields.UUIDField(null=True)
    preparation_start_time = fields.DatetimeField(null=True)
    preparation_end_time = fields.DatetimeField(null=True)
    delivery_start_time = fields.DatetimeField(null=True)
    delivery_end_time = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "orders"
        indexes = [
            ("tenant_id",),                       # Tenant order queries
            ("status",),                          # Status-based filtering
            ("created_at",),                      # Time-based queries
            ("tenant_id", "rider_id", "status"),  # Composite: rider availability check
        ]


class OrderItem(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    order = fields.ForeignKeyField("models.Order", related_name="items", on_delete=fields.CASCADE)
    tenant = fields.ForeignKeyField("models.Tenant", related_name="order_items")
    # Weak reference to menu_items.id; name and price are snapshots
    item_id = fields.UUIDField()
    quantity = fields.IntField()
    price = fields.DecimalField(max_digits=12, decimal_places=2)
    name = fields.CharField(max_length=255)

    class Meta:
        table = "order_items"
        unique_together = (("order", "item_id"),)
        indexes = [
            ("item_id",),  # Menu item popularity
        ]
