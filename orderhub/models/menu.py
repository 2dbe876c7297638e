from tortoise import fields, models
import uuid


class MenuItem(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    tenant = fields.ForeignKeyField("models.Tenant", related_name="menu_items")
    name = fields.CharField(max_length=255)
    category = fields.CharField(max_length=100, null=True)
    price = fields.DecimalField(max_digits=12, decimal_places=2)
    # Only ever changed through the inventory ledger's conditional updates
    stock_quantity = fields.IntField(default=0)
    low_stock_threshold = fields.IntField(default=5) # For low stock alert
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "menu_items"
        indexes = [
            ("tenant_id",),  # Fast tenant menu queries
        ]

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.low_stock_threshold
