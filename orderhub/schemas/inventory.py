import uuid
from pydantic import BaseModel, Field


class StockResponse(BaseModel):
    """Schema for fetching a menu item's stock."""
    item_id: uuid.UUID
    name: str
    stock_quantity: int
    low_stock_threshold: int
    is_low_stock: bool


class RestockRequest(BaseModel):
    # Positivity is checked by the ledger so the rejection carries a reason code
    quantity: int = Field(..., description="Units to add to the current stock.")
