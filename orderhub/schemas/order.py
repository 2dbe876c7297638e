from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field
from typing import List, Optional
import uuid

from orderhub.models.order import OrderStatus


class OrderItemRequest(BaseModel):
    """Schema for a single item in the order request. Price and name are never taken from the caller."""
    item_id: uuid.UUID
    quantity: int


class CustomerOrderRequest(BaseModel):
    """Schema for an order placed through the public (customer) endpoint."""
    items: List[OrderItemRequest]
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    is_delivery: bool = False
    customer_location: Optional[str] = None


class OrderRequest(CustomerOrderRequest):
    """Schema for an order placed by staff."""
    status: Optional[OrderStatus] = None
    rider_id: Optional[uuid.UUID] = None


class OrderUpdateRequest(BaseModel):
    """Schema for replacing an order's items and moving its status."""
    items: List[OrderItemRequest]
    status: OrderStatus
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    is_delivery: Optional[bool] = None
    customer_location: Optional[str] = None
    rider_id: Optional[uuid.UUID] = None


class OrderPlacementResponse(BaseModel):
    """Response schema for a newly placed order."""
    order_id: uuid.UUID
    status: OrderStatus
    total_price: float
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    message: str


class OrderLine(BaseModel):
    """An item inside an order snapshot."""
    item_id: uuid.UUID
    name: str
    quantity: int
    price: float


class OrderSnapshot(BaseModel):
    """Normalized view of an order, used for listings, status lookups and live pushes."""
    order_id: uuid.UUID
    items: List[OrderLine]
    total_price: float
    status: OrderStatus
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    preparation_start_time: Optional[datetime] = None
    preparation_end_time: Optional[datetime] = None
    delivery_start_time: Optional[datetime] = None
    delivery_end_time: Optional[datetime] = None
    is_delivery: bool = False
    customer_location: Optional[str] = None
    rider_id: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None


class PushKind(str, Enum):
    NEW_ORDER = "new_order"
    ORDER_UPDATED = "order_updated"


class PushMessage(BaseModel):
    """Message sent to staff and customer live channels after a committed mutation."""
    type: PushKind
    order: OrderSnapshot = Field(..., description="Snapshot with catalog names and prices.")
