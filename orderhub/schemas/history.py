from datetime import datetime
from pydantic import BaseModel, Field, TypeAdapter
from typing import Annotated, List, Literal, Optional, Union
import uuid

from orderhub.models.order import OrderStatus
from orderhub.schemas.order import OrderLine


class _OrderDetails(BaseModel):
    """Full order snapshot recorded with every audit entry."""
    items: List[OrderLine]
    total_price: float
    status: OrderStatus
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    is_delivery: bool = False
    customer_location: Optional[str] = None
    rider_id: Optional[uuid.UUID] = None
    preparation_start_time: Optional[datetime] = None
    preparation_end_time: Optional[datetime] = None
    delivery_start_time: Optional[datetime] = None
    delivery_end_time: Optional[datetime] = None


class CreatedDetails(_OrderDetails):
    action: Literal["created"] = "created"


class UpdatedDetails(_OrderDetails):
    action: Literal["updated"] = "updated"


class CanceledDetails(_OrderDetails):
    action: Literal["canceled"] = "canceled"


AuditDetails = Annotated[
    Union[CreatedDetails, UpdatedDetails, CanceledDetails],
    Field(discriminator="action"),
]

# Parses stored JSON back into the right variant
audit_details_adapter = TypeAdapter(AuditDetails)


class AuditEntry(BaseModel):
    """An accepted order mutation, as handed to the audit log."""
    order_id: uuid.UUID
    tenant_id: uuid.UUID
    changed_by: str
    details: AuditDetails


class AuditEntryResponse(AuditEntry):
    """A stored audit entry."""
    history_id: uuid.UUID
    change_timestamp: datetime
