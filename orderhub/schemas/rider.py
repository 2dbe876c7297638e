import uuid
from pydantic import BaseModel


class RiderAvailability(BaseModel):
    """A rider and whether they can take an order enroute right now."""
    id: uuid.UUID
    username: str
    is_available: bool
