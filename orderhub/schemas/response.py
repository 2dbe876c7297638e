from pydantic import BaseModel, Field
from typing import Any, Optional
import uuid


def new_request_id() -> str:
    """Generates a unique request ID for tracing."""
    return uuid.uuid4().hex


class SuccessResponse(BaseModel):
    """Success envelope: data, success flag and request_id"""
    success: bool = Field(default=True)
    request_id: str = Field(default_factory=new_request_id)
    data: Optional[Any] = None


class ErrorDetail(BaseModel):
    code: str
    message: Any
    details: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Failure envelope. `error.code` is the machine-readable rejection reason."""
    success: bool = Field(default=False)
    error: ErrorDetail
    request_id: str = Field(default_factory=new_request_id)
