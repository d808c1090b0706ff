from pydantic import BaseModel
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

class ApiResponse(BaseModel, Generic[T]):
    """Response envelope used by every endpoint."""
    success: bool = True
    message: str
    data: Optional[T] = None
