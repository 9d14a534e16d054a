from pydantic import BaseModel, Field
from typing import Optional, Any, List, Generic, TypeVar

T = TypeVar('T')

class Pagination(BaseModel):
    page: int
    limit: int
    total: int

class PaginatedResponse(BaseModel, Generic[T]):
    data: List[T]
    pagination: Pagination

class ItemsResponse(BaseModel, Generic[T]):
    data: List[T]

class ErrorResponse(BaseModel):
    error: bool = Field(default=True, description="Always true for error responses")
    error_code: str = Field(..., description="Standard error code")
    message: str = Field(..., description="Human-readable error message")
    detail: Optional[Any] = Field(None, description="Additional error details")
