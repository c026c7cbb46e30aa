"""
app/core/schemas.py

Shared response envelopes for list and message endpoints.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    total_count: int = Field(..., description="Rows matching the query across all pages")
    has_next_page: bool = Field(..., description="Whether skip + limit stops short of total_count")
    items: list[T]

    @classmethod
    def page(cls, items: list[T], total_count: int, skip: int, limit: int) -> "PaginatedResponse[T]":
        return cls(total_count=total_count, has_next_page=skip + limit < total_count, items=items)


class MessageResponse(BaseModel):
    detail: str = Field(..., description="Human-readable outcome")
