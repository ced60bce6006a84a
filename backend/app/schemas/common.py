"""Common schemas used across the application."""

from typing import Generic, Sequence, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """Offset-paginated list.

    Usage:
        response_model=PaginatedResponse[UcpSummary]

    Returns:
        {
            "items": [...],
            "total": 150,
            "limit": 50,
            "offset": 0,
            "has_more": true
        }
    """
    items: list[T]
    total: int
    limit: int
    offset: int
    has_more: bool = False

    @classmethod
    def from_page(cls, items: Sequence[T], total: int, limit: int, offset: int) -> "PaginatedResponse[T]":
        return cls(
            items=list(items),
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(items) < total,
        )
