"""Pagination helpers."""

from typing import TypeVar, Generic

from pydantic import BaseModel

T = TypeVar("T")

MAX_PER_PAGE = 100


class Page(BaseModel, Generic[T]):
    items: list[T]
    page: int
    per_page: int
    total: int


def paginate(page: int, per_page: int, max_per_page: int = MAX_PER_PAGE) -> tuple[int, int]:
    """Clamp page/per_page; return (limit, offset)."""
    per_page = max(1, min(per_page, max_per_page))
    page = max(1, page)
    return per_page, (page - 1) * per_page
