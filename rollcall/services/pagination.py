from math import ceil
from typing import Generic, TypeVar

from pydantic import BaseModel, computed_field

T = TypeVar("T")

MAX_PAGE_SIZE = 200


def normalize_page(page: int, limit: int, default_limit: int = 20) -> tuple[int, int]:
    """Clamp page/limit to sane values; returns (page, limit)."""
    page = page if page > 0 else 1
    limit = limit if limit > 0 else default_limit
    return page, min(limit, MAX_PAGE_SIZE)


class Page(BaseModel, Generic[T]):
    items: list[T]
    page: int
    limit: int
    total: int

    @computed_field
    @property
    def pages(self) -> int:
        return ceil(self.total / self.limit) if self.limit else 0
