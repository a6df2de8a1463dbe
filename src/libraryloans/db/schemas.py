"""Pydantic schemas for data validation.

Book shapes used by the catalog plus the page request/result pair shared
by every paginated query.
"""

from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator

T = TypeVar("T")
U = TypeVar("U")


# ============================================================================
# Pagination
# ============================================================================


class PageRequest(BaseModel):
    """Zero-based page number, page size and optional ordering.

    ``sort`` holds field names; a leading ``-`` sorts descending.
    """

    page: int = Field(default=0, ge=0)
    size: int = Field(default=20, ge=1, le=1000)
    sort: list[str] = Field(default_factory=list)

    @field_validator("sort", mode="before")
    @classmethod
    def split_sort(cls, v):
        """Accept a comma separated string as well as a list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @property
    def offset(self) -> int:
        return self.page * self.size


@dataclass
class Page(Generic[T]):
    """One page of results plus the size of the full matching set."""

    items: list[T]
    total: int
    page: int
    size: int

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return (self.total + self.size - 1) // self.size

    def map(self, func: Callable[[T], U]) -> "Page[U]":
        """Return a page with ``func`` applied to every item."""
        return Page(
            items=[func(item) for item in self.items],
            total=self.total,
            page=self.page,
            size=self.size,
        )


# ============================================================================
# Books
# ============================================================================


class BookBase(BaseModel):
    """Base book fields."""

    title: str = Field(..., min_length=1, max_length=500, description="Book title")
    author: str = Field(..., min_length=1, max_length=500, description="Primary author")
    isbn: str = Field(..., min_length=1, max_length=20)

    @field_validator("title", "author", "isbn")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class BookCreate(BookBase):
    """Schema for creating a book."""

    pass


class BookUpdate(BaseModel):
    """Schema for updating a book. The ISBN is fixed once registered."""

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    author: Optional[str] = Field(None, min_length=1, max_length=500)


class BookFilter(BaseModel):
    """Attribute filter for catalog searches.

    Every non-empty field must appear, case-insensitively, somewhere in the
    matching column.
    """

    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None


class BookResponse(BookBase):
    """Schema for book responses."""

    id: int

    model_config = {"from_attributes": True}
