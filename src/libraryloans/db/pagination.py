"""Helpers for running ordered, paginated SELECT statements."""

from typing import Any, Mapping

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from ..errors import InvalidArgumentError
from .schemas import Page, PageRequest


def apply_sort(stmt: Select, sort: list[str], columns: Mapping[str, Any], default: Any) -> Select:
    """Order ``stmt`` by the requested fields.

    Args:
        stmt: Statement to order
        sort: Field names, ``-name`` for descending
        columns: Allowed field names mapped to their columns
        default: Column used as the final tie breaker

    Raises:
        InvalidArgumentError: If a field is not sortable
    """
    clauses = []
    for field in sort:
        descending = field.startswith("-")
        name = field[1:] if descending else field
        column = columns.get(name)
        if column is None:
            raise InvalidArgumentError(f"Cannot sort by '{name}'")
        clauses.append(column.desc() if descending else column.asc())
    clauses.append(default.asc())
    return stmt.order_by(*clauses)


def paginate(session: Session, stmt: Select, page: PageRequest) -> Page:
    """Run ``stmt`` for one page and count the whole result set."""
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = session.execute(count_stmt).scalar_one()

    rows = session.execute(stmt.offset(page.offset).limit(page.size)).unique().scalars().all()
    for row in rows:
        session.expunge(row)

    return Page(items=list(rows), total=total, page=page.page, size=page.size)
