from typing import Callable, Optional

from sqlalchemy import func
from sqlmodel import select


def paginate(
    *,
    session,
    query,
    page: int = 1,
    limit: int = 10,
    transform: Optional[Callable] = None,
):
    """
    Offset pagination over an ordered select.

    The query must carry a total ordering, otherwise rows can repeat or go
    missing between pages. `transform` is applied to each row of the page.
    """
    page = max(page, 1)
    if limit < 1:
        limit = 10

    total_items = session.exec(
        select(func.count()).select_from(query.order_by(None).subquery())
    ).one()

    rows = session.exec(
        query.offset((page - 1) * limit).limit(limit)
    ).all()

    return {
        "total_items": total_items,
        "total_pages": (total_items + limit - 1) // limit,
        "current_page": page,
        "limit": limit,
        "results": [transform(row) for row in rows] if transform else list(rows),
    }
