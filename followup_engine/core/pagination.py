"""
Pagination for list endpoints.
Every paginated list returns the same envelope (see PaginatedResponse).
"""
from typing import Any, Dict, List

from sqlalchemy import func
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession


def page_envelope(items: List[Any], total: int, page: int, limit: int) -> Dict[str, Any]:
    pages = (total + limit - 1) // limit if limit > 0 else 0
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "pages": pages,
        "has_next": page < pages,
        "has_prev": page > 1
    }


async def paginate(session: AsyncSession, query, page: int, limit: int) -> Dict[str, Any]:
    """
    Count the filtered query, then fetch one page of it.

    The query must already carry its ordering; the total ignores it.
    """
    count_query = select(func.count()).select_from(query.order_by(None).subquery())
    total = (await session.exec(count_query)).one()

    result = await session.exec(query.offset((page - 1) * limit).limit(limit))
    return page_envelope(result.all(), total, page, limit)
