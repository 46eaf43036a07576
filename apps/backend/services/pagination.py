"""Pagination metadata shared by list endpoints and the per-company export."""

import math
from typing import Any, Dict, List, Sequence, Tuple


def build_pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    """
    Build the ``pagination`` block of a list envelope.

    Example:
        >>> build_pagination(page=2, limit=10, total=35)
        {'page': 2, 'limit': 10, 'total': 35, 'totalPages': 4, 'hasNext': True, 'hasPrev': True}
    """
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }


def page_offset(page: int, limit: int) -> int:
    return (page - 1) * limit


async def paginate(gateway, request, filters: Sequence = (), default_sort: str = "id") -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    """
    Run one listing page against a gateway.

    Returns:
        Tuple of (rows, pagination block)
    """
    sort = gateway.resolve_sort(request.sort_by or default_sort, request.sort_order)
    clauses = list(filters) + [gateway.search_filter(request.search)]

    rows = await gateway.fetch_all(
        filters=clauses,
        sort=sort,
        limit=request.limit,
        offset=page_offset(request.page, request.limit),
    )
    total = await gateway.count(filters=clauses)
    return rows, build_pagination(request.page, request.limit, total)
