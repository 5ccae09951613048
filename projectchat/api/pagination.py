"""Pagination blocks and response envelopes shared by the REST routes."""

import math
from typing import Any


def ok(data: Any) -> dict:
    return {"success": True, "data": data}


def pagination(page: int, limit: int, total: int, *, links: bool = False) -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    block = {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }
    if links:
        block["nextPage"] = page + 1 if page < total_pages else None
        block["prevPage"] = page - 1 if page > 1 else None
    return block


def offset_for(page: int, limit: int) -> int:
    return (page - 1) * limit
