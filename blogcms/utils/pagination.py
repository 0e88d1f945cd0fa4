"""Pagination helpers shared by the list endpoints.

List routes accept ``page`` (1-based) and ``limit`` query parameters and answer
with ``{"<items>": [...], "pagination": {page, limit, total, totalPages}}``.
"""

from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict, Field


MAX_PAGE_SIZE = 100


class Pagination(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page: int
    limit: int
    total: int
    total_pages: int = Field(alias="totalPages")


def build_pagination(page: int, limit: int, total: int) -> Pagination:
    total_pages = math.ceil(total / limit) if limit else 0
    return Pagination(page=page, limit=limit, total=total, total_pages=total_pages)
