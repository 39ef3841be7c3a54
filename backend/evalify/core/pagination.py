from __future__ import annotations

import math
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session


def paginate(db: Session, stmt: Select, *, page: int, limit: int) -> tuple[list[Any], dict[str, int]]:
    """Run an ordered SELECT for one page; returns the rows and the page metadata."""
    total = int(db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0)
    rows = list(db.scalars(stmt.offset((page - 1) * limit).limit(limit)).all())
    meta = {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": max(1, math.ceil(total / limit)) if total else 0,
    }
    return rows, meta
