from __future__ import annotations

import uuid

from fastapi import HTTPException


def parse_uuid(value: str, *, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"invalid {field}") from e


def parse_uuids(values: list[str], *, field: str) -> list[uuid.UUID]:
    out: list[uuid.UUID] = []
    seen: set[uuid.UUID] = set()
    for v in values or []:
        u = parse_uuid(v, field=field)
        if u not in seen:
            seen.add(u)
            out.append(u)
    return out
