"""
Keyset (cursor) pagination over (created_at desc, id desc).
The cursor is an opaque URL-safe token carrying the last (created_at, id) of a page,
so rows inserted after a page was served never shift the following pages.
"""
import base64
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, TypeVar

from sqlalchemy import and_, or_
from sqlalchemy.orm import Query

from vetchat.errors import ValidationFailure

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    page: list[T]
    is_done: bool
    continue_cursor: str | None


def encode_cursor(created_at: datetime, row_id: str) -> str:
    raw = json.dumps([created_at.isoformat(), row_id]).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def decode_cursor(cursor: str) -> tuple[datetime, str]:
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        created_at, row_id = json.loads(base64.urlsafe_b64decode(padded.encode()))
        return datetime.fromisoformat(created_at), str(row_id)
    except (ValueError, TypeError) as e:
        raise ValidationFailure.for_field("cursor", "Invalid cursor") from e


def paginate_desc(query: Query, model: Any, cursor: str | None, num_items: int) -> Page:
    """Apply the cursor to `query` (already filtered) and return one page, newest first."""
    if cursor:
        created_at, row_id = decode_cursor(cursor)
        query = query.filter(
            or_(
                model.created_at < created_at,
                and_(model.created_at == created_at, model.id < row_id),
            )
        )
    rows = (
        query.order_by(model.created_at.desc(), model.id.desc())
        .limit(num_items + 1)
        .all()
    )
    is_done = len(rows) <= num_items
    rows = rows[:num_items]
    next_cursor = None
    if rows and not is_done:
        last = rows[-1]
        next_cursor = encode_cursor(last.created_at, last.id)
    return Page(page=rows, is_done=is_done, continue_cursor=next_cursor)
