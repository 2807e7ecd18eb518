"""Helpers shared by the routers: query-string parsing, paging and streaming."""

from typing import Callable, Iterable, Iterator

from fastapi import Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from trustline_api.export.streams import MEDIA_TYPES
from trustline_api.ledger.filters import Page, split_query_params

LIST_PARAMS = frozenset({"tags"})


def query_params(request: Request, exclude: Iterable[str] = ()) -> tuple[dict, dict]:
    """Collect raw query params as (filters, pagination); repeated list params become lists."""
    excluded = set(exclude)
    raw = {}
    for key in request.query_params.keys():
        if key in excluded:
            continue
        if key in LIST_PARAMS:
            raw[key] = request.query_params.getlist(key)
        else:
            raw[key] = request.query_params.get(key)
    return split_query_params(raw)


def page_response(page: Page, serialize: Callable) -> dict:
    return {
        "items": [serialize(item) for item in page.items],
        "total": page.total,
        "limit": page.limit,
        "offset": page.offset,
    }


def _closing(chunks: Iterable, db: Session) -> Iterator:
    try:
        yield from chunks
    finally:
        db.close()


def stream_response(chunks: Iterable, fmt: str, filename: str, db: Session) -> StreamingResponse:
    """Stream an export; the database session is closed once the body is sent."""
    return StreamingResponse(
        _closing(chunks, db),
        media_type=MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
