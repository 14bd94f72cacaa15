"""Timestamp-cursor pagination over normalized messages."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Literal

from continuum.models.message import Message, MessagePage, Pagination

Order = Literal["asc", "desc"]


def empty_page() -> MessagePage:
    return MessagePage(messages=[], pagination=Pagination(has_more=False, oldest_timestamp=None, total=0))


def paginate(
    messages: Iterable[Message],
    *,
    limit: int,
    before: int | None = None,
    order: Order = "asc",
) -> MessagePage:
    """
    Return one page of *messages*, newest first by selection.

    Candidates are sorted by ``created_at`` descending; with a ``before``
    cursor only strictly older messages qualify. The first *limit* form the
    page, and ``oldest_timestamp`` is the earliest of them, to be passed back
    as ``before`` for the next older page. A page never splits messages
    sharing its oldest timestamp: they are all included, even past *limit*,
    since the strictly-older cursor would otherwise skip them for good. The page is returned ascending
    unless ``order="desc"``.

    ``total`` counts every message given, regardless of cursor.
    """
    all_messages = list(messages)
    candidates = all_messages
    if before is not None:
        candidates = [m for m in all_messages if m.created_at < before]
    candidates = sorted(candidates, key=lambda m: m.created_at, reverse=True)

    size = max(0, limit)
    if 0 < size < len(candidates):
        boundary = candidates[size - 1].created_at
        while size < len(candidates) and candidates[size].created_at == boundary:
            size += 1
    page = candidates[:size]
    has_more = len(candidates) > len(page)
    oldest = page[-1].created_at if page else None
    if order != "desc":
        page = list(reversed(page))

    return MessagePage(
        messages=page,
        pagination=Pagination(has_more=has_more, oldest_timestamp=oldest, total=len(all_messages)),
    )
