"""Offset pagination: fetch fixed-size pages until a short page ends the data."""

from __future__ import annotations

import logging
import threading
from typing import Callable, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


class CollectionCancelled(Exception):
    """The owner of the collection went away before it finished."""


class CancelToken:
    """Cancellation flag shared between a view and the fetches it started."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CollectionCancelled()


def collect_all(
    page_fetcher: Callable[[int, int], list[T]],
    page_size: int,
    *,
    cancel: CancelToken | None = None,
) -> list[T]:
    """Call ``page_fetcher(offset, page_size)`` until a page comes back short.

    Pages are requested one at a time, so items keep the backend's order.
    A full last page costs one extra request that returns nothing. Any
    fetch error propagates and the partial result is dropped.
    """
    if page_size < 1:
        raise ValueError(f"page_size must be at least 1, got {page_size}")

    items: list[T] = []
    offset = 0
    while True:
        if cancel is not None:
            cancel.raise_if_cancelled()
        page = list(page_fetcher(offset, page_size))
        items.extend(page)
        log.debug("Fetched page at offset %d: %d item(s), %d total", offset, len(page), len(items))
        if len(page) < page_size:
            return items
        offset += page_size
