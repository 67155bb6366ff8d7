"""Shared utilities for database query modules."""

from typing import Iterable, Sequence, TypeVar

T = TypeVar("T")

MAX_BIND_PARAMS = 800


def calculate_rows_per_statement(cols: int) -> int:
    """Calculate how many rows can fit in one statement given column count."""
    return max(1, MAX_BIND_PARAMS // max(1, cols))


def iter_chunks(seq: Sequence[T], n: int) -> Iterable[Sequence[T]]:
    """Yield successive n-sized chunks from seq."""
    for i in range(0, len(seq), n):
        yield seq[i : i + n]


def normalize_paging(page: int | None, page_size: int | None, default_size: int) -> tuple[int, int, int]:
    """Resolve 1-indexed paging, falling back to defaults for values <= 0.

    Returns (page, page_size, offset).
    """
    page = page if page and page > 0 else 1
    page_size = page_size if page_size and page_size > 0 else default_size
    return page, page_size, (page - 1) * page_size
