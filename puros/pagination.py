"""Feed paginator.

Owns ``page_number``, ``page_size`` and ``total_count`` and derives the page
count and row range. Every navigation call that moves the page invokes the
``on_change`` callback so the owning view can refetch.
"""

import math
from collections.abc import Callable

from puros.config import settings
from puros.errors import ValidationError
from puros.query import page_range


class Paginator:
    """1-based page navigation over a counted result set.

    Args:
        page_size: Rows per page (defaults to settings.default_page_size)
        on_change: Called with no arguments whenever the page or page size
            changes

    Example:
        >>> p = Paginator(page_size=10)
        >>> p.set_total(25)
        >>> p.page_count()
        3
        >>> p.last(); p.page_number
        3
        >>> p.range()
        (20, 29)
    """

    def __init__(self, page_size: int | None = None, on_change: Callable[[], None] | None = None):
        size = page_size if page_size is not None else settings.default_page_size
        if size < 1:
            raise ValidationError("Page size must be at least 1", field="page_size")
        self.page_number = 1
        self.page_size = size
        self.total_count = 0
        self._on_change = on_change

    def page_count(self) -> int:
        """Number of pages; at least 1 even when nothing matches."""
        return max(1, math.ceil(self.total_count / self.page_size))

    def range(self) -> tuple[int, int]:
        """Inclusive zero-based row range of the current page."""
        return page_range(self.page_number, self.page_size)

    def has_next(self) -> bool:
        return self.page_number < self.page_count()

    def has_prev(self) -> bool:
        return self.page_number > 1

    def set_total(self, total_count: int) -> None:
        """Record the authoritative match count.

        The page number is re-clamped; the caller refetches when it moves.
        """
        self.total_count = max(0, total_count)
        self.page_number = min(self.page_number, self.page_count())

    def set_page_size(self, n: int) -> None:
        """Change the page size and return to page 1."""
        if n < 1:
            raise ValidationError("Page size must be at least 1", field="page_size")
        self.page_size = n
        self.page_number = 1
        self._changed()

    def go_to(self, n: int) -> None:
        """Jump to page ``n``, clamped into ``[1, page_count()]``."""
        self.page_number = min(max(1, n), self.page_count())
        self._changed()

    def reset(self) -> None:
        """Return to page 1 (used when the active filters change)."""
        self.go_to(1)

    def next(self) -> None:
        if self.has_next():
            self.go_to(self.page_number + 1)

    def prev(self) -> None:
        if self.has_prev():
            self.go_to(self.page_number - 1)

    def first(self) -> None:
        if self.has_prev():
            self.go_to(1)

    def last(self) -> None:
        if self.has_next():
            self.go_to(self.page_count())

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()


__all__ = ["Paginator"]
