"""Feed query composition.

:func:`compose` is a pure function: it turns the active
:class:`~puros.filters.FilterState`, an optional profile scope and a page
range into a :class:`Query` description that any relational store can run.
Nothing here talks to a database, so the whole feed query can be asserted on
in unit tests.

Example:
    >>> from datetime import date
    >>> from puros.filters import FilterState
    >>> q = compose(FilterState(rating_floor=4), page_range=(0, 9), today=date(2024, 6, 8))
    >>> [(f.field, f.op.value, f.value) for f in q.filters]
    [('rating', 'gte', 4), ('rating', 'lt', 5)]
    >>> q.count_query().order
    ()
"""

import re
from datetime import date
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from puros.config import DateRange, RatingFilterMode, SortKey, settings
from puros.filters import FilterState
from puros.utils import escape_like, shift_back, utc_today


class FilterOp(StrEnum):
    """Predicate operators supported by every relational store."""

    EQ = "eq"
    GTE = "gte"
    LT = "lt"
    ILIKE = "ilike"


def like_to_regex(pattern: str) -> re.Pattern[str]:
    """Case-insensitive regex for a backslash-escaped LIKE pattern.

    Example:
        >>> bool(like_to_regex("%pad%").fullmatch("Padron 1964"))
        True
    """
    parts: list[str] = []
    chars = iter(pattern)
    for ch in chars:
        if ch == "\\":
            parts.append(re.escape(next(chars, "\\")))
        elif ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


class Filter(BaseModel):
    """A single ``field op value`` predicate; a query ANDs them together."""

    model_config = ConfigDict(frozen=True)

    field: str
    op: FilterOp
    value: Any

    @classmethod
    def eq(cls, field: str, value: Any) -> "Filter":
        return cls(field=field, op=FilterOp.EQ, value=value)

    @classmethod
    def gte(cls, field: str, value: Any) -> "Filter":
        return cls(field=field, op=FilterOp.GTE, value=value)

    @classmethod
    def lt(cls, field: str, value: Any) -> "Filter":
        return cls(field=field, op=FilterOp.LT, value=value)

    @classmethod
    def ilike(cls, field: str, pattern: str) -> "Filter":
        return cls(field=field, op=FilterOp.ILIKE, value=pattern)

    def matches(self, row: dict[str, Any]) -> bool:
        """Evaluate the predicate against an in-memory row."""
        actual = row.get(self.field)
        if actual is None:
            return False
        if self.op == FilterOp.EQ:
            return actual == self.value
        if self.op == FilterOp.GTE:
            return actual >= self.value
        if self.op == FilterOp.LT:
            return actual < self.value
        return like_to_regex(self.value).fullmatch(str(actual)) is not None


class Order(BaseModel):
    """One sort key."""

    model_config = ConfigDict(frozen=True)

    field: str
    descending: bool = False

    @classmethod
    def asc(cls, field: str) -> "Order":
        return cls(field=field)

    @classmethod
    def desc(cls, field: str) -> "Order":
        return cls(field=field, descending=True)


class Query(BaseModel):
    """Inspectable description of a feed query.

    Attributes:
        collection: Collection the query targets
        filters: Conjunction of predicates
        order: Sort keys, most significant first
        range_start: Zero-based first row (inclusive)
        range_end: Zero-based last row (inclusive)
    """

    model_config = ConfigDict(frozen=True)

    collection: str = "reviews"
    filters: tuple[Filter, ...] = ()
    order: tuple[Order, ...] = ()
    range_start: Optional[int] = None
    range_end: Optional[int] = None

    def count_query(self) -> "Query":
        """Same predicates, no ordering or range."""
        return Query(collection=self.collection, filters=self.filters)

    def matches(self, row: dict[str, Any]) -> bool:
        """True if ``row`` satisfies every predicate (range and order ignored)."""
        return all(flt.matches(row) for flt in self.filters)


# Each sort is a total order: the second key breaks ties on the first,
# ``id`` breaks any that remain.
SORT_ORDERS: dict[SortKey, tuple[Order, ...]] = {
    SortKey.NEWEST: (Order.desc("review_date"), Order.desc("created_at")),
    SortKey.OLDEST: (Order.asc("review_date"), Order.asc("created_at")),
    SortKey.RATING_HIGH: (Order.desc("rating"), Order.desc("review_date")),
    SortKey.RATING_LOW: (Order.asc("rating"), Order.desc("review_date")),
    SortKey.NAME: (Order.asc("cigar_name"), Order.desc("review_date")),
}

TIEBREAKER = Order.asc("id")


def sort_order(sort_key: SortKey) -> tuple[Order, ...]:
    """Sort keys for a feed ordering, including the ``id`` tiebreaker."""
    return SORT_ORDERS[SortKey(sort_key)] + (TIEBREAKER,)


def date_floor(date_range: DateRange, today: date) -> date:
    """Earliest review date inside a date-range bucket.

    Example:
        >>> date_floor(DateRange.WEEK, date(2024, 6, 8))
        datetime.date(2024, 6, 1)
    """
    if date_range == DateRange.WEEK:
        return shift_back(today, days=7)
    if date_range == DateRange.MONTH:
        return shift_back(today, months=1)
    return shift_back(today, years=1)


def page_range(page_number: int, page_size: int) -> tuple[int, int]:
    """Inclusive zero-based row range of a 1-based page.

    Example:
        >>> page_range(3, 10)
        (20, 29)
    """
    return page_size * (page_number - 1), page_size * page_number - 1


def rating_filters(rating_floor: int, mode: RatingFilterMode) -> tuple[Filter, ...]:
    """Predicates for a rating floor of ``r``."""
    if mode == RatingFilterMode.FLOOR:
        return (Filter.gte("rating", rating_floor),)
    return (Filter.gte("rating", rating_floor), Filter.lt("rating", rating_floor + 1))


def compose(
    active: FilterState,
    subject_user_id: Optional[str] = None,
    page_range: Optional[tuple[int, int]] = None,
    today: Optional[date] = None,
    rating_mode: Optional[RatingFilterMode] = None,
) -> Query:
    """Build the feed query for the active filter state.

    Args:
        active: Applied filter/sort state
        subject_user_id: Restrict to one author's reviews (profile feed)
        page_range: Inclusive zero-based ``(start, end)`` row range
        today: Reference date for the date filter (defaults to today, UTC)
        rating_mode: Rating floor semantics (defaults to settings)

    Returns:
        Query description; ``count_query()`` gives the matching count query
    """
    filters: list[Filter] = []

    if subject_user_id:
        filters.append(Filter.eq("user_id", subject_user_id))

    if active.rating_floor is not None:
        filters.extend(rating_filters(active.rating_floor, rating_mode or settings.rating_filter_mode))

    name = active.name_substring.strip()
    if name:
        filters.append(Filter.ilike("cigar_name", f"%{escape_like(name)}%"))

    if active.date_range is not None:
        start = date_floor(active.date_range, today or utc_today())
        filters.append(Filter.gte("review_date", start))

    start_row, end_row = page_range if page_range is not None else (None, None)

    return Query(
        collection="reviews",
        filters=tuple(filters),
        order=sort_order(active.sort_key),
        range_start=start_row,
        range_end=end_row,
    )


__all__ = [
    "Filter",
    "FilterOp",
    "Order",
    "Query",
    "SORT_ORDERS",
    "compose",
    "date_floor",
    "like_to_regex",
    "page_range",
    "rating_filters",
    "sort_order",
]
