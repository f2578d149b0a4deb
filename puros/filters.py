"""Feed filter/sort state and the staged filter panel.

The panel keeps two copies of the criteria: ``active`` drives the feed query
and ``pending`` is what the member is editing. Only :meth:`FilterPanel.apply`
moves pending into active, so the displayed feed never reflects a half-edited
filter.

Example:
    >>> panel = FilterPanel()
    >>> panel.open_panel()
    >>> panel.edit_pending("rating_floor", 4)
    >>> panel.active.rating_floor is None
    True
    >>> panel.apply()
    True
    >>> panel.active_filter_count()
    1
"""

from collections.abc import Callable
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from puros.config import DateRange, SortKey
from puros.errors import ValidationError
from puros.logging import logger

RatingFloor = Literal[1, 2, 3, 4]


class FilterState(BaseModel):
    """Feed filter and sort criteria.

    Absence (``None`` or an empty string) means "no constraint".

    Attributes:
        rating_floor: Lower bound of the rating filter (1-4)
        date_range: Only show reviews smoked within this bucket
        name_substring: Case-insensitive cigar name match
        sort_key: Feed ordering
    """

    model_config = ConfigDict(frozen=True, validate_assignment=True)

    rating_floor: Optional[RatingFloor] = None
    date_range: Optional[DateRange] = None
    name_substring: str = ""
    sort_key: SortKey = SortKey.NEWEST

    @field_validator("rating_floor", "date_range", mode="before")
    @classmethod
    def _blank_is_unset(cls, v: Any) -> Any:
        if v == "" or v == "all":
            return None
        if isinstance(v, str) and v.isdigit():
            return int(v)
        return v

    @field_validator("name_substring", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    def active_count(self) -> int:
        """Number of fields that differ from their unset value."""
        count = 0
        if self.rating_floor is not None:
            count += 1
        if self.date_range is not None:
            count += 1
        if self.name_substring:
            count += 1
        if self.sort_key != SortKey.NEWEST:
            count += 1
        return count


class FilterPanel:
    """Two-phase filter editor.

    Args:
        on_apply: Callback invoked with the new active state after
            :meth:`apply`; the feed uses it to reset to page 1 and refetch.
        initial: Starting active state (defaults to all-unset)
    """

    def __init__(
        self,
        on_apply: Callable[[FilterState], None] | None = None,
        initial: FilterState | None = None,
    ):
        self.active = initial or FilterState()
        self.pending = self.active
        self.is_open = False
        self._on_apply = on_apply

    def open_panel(self) -> None:
        """Copy active into pending and show the panel."""
        self.pending = self.active
        self.is_open = True

    def close_panel(self) -> None:
        """Hide the panel, discarding pending edits."""
        self.is_open = False

    def edit_pending(self, field: str, value: Any) -> None:
        """Update one pending field.

        Raises:
            ValidationError: If ``field`` is not a filter field or the value
                cannot be coerced
        """
        if field not in FilterState.model_fields:
            raise ValidationError(f"Unknown filter field: {field}", field=field)
        try:
            self.pending = FilterState.model_validate(
                {**self.pending.model_dump(), field: value}
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid value for {field}: {value!r}", field=field) from e

    def clear_pending(self) -> None:
        """Reset pending to the all-unset default."""
        self.pending = FilterState()

    def apply(self) -> bool:
        """Commit pending into active and close the panel.

        Returns:
            True if the active state changed
        """
        changed = self.pending != self.active
        self.active = self.pending
        self.is_open = False
        logger.debug(f"Filters applied: {self.active.model_dump()} (changed={changed})")
        if self._on_apply is not None:
            self._on_apply(self.active)
        return changed

    def active_filter_count(self) -> int:
        """Badge count of non-default active fields."""
        return self.active.active_count()


__all__ = ["FilterPanel", "FilterState", "RatingFloor"]
