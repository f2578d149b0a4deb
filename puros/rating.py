"""Star-rating widget math.

Five stars, each split into a left half (``index + 0.5``) and a right half
(``index + 1``). A hover preview overrides the stored rating while the
pointer is over the widget.
"""

from enum import StrEnum
from typing import Optional

STAR_COUNT = 5


class StarFill(StrEnum):
    FULL = "full"
    HALF = "half"
    EMPTY = "empty"


def rating_from_pointer(star_index: int, offset: float, width: float) -> float:
    """Rating selected by a pointer at ``offset`` pixels into star ``star_index``.

    Example:
        >>> rating_from_pointer(3, 4, 20)
        3.5
        >>> rating_from_pointer(3, 15, 20)
        4.0
    """
    if not 0 <= star_index < STAR_COUNT:
        raise ValueError(f"star_index must be between 0 and {STAR_COUNT - 1}")
    if width <= 0:
        raise ValueError("width must be positive")
    return star_index + 0.5 if offset < width / 2 else float(star_index + 1)


def display_rating(rating: float, hovered: Optional[float] = None) -> float:
    """Rating to draw: the hover preview if any, otherwise the stored value."""
    return hovered if hovered is not None else rating


def star_fill(rating: float, star_index: int) -> StarFill:
    """Fill of star ``star_index`` (0-based) for a displayed rating."""
    if rating >= star_index + 1:
        return StarFill.FULL
    if rating >= star_index + 0.5:
        return StarFill.HALF
    return StarFill.EMPTY


def stars(rating: float, hovered: Optional[float] = None) -> list[StarFill]:
    """Fill of all five stars.

    Example:
        >>> [s.value for s in stars(3.5)]
        ['full', 'full', 'full', 'half', 'empty']
    """
    shown = display_rating(rating, hovered)
    return [star_fill(shown, i) for i in range(STAR_COUNT)]


__all__ = ["STAR_COUNT", "StarFill", "display_rating", "rating_from_pointer", "star_fill", "stars"]
