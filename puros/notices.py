"""Transient, dismissible notices shown to the member.

StoreError and NotFoundOrNotOwned never crash a view; they end up here as a
notice the member can dismiss while the view stays usable.
"""

from collections.abc import Callable
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from puros.errors import AuthRequired, NotFoundOrNotOwned, PurosError, ValidationError
from puros.utils import new_id


class NoticeLevel(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Notice(BaseModel):
    """One message on the notice board."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    level: NoticeLevel = NoticeLevel.ERROR
    message: str
    refresh_suggested: bool = False


class NoticeBoard:
    """Ordered list of active notices with optional listeners."""

    def __init__(self) -> None:
        self._notices: list[Notice] = []
        self._listeners: list[Callable[[Notice], None]] = []

    @property
    def notices(self) -> list[Notice]:
        return list(self._notices)

    def __len__(self) -> int:
        return len(self._notices)

    def subscribe(self, listener: Callable[[Notice], None]) -> Callable[[], None]:
        """Register a listener for new notices; returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def push(
        self,
        message: str,
        level: NoticeLevel = NoticeLevel.ERROR,
        refresh_suggested: bool = False,
    ) -> Notice:
        notice = Notice(level=level, message=message, refresh_suggested=refresh_suggested)
        self._notices.append(notice)
        for listener in list(self._listeners):
            listener(notice)
        return notice

    def push_error(self, error: PurosError, fallback: str = "Something went wrong") -> Notice:
        """Turn an error into a notice.

        Stale-view errors suggest a refresh; infrastructure errors get the
        generic ``fallback`` message so store internals never leak.
        """
        if isinstance(error, NotFoundOrNotOwned):
            return self.push(
                str(error) or "That item no longer exists or isn't yours",
                level=NoticeLevel.WARNING,
                refresh_suggested=True,
            )
        if isinstance(error, (AuthRequired, ValidationError)):
            return self.push(str(error), level=NoticeLevel.WARNING)
        return self.push(fallback)

    def dismiss(self, notice_id: str) -> bool:
        for i, notice in enumerate(self._notices):
            if notice.id == notice_id:
                del self._notices[i]
                return True
        return False

    def clear(self) -> None:
        self._notices.clear()

    def latest(self) -> Notice | None:
        return self._notices[-1] if self._notices else None


__all__ = ["Notice", "NoticeBoard", "NoticeLevel"]
