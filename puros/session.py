"""Current-viewer provider.

Consumers read an immutable :class:`~puros.models.Viewer` snapshot from
:meth:`ViewerSession.current` and register for sign-in/sign-out events with
:meth:`ViewerSession.subscribe`. Each application (or test) owns its own
session object; there is no module-level viewer.

Given a store, :meth:`ViewerSession.start` is the session-start hook: it signs
the member in and runs :func:`~puros.profiles.ensure_profile` once per member.
"""

from collections.abc import Callable

from puros.interfaces import IRelationalStore
from puros.logging import logger, set_request_context
from puros.models import Profile, Viewer
from puros.profiles import ensure_profile

Listener = Callable[[Viewer | None], None]


class ViewerSession:
    """Holds the signed-in member and notifies listeners on change.

    Example:
        >>> session = ViewerSession()
        >>> seen = []
        >>> unsubscribe = session.subscribe(seen.append)
        >>> session.sign_in(Viewer(id="u1", email="a@b.c"))
        >>> session.current().id
        'u1'
        >>> session.sign_out()
        >>> seen
        [Viewer(id='u1', email='a@b.c'), None]
    """

    def __init__(self, viewer: Viewer | None = None, store: IRelationalStore | None = None):
        self._viewer = viewer
        self._store = store
        self._listeners: list[Listener] = []
        self._profiles: dict[str, Profile] = {}

    def current(self) -> Viewer | None:
        return self._viewer

    @property
    def is_authenticated(self) -> bool:
        return self._viewer is not None

    @property
    def profile(self) -> Profile | None:
        """Profile ensured for the current viewer, if :meth:`start` ran."""
        if self._viewer is None:
            return None
        return self._profiles.get(self._viewer.id)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self, viewer: Viewer) -> Profile | None:
        """Sign ``viewer`` in and make sure they have a profile row.

        The profile check runs once per member for the life of the session.
        Without a store only the sign-in happens.

        Raises:
            StoreError: If the profile could not be read or created; the
                viewer stays signed in and the next call retries
        """
        self.sign_in(viewer)
        if self._store is None:
            return None
        if viewer.id not in self._profiles:
            self._profiles[viewer.id] = await ensure_profile(self._store, viewer)
        return self._profiles[viewer.id]

    def sign_in(self, viewer: Viewer) -> None:
        self._set(viewer)

    def sign_out(self) -> None:
        self._set(None)

    def _set(self, viewer: Viewer | None) -> None:
        if viewer == self._viewer:
            return
        self._viewer = viewer
        if viewer is not None:
            set_request_context(viewer_id=viewer.id)
        logger.debug(f"Viewer changed: {viewer.id if viewer else 'signed out'}")
        for listener in list(self._listeners):
            listener(viewer)


__all__ = ["ViewerSession"]
