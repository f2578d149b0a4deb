"""HTTP surface for Puros.

A small FastAPI application exposing the follow graph, the new-post fan-out,
the review feed and Prometheus metrics. Bearer tokens are resolved through an
:class:`~puros.interfaces.IIdentityProvider`; every error body has the shape
``{"error": "<message>"}``.

Routes:
    POST   /api/follow                  Follow a member
    DELETE /api/follow                  Unfollow a member
    GET    /api/follow/stats            Follower / following counts
    GET    /api/follow/status           Whether the caller follows a member
    POST   /api/notifications/new-post  E-mail followers about a review
    GET    /api/reviews                 Filtered, sorted, paginated feed
    GET    /metrics                     Prometheus exposition

Example:
    >>> from puros.server import create_app
    >>> app = create_app()
    >>> # uvicorn.run(app, host="127.0.0.1", port=8000)
"""

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from puros import __version__
from puros.config import settings
from puros.database import DatabaseManager
from puros.errors import AuthRequired, NotFoundOrNotOwned, PurosError, ValidationError
from puros.filters import FilterState
from puros.interfaces import IIdentityProvider, INotificationSink, IRelationalStore
from puros.logging import logger, request_context, set_request_context
from puros.metrics import (
    CONTENT_TYPE_LATEST,
    errors_total,
    generate_metrics_output,
    http_request_duration_seconds,
    http_requests_total,
)
from puros.models import Viewer
from puros.notifications import NotificationDispatcher, build_notification_sink
from puros.pagination import Paginator
from puros.query import compose, page_range
from puros.reviews import ReviewService
from puros.social import FanOutService, FollowService
from puros.utils import new_id

INTERNAL_ERROR = "Internal server error"

_STATUS_CODES: list[tuple[type[PurosError], int]] = [
    (AuthRequired, 401),
    (ValidationError, 400),
    (NotFoundOrNotOwned, 404),
]


# =============================================================================
# Identity
# =============================================================================


class StaticIdentityProvider:
    """Resolves tokens from a fixed ``token -> Viewer`` table."""

    def __init__(self, tokens: dict[str, Viewer] | None = None):
        self.tokens = dict(tokens or {})

    async def resolve(self, token: str) -> Viewer | None:
        return self.tokens.get(token)


class DevIdentityProvider:
    """Development-only provider that trusts ``<user_id>:<email>`` tokens."""

    async def resolve(self, token: str) -> Viewer | None:
        user_id, _, email = token.partition(":")
        if not user_id or not email:
            return None
        return Viewer(id=user_id, email=email)


def default_identity_provider() -> IIdentityProvider:
    if settings.is_development:
        logger.warning("Using the development identity provider; tokens are not verified")
        return DevIdentityProvider()
    logger.warning("No identity provider configured; every request is anonymous")
    return StaticIdentityProvider()


# =============================================================================
# Request Bodies
# =============================================================================


class FollowRequest(BaseModel):
    following_id: Optional[str] = None


class NewPostRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    review_id: Optional[str] = Field(None, alias="reviewId")


# =============================================================================
# Services
# =============================================================================


class Services:
    """Everything a request handler needs, built once per application."""

    def __init__(
        self,
        store: IRelationalStore,
        sink: INotificationSink,
        identity: IIdentityProvider,
    ):
        self.store = store
        self.identity = identity
        self.dispatcher = NotificationDispatcher(sink)
        self.follows = FollowService(store, self.dispatcher)
        self.fan_out = FanOutService(store, sink)
        self.reviews = ReviewService(store)


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_viewer(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Viewer | None:
    """Viewer for the request's bearer token, or None when anonymous."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    viewer = await get_services(request).identity.resolve(token)
    if viewer is not None:
        set_request_context(viewer_id=viewer.id)
    return viewer


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# =============================================================================
# Routes
# =============================================================================

router = APIRouter(prefix="/api")


@router.post("/follow", status_code=201)
async def follow(
    body: Optional[FollowRequest] = None,
    viewer: Viewer | None = Depends(get_viewer),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    result = await services.follows.follow(viewer, body.following_id if body else None)
    return {"data": result.model_dump(mode="json")}


@router.delete("/follow")
async def unfollow(
    body: Optional[FollowRequest] = None,
    viewer: Viewer | None = Depends(get_viewer),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    await services.follows.unfollow(viewer, body.following_id if body else None)
    return {"message": "Successfully unfollowed user"}


@router.get("/follow/stats")
async def follow_stats(
    user_id: Optional[str] = None,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    if not user_id:
        raise ValidationError("user_id is required", field="user_id")
    stats = await services.follows.stats(user_id)
    return stats.model_dump()


@router.get("/follow/status")
async def follow_status(
    user_id: Optional[str] = None,
    viewer: Viewer | None = Depends(get_viewer),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    if not user_id:
        raise ValidationError("user_id is required", field="user_id")
    status = await services.follows.status(viewer, user_id)
    return status.model_dump(by_alias=True)


@router.post("/notifications/new-post")
async def notify_new_post(
    body: Optional[NewPostRequest] = None,
    viewer: Viewer | None = Depends(get_viewer),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    result = await services.fan_out.notify_new_post(viewer, body.review_id if body else None)
    return result.model_dump(by_alias=True)


@router.get("/reviews")
async def list_reviews(
    rating: Optional[str] = None,
    date_range: Optional[str] = None,
    name: str = "",
    sort: str = "newest",
    user_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=100),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """One page of the feed.

    When ``page`` is past the last page it is clamped and the last page is
    returned instead.
    """
    try:
        active = FilterState(
            rating_floor=rating, date_range=date_range, name_substring=name, sort_key=sort
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid filter: {e.errors()[0]['msg']}") from e

    paginator = Paginator(page_size=page_size)
    requested = page_range(page, paginator.page_size)
    result = await services.reviews.fetch_page(compose(active, user_id, requested))
    paginator.set_total(result.total_count)
    paginator.go_to(page)
    if paginator.range() != requested:
        result = await services.reviews.fetch_page(compose(active, user_id, paginator.range()))
        paginator.set_total(result.total_count)

    return {
        "rows": [row.model_dump(mode="json") for row in result.rows],
        "totalCount": paginator.total_count,
        "page": paginator.page_number,
        "pageSize": paginator.page_size,
        "pageCount": paginator.page_count(),
    }


# =============================================================================
# Application
# =============================================================================


def create_app(
    store: IRelationalStore | None = None,
    identity: IIdentityProvider | None = None,
    sink: INotificationSink | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        store: Relational store; a :class:`DatabaseManager` on
            ``settings.database_path`` is opened (and closed) when omitted
        identity: Bearer token resolver (defaults by environment)
        sink: Notification sink (defaults to e-mail when configured)

    Returns:
        Configured application; services are ready once the lifespan starts
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned: DatabaseManager | None = None
        active_store = store
        if active_store is None:
            owned = DatabaseManager()
            owned.initialize()
            active_store = owned

        services = Services(
            active_store,
            sink if sink is not None else build_notification_sink(),
            identity if identity is not None else default_identity_provider(),
        )
        app.state.services = services
        logger.info("Puros API started")

        yield

        await services.dispatcher.close()
        if owned is not None:
            owned.close()
        logger.info("Puros API stopped")

    app = FastAPI(
        title="Puros",
        description="Cigar reviews, follows and notifications.",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(router)

    @app.middleware("http")
    async def observe_requests(request: Request, call_next: Any) -> Response:
        request_id = request.headers.get("x-request-id") or new_id()
        start = time.perf_counter()
        status = "500"
        with request_context(request_id=request_id, viewer_id=None, operation=None):
            try:
                response = await call_next(request)
                status = str(response.status_code)
                response.headers["x-request-id"] = request_id
                return response
            finally:
                route = request.scope.get("route")
                path = getattr(route, "path", "unmatched")
                http_requests_total.labels(status=status, path=path, method=request.method).inc()
                http_request_duration_seconds.labels(
                    status=status, path=path, method=request.method
                ).observe(time.perf_counter() - start)

    @app.exception_handler(PurosError)
    async def handle_puros_error(request: Request, exc: PurosError) -> JSONResponse:
        for error_type, status_code in _STATUS_CODES:
            if isinstance(exc, error_type):
                return _error(status_code, str(exc))
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        errors_total.labels(error_type=type(exc).__name__, component="http").inc()
        return _error(500, INTERNAL_ERROR)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = errors[0]["msg"] if errors else "Invalid request"
        return _error(400, message)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        errors_total.labels(error_type=type(exc).__name__, component="http").inc()
        return _error(500, INTERNAL_ERROR)

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {"service": "puros", "version": __version__}

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(generate_metrics_output(), media_type=CONTENT_TYPE_LATEST)

    return app


__all__ = [
    "DevIdentityProvider",
    "Services",
    "StaticIdentityProvider",
    "create_app",
    "default_identity_provider",
    "router",
]
