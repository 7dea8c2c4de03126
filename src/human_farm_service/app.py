"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from human_farm_service.config import get_settings
from human_farm_service.core.exceptions import register_exception_handlers
from human_farm_service.core.lifespan import lifespan
from human_farm_service.core.middleware import RequestValidationMiddleware
from human_farm_service.routers import (
    auth,
    escrow,
    health,
    humans,
    messages,
    skills,
    stats,
    tasks,
    users,
)
from human_farm_service.schemas import ErrorResponse

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    status: {"model": ErrorResponse} for status in (400, 401, 403, 404, 409, 500)
}


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI instance with all routers registered.
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
        responses=_ERROR_RESPONSES,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(auth.router, tags=["Accounts"])
    app.include_router(users.router, tags=["Accounts"])
    app.include_router(tasks.router, tags=["Tasks"])
    app.include_router(escrow.router, tags=["Escrow"])
    app.include_router(messages.router, tags=["Messages"])
    app.include_router(humans.router, tags=["Humans"])
    app.include_router(stats.router, tags=["Stats"])
    app.include_router(skills.router, tags=["Catalogue"])

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
