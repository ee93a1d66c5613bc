from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jobtrail.api.routes import router as api_router
from jobtrail.api.schemas import ErrorResponse
from jobtrail.config import get_settings
from jobtrail.core.runtime import TrailServices
from jobtrail.errors import ConflictError, NotFoundError, TrailError, ValidationError

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[TrailError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
]


def status_for(exc: TrailError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def create_app(services: TrailServices | None = None) -> FastAPI:
    settings = services.settings if services is not None else get_settings()

    app = FastAPI(title=settings.app_name)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TrailError)
    def _trail_error(request: Request, exc: TrailError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        body = ErrorResponse(error=type(exc).__name__, message=exc.message, details=exc.details)
        return JSONResponse(status_code=status, content=body.model_dump(mode="json"))

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    app.include_router(api_router)
    return app
