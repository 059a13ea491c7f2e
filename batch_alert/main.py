from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette import status

from batch_alert.api.routers import auth as auth_router
from batch_alert.api.routers import batches as batches_router
from batch_alert.api.routers import notifications as notifications_router
from batch_alert.api.routers import users as users_router
from batch_alert.api.routers import webhooks as webhooks_router
from batch_alert.core.config import get_settings
from batch_alert.core.db import dispose_engine, get_engine
from batch_alert.core.errors import (
    AuthorizationError,
    BatchAlertError,
    ConflictError,
    RecordNotFoundError,
    StoreError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_ERROR_STATUS: tuple[tuple[type[BatchAlertError], int], ...] = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (RecordNotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (StoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await get_engine()
    yield
    await dispose_engine()


settings = get_settings()
app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.include_router(auth_router.router)
app.include_router(batches_router.router)
app.include_router(webhooks_router.router)
app.include_router(notifications_router.router)
app.include_router(users_router.router)


@app.exception_handler(BatchAlertError)
async def batch_alert_error_handler(request: Request, exc: BatchAlertError) -> JSONResponse:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


@app.get("/health", include_in_schema=False)
async def health() -> dict[str, str]:
    return {"status": "ok"}
