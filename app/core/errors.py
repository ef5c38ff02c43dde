import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

class AppError(Exception):
    """Base class for errors the API reports to callers as-is"""
    status_code = 500

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

class NotFoundError(AppError):
    status_code = 404

class ConflictError(AppError):
    status_code = 409

class ValidationError(AppError):
    status_code = 400

class ForbiddenError(AppError):
    status_code = 403

async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, **exc.extra},
    )

def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(AppError, app_error_handler)
