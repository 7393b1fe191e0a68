"""
Global Exception Handling

Typed errors for every failure domain of the pipeline (validation, blob
storage, task persistence, message transport, image decoding) and the
FastAPI handlers that turn them into structured error responses.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.core.logging import get_logger, task_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class ImageryBaseException(Exception):
    """Base exception for the imagery pipeline."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        task_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.task_id = task_id or task_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(ImageryBaseException):
    """Raised when an upload is rejected before any side effect."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class NotFoundError(ImageryBaseException):
    """Raised when a task record does not exist."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=404, **kwargs)


class DecodeError(ImageryBaseException):
    """Raised when a stored blob cannot be decoded as an image."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=422, **kwargs)


class StorageError(ImageryBaseException):
    """Raised when blob storage operations fail."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


class PersistenceError(ImageryBaseException):
    """Raised when the task store fails after retries."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


class TransportError(ImageryBaseException):
    """Raised when the message channel fails after retries."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=503, **kwargs)


# =============================================================================
# Exception Handlers
# =============================================================================

def _error_body(exc: ImageryBaseException) -> Dict[str, Any]:
    return {
        "error": exc.message,
        "task_id": exc.task_id or task_id_var.get(),
        "code": exc.code,
        "stage": exc.stage,
        "details": exc.details,
        "timestamp": datetime.utcnow().isoformat() + "Z"
    }


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(ImageryBaseException)
    async def imagery_exception_handler(request: Request, exc: ImageryBaseException):
        log = logger.warning if exc.code < 500 else logger.error
        log(
            "imagery_exception",
            error=exc.message,
            error_type=type(exc).__name__,
            code=exc.code,
            stage=exc.stage,
            details=exc.details,
            path=str(request.url.path)
        )

        return JSONResponse(status_code=exc.code, content=_error_body(exc))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "task_id": task_id_var.get(),
                "code": 500,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        )
