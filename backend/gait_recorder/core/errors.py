from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gait_recorder.core.logger import get_logger

logger = get_logger(__name__)


class GaitRecorderError(Exception):
    """base exception for gait recorder errors"""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(GaitRecorderError):
    """raised when a required field is missing or malformed"""

    status_code = 400


class NotFound(GaitRecorderError):
    """raised when a session id is unknown or its video file is gone"""

    status_code = 404


class PayloadTooLarge(GaitRecorderError):
    """raised when an upload exceeds the size ceiling"""

    status_code = 413


class StorageError(GaitRecorderError):
    """raised on disk or database failure"""

    status_code = 500


class LockTimeout(StorageError):
    """raised when the advisory write lock is not released in time"""

    status_code = 503


async def gait_recorder_error_handler(
    request: Request, exc: GaitRecorderError
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message} ({exc.details})")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")

    content: dict[str, Any] = {"error": exc.message}
    if exc.details is not None:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GaitRecorderError, gait_recorder_error_handler)
