"""Error taxonomy and the single error-to-response translation layer.

Services raise :class:`ImageServiceError` subclasses and never deal in HTTP
concepts. :func:`install_error_handlers` registers the handlers that turn
them into JSON responses using :data:`STATUS_BY_ERROR`.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ImageServiceError(Exception):
    """Base class for every error the service reports to callers."""

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidInput(ImageServiceError):
    """Malformed id, missing file or malformed annotation shape."""


class Unauthorized(ImageServiceError):
    """Missing or invalid credential."""


class Forbidden(ImageServiceError):
    """Caller lacks every role the endpoint requires."""

    def __init__(self, message: str, required: list[str], actual: list[str]):
        super().__init__(message, required=list(required), actual=list(actual))


class NotFound(ImageServiceError):
    """Referenced image record does not exist."""


class CompositorFailure(ImageServiceError):
    """Decode, overlay rasterization or encode failed."""


class StorageFailure(ImageServiceError):
    """Backing store error."""


STATUS_BY_ERROR: dict[type[ImageServiceError], int] = {
    InvalidInput: 400,
    Unauthorized: 401,
    Forbidden: 403,
    NotFound: 404,
    CompositorFailure: 500,
    StorageFailure: 500,
}


def status_for(exc: ImageServiceError) -> int:
    """Look up the HTTP status for an error, honouring subclassing."""
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return 500


def error_response(exc: ImageServiceError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        # Details stay in the server log; the caller gets the message only
        return JSONResponse(status_code=status_code, content={"message": exc.message})
    return JSONResponse(
        status_code=status_code,
        content={"message": exc.message, **exc.details},
    )


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request body"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    if location:
        return f"Invalid request body: {location}: {first.get('msg', 'invalid value')}"
    return f"Invalid request body: {first.get('msg', 'invalid value')}"


def install_error_handlers(app: FastAPI) -> None:
    """Register the translation handlers on the application."""

    @app.exception_handler(ImageServiceError)
    async def handle_service_error(request: Request, exc: ImageServiceError):
        if status_for(exc) >= 500:
            logger.error(
                "%s %s failed: %s %s",
                request.method,
                request.url.path,
                type(exc).__name__,
                exc.details or "",
                exc_info=exc.__cause__ or exc,
            )
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return error_response(InvalidInput(_describe_validation_error(exc)))
