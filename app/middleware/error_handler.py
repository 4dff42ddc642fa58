"""
Global error handling middleware.

Maps domain exceptions raised while serving a request to JSON error
responses of the form ``{"error": ..., "detail": ...}``.
"""
import logging
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable

from app.services.application.map_service import SessionNotFoundError


logger = logging.getLogger(__name__)


# Checked in order; the first matching exception type wins
ERROR_RESPONSES = (
    (SessionNotFoundError, status.HTTP_404_NOT_FOUND, "Session not found", logging.INFO),
    (ValueError, status.HTTP_400_BAD_REQUEST, "Invalid request", logging.WARNING),
)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Converts exceptions escaping the routers into error responses.

    Unknown view sessions become 404, invalid interactions and viewport
    bounds become 400, anything else a generic 500.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        try:
            return await call_next(request)
        except Exception as e:
            return self._error_response(request, e)

    def _error_response(self, request: Request, error: Exception) -> JSONResponse:
        context = {"path": request.url.path, "method": request.method}

        for error_type, status_code, label, level in ERROR_RESPONSES:
            if isinstance(error, error_type):
                logger.log(level, f"{label}: {str(error)}", extra=context)
                return JSONResponse(
                    status_code=status_code,
                    content={"error": label, "detail": str(error)},
                )

        logger.exception(f"Unhandled exception: {str(error)}", extra=context)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": "An unexpected error occurred",
            },
        )
