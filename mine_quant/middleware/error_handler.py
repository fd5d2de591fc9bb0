"""
Global error handling middleware.
"""
import logging
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable

from mine_quant.infrastructure.external_api_client import ExternalAPIError
from mine_quant.services.domain.quantitative_orchestrator import (
    BaselineNotLoadedError,
    SessionClosedError,
)


logger = logging.getLogger(__name__)


def _error_response(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "detail": detail})


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Catch exceptions that escape the routers and map them to JSON errors.

    Upstream failures become 502 (upstream 4xx keep their code), session
    conflicts 409, missing lookups 404 and bad input 400.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        context = {"path": request.url.path, "method": request.method}
        try:
            return await call_next(request)

        except ExternalAPIError as e:
            logger.error(f"Upstream call failed: {e.message}", extra={**context, "status_code": e.status_code})
            status_code = e.status_code if 400 <= e.status_code < 500 else status.HTTP_502_BAD_GATEWAY
            return _error_response(status_code, "External API error", e.message)

        except (BaselineNotLoadedError, SessionClosedError) as e:
            logger.warning(f"Session conflict: {e}", extra=context)
            return _error_response(status.HTTP_409_CONFLICT, "Session conflict", str(e))

        except LookupError as e:
            logger.info(f"Not found: {e}", extra=context)
            return _error_response(status.HTTP_404_NOT_FOUND, "Not found", str(e))

        except ValueError as e:
            logger.warning(f"Validation error: {e}", extra=context)
            return _error_response(status.HTTP_400_BAD_REQUEST, "Invalid request", str(e))

        except Exception as e:
            logger.exception(f"Unhandled exception: {e}", extra=context)
            return _error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Internal server error",
                "An unexpected error occurred",
            )
