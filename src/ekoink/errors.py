"""Error types and the JSON envelopes shared by every route."""

import logging
from typing import Any, Dict

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Caller-facing failure rendered verbatim as the response body."""

    def __init__(self, status_code: int, content: Dict[str, Any]):
        super().__init__(content.get("message") or content.get("error"))
        self.status_code = status_code
        self.content = content


def api_error(message: str, status: int = 400, details: Any = None) -> ApiError:
    """Build the versioned API error envelope: ``{error: true, message, details?}``."""
    content: Dict[str, Any] = {"error": True, "message": message}
    if details:
        content["details"] = details
    return ApiError(status, content)


def dashboard_error(message: str, status: int) -> ApiError:
    """Build the dashboard error body: ``{error: message}``."""
    return ApiError(status, {"error": message})


def api_success(data: Any, status: int = 200) -> JSONResponse:
    """Versioned API success envelope: ``{success: true, data}``."""
    return JSONResponse(
        status_code=status,
        content={"success": True, "data": jsonable_encoder(data)},
    )


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.content))


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Request body failed schema validation."""
    details = [
        {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    if request.url.path.startswith("/api/v1/"):
        content: Dict[str, Any] = {
            "error": True,
            "message": "Invalid request body",
            "details": details,
        }
    else:
        content = {"error": details[0]["message"] if details else "Invalid request body"}
    return JSONResponse(status_code=400, content=content)


async def catch_unhandled_errors(request: Request, call_next):
    """Convert any uncaught handler error into a generic 500.

    The stack trace is logged; nothing from the exception reaches the caller.
    """
    try:
        return await call_next(request)
    except Exception:
        logger.exception(f"Unhandled error in {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"error": True, "message": "Internal server error"},
        )
