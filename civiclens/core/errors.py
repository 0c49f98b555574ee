"""
API error types and their JSON rendering.

Every failure that should reach the client as a structured response is raised
as an ``APIError``. The handlers registered in ``civiclens.main`` turn it into
the ``{error, details?, hint?, code?, message?}`` envelope.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class APIError(Exception):
    status_code = 500

    def __init__(
        self,
        error: str,
        status_code: Optional[int] = None,
        details: Optional[Any] = None,
        hint: Optional[str] = None,
        code: Optional[str] = None,
        message: Optional[str] = None,
    ):
        super().__init__(error)
        if status_code is not None:
            self.status_code = status_code
        self.error = error
        self.details = details
        self.hint = hint
        self.code = code
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "error": self.error,
            "details": self.details,
            "hint": self.hint,
            "code": self.code,
            "message": self.message,
        }
        return {key: value for key, value in body.items() if value is not None}


class ValidationError(APIError):
    status_code = 400


class AuthenticationError(APIError):
    status_code = 401


class AuthorizationError(APIError):
    status_code = 403


class NotFoundError(APIError):
    status_code = 404


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _describe_validation_error(err: Dict[str, Any]) -> APIError:
    loc: List[Any] = [part for part in err.get("loc", ()) if part != "body"]
    field = loc[-1] if loc and isinstance(loc[-1], str) else None

    if field is None:
        return ValidationError("Invalid request body", details=err.get("msg"))

    # Schema validators raise ValueError with a client-facing message
    if err.get("type") == "value_error" and "error" in err.get("ctx", {}):
        return ValidationError(str(err["ctx"]["error"]))

    # Absent, null and empty-string values are all reported as missing
    missing = (
        err.get("type") in ("missing", "string_too_short")
        or ("input" in err and err["input"] is None)
    )
    if missing:
        return ValidationError(f"Missing field: {field}")
    return ValidationError(f"Invalid field: {field}", details=err.get("msg"))


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    if not errors:
        error = ValidationError("Invalid request")
    else:
        error = _describe_validation_error(errors[0])
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Generic 500 envelope; the exception text is only exposed in development."""
    logger.error(f"💥 Unhandled exception on {request.url.path}: {exc}", exc_info=exc)
    content = {"error": "Internal Server Error"}
    settings = getattr(request.app.state, "settings", None)
    if settings is not None and settings.is_development:
        content["message"] = str(exc)
    return JSONResponse(status_code=500, content=content)
