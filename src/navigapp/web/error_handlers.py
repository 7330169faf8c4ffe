import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from navigapp.errors import (
    AccessDeniedError,
    AuthenticationError,
    DatabaseError,
    NotFoundError,
    UserError,
    ValidationError,
)

logger = logging.getLogger(__name__)

HTTP_ERROR_CODES = {404: NotFoundError.code, 405: "METHOD_NOT_ALLOWED"}


def create_json_error_response(status_code: int, message: str, code: str) -> JSONResponse:
    """Create the failure envelope: {success: false, error: {message, code}}."""
    return JSONResponse(status_code=status_code, content={"success": False, "error": {"message": message, "code": code}})


async def user_error_handler(_: Request, exc: Exception) -> Response:
    """Handle all UserError subclasses with appropriate status codes."""
    if isinstance(exc, AuthenticationError):
        status_code = 401
    elif isinstance(exc, AccessDeniedError):
        status_code = 403
    elif isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, ValidationError):
        status_code = 400
    else:
        # Default for any other UserError subclass
        status_code = 400

    code = exc.code if isinstance(exc, UserError) else "BAD_REQUEST"
    return create_json_error_response(status_code=status_code, message=str(exc), code=code)


async def http_exception_handler(_: Request, exc: Exception) -> Response:
    """Wrap routing errors (unknown path, wrong method) in the failure envelope."""
    if not isinstance(exc, StarletteHTTPException):
        return create_json_error_response(status_code=500, message="An unexpected error occurred.", code="INTERNAL_ERROR")
    code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
    response = create_json_error_response(status_code=exc.status_code, message=str(exc.detail), code=code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def request_validation_handler(_: Request, exc: Exception) -> Response:
    """Handle malformed request bodies (400)."""
    message = "Invalid request"
    if isinstance(exc, RequestValidationError) and exc.errors():
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg', 'invalid value')}" if location else str(first.get("msg", message))
    return create_json_error_response(status_code=400, message=message, code=ValidationError.code)


async def database_error_handler(_: Request, exc: Exception) -> Response:
    """Handle persistence failures (500); detail goes to logs only."""
    logger.error("Database error: %s", exc, exc_info=exc)
    return create_json_error_response(status_code=500, message=DatabaseError.public_message, code=DatabaseError.code)


async def general_exception_handler(_: Request, exc: Exception) -> Response:
    """Handle unexpected errors (500)."""
    logger.exception("Unexpected error: %s", exc)
    return create_json_error_response(status_code=500, message="An unexpected error occurred.", code="INTERNAL_ERROR")
