from typing import Any, Literal

from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi
from pydantic import BaseModel, Field


def set_custom_openapi(app: FastAPI) -> None:
    def custom_openapi() -> dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        openapi_schema = get_openapi(
            title="Navigapp API",
            version="0.1.0",
            summary="Telegram Mini App page builder: bot-to-webapp authentication",
            routes=app.routes,
        )

        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "BearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
                "description": "Access token issued by /auth/bot/complete, /auth/telegram or /auth/refresh",
            },
        }

        # Apply security globally (will be overridden for public endpoints)
        openapi_schema["security"] = [{"BearerAuth": []}]

        public_endpoints = {
            ("POST", "/api/v1/auth/bot/initiate"),
            ("POST", "/api/v1/auth/bot/validate"),
            ("POST", "/api/v1/auth/bot/complete"),
            ("POST", "/api/v1/auth/refresh"),
            ("POST", "/api/v1/auth/telegram"),
            ("GET", "/health"),
        }

        for path, path_item in openapi_schema["paths"].items():
            for method, operation in path_item.items():
                if (method.upper(), path) in public_endpoints:
                    operation["security"] = []

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[method-assign]


class ApiResponse[T](BaseModel):
    """Standard success envelope."""

    success: Literal[True] = True
    data: T


class ErrorBody(BaseModel):
    message: str = Field(..., description="Human-readable error message")
    code: str = Field(..., description="Machine-readable error code")


class ErrorResponse(BaseModel):
    """Standard error response format."""

    success: Literal[False] = False
    error: ErrorBody

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"success": False, "error": {"message": "Invalid or expired auth hash", "code": "AUTH_ERROR"}},
                {"success": False, "error": {"message": "Session expired. Please sign in again", "code": "SESSION_EXPIRED"}},
                {"success": False, "error": {"message": "Something went wrong. Please try again", "code": "DATABASE_ERROR"}},
            ]
        }
    }
