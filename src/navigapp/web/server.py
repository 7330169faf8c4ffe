from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from navigapp.app import App
from navigapp.bot.bot import NavigappBot
from navigapp.config import Config
from navigapp.errors import DatabaseError, UserError
from navigapp.web.error_handlers import (
    database_error_handler,
    general_exception_handler,
    http_exception_handler,
    request_validation_handler,
    user_error_handler,
)
from navigapp.web.openapi import set_custom_openapi
from navigapp.web.routers import auth_router, profile_router


def create_fastapi_app(app_instance: App, config: Config) -> FastAPI:
    """Create and configure FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        """FastAPI application lifespan management."""
        # Store app instance and config in app state
        app.state.app = app_instance
        app.state.config = config
        async with app_instance.lifespan():
            bot = NavigappBot(app_instance, config.telegram_bot_token) if config.bot_polling else None
            if bot:
                await bot.start()
            try:
                yield
            finally:
                if bot:
                    await bot.stop()

    app = FastAPI(
        title="Navigapp API",
        lifespan=lifespan,
        openapi_tags=[],  # Tags will be added by custom OpenAPI function
    )

    # Add CORS middleware for the Mini App frontend
    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Health check endpoint (at root level, not versioned)
    @app.get("/health")
    async def health_check() -> dict[str, str | None]:
        return {
            "status": "healthy",
            "environment": config.environment,
            "version": config.git_commit_hash,
            "build_time": config.build_time,
        }

    # API v1 routes
    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(profile_router, prefix="/api/v1")

    # Register error handlers
    app.add_exception_handler(UserError, user_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(DatabaseError, database_error_handler)
    app.add_exception_handler(PyMongoError, database_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    set_custom_openapi(app)

    return app
