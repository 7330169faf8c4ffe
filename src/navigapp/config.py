import secrets
from enum import StrEnum
from typing import Self

from pydantic import model_validator
from pydantic_settings import BaseSettings

MIN_JWT_SECRET_LENGTH = 32


class Environment(StrEnum):
    LOCAL = "local"
    STAGING = "staging"
    PRODUCTION = "production"


class Config(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str
    host: str
    port: int
    debug: bool
    environment: Environment = Environment.LOCAL
    jwt_secret: str | None = None  # Required outside local; see validate_secrets
    telegram_bot_token: str  # Signs Mini App init data and drives the bot
    telegram_bot_username: str = "navigapp_bot"
    webapp_url: str  # Public web app host, e.g. https://navigapp.vercel.app
    cors_origins: list[str] = []
    bot_api_key: str | None = None  # /auth/bot/initiate requires X-Bot-Api-Key; mandatory outside local
    bot_polling: bool = False  # Run the bot long-polling loop inside the web process
    demo_identity_enabled: bool = False  # Accept the demo init data sentinel (local only)
    # Build metadata injected during Docker build via environment variables
    git_commit_hash: str = "unknown"
    build_time: str = "unknown"

    model_config = {
        "env_file": [".env"],
        "env_prefix": "NAVIGAPP_",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_secrets(self) -> Self:
        if self.environment == Environment.LOCAL:
            if not self.jwt_secret:
                # Tokens do not survive a restart, which is acceptable for local development only
                self.jwt_secret = secrets.token_urlsafe(48)
            return self

        if not self.jwt_secret:
            raise ValueError(f"NAVIGAPP_JWT_SECRET is required in the {self.environment} environment")
        if len(self.jwt_secret) < MIN_JWT_SECRET_LENGTH:
            raise ValueError(f"NAVIGAPP_JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters")
        if self.demo_identity_enabled:
            raise ValueError("NAVIGAPP_DEMO_IDENTITY_ENABLED is only allowed in the local environment")
        if not self.bot_api_key:
            raise ValueError(f"NAVIGAPP_BOT_API_KEY is required in the {self.environment} environment")
        return self

    @property
    def signing_secret(self) -> str:
        if self.jwt_secret is None:
            raise RuntimeError("JWT secret is not configured")
        return self.jwt_secret
