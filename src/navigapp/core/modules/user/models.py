from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, Field

from navigapp.core.db import MongoModel
from navigapp.utils import now


class SubscriptionType(StrEnum):
    FREE = "free"
    PRO = "pro"


class AuthMethod(StrEnum):
    """Channel the user last authenticated through."""

    BOT = "bot"
    WEBAPP = "webapp"


class User(MongoModel):
    """Durable account keyed by Telegram user ID.

    Created on first successful authentication, display fields refreshed on every later one.
    Indexed on telegram_id - unique.
    """

    telegram_id: int
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    language_code: str | None = None
    subscription_type: SubscriptionType = SubscriptionType.FREE
    auth_preference: AuthMethod | None = None
    last_bot_auth_at: datetime | None = None
    last_active_at: datetime = Field(default_factory=now)
    created_at: datetime = Field(default_factory=now)


class UserView(BaseModel):
    """User account information (API representation)."""

    id: UUID = Field(..., description="User ID")
    telegram_id: str = Field(..., description="Telegram user ID")
    first_name: str | None = Field(None, description="First name")
    username: str | None = Field(None, description="Telegram handle")
    subscription_type: SubscriptionType = Field(..., description="Subscription tier")
    auth_method: AuthMethod | None = Field(None, description="Channel used for the current authentication")

    @classmethod
    def from_domain(cls, user: User, auth_method: AuthMethod | None = None) -> "UserView":
        """Create view model from domain model."""
        return cls(
            id=user.id,
            telegram_id=str(user.telegram_id),
            first_name=user.first_name,
            username=user.username,
            subscription_type=user.subscription_type,
            auth_method=auth_method or user.auth_preference,
        )
