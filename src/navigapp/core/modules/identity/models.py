"""Telegram identity carried by signed Mini App init data."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class TelegramUserData(BaseModel):
    """Display fields Telegram reports for a user. All optional, never trusted as identity."""

    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    language_code: str | None = None

    model_config = ConfigDict(extra="ignore")


class TelegramUser(TelegramUserData):
    """Telegram user with the mandatory numeric platform ID."""

    id: int = Field(..., description="Telegram user ID")
    is_premium: bool | None = None


class TelegramIdentity(BaseModel):
    """Identity derived from a verified init data payload. Never persisted."""

    user: TelegramUser
    auth_date: datetime
    hash: str
    query_id: str | None = None
    start_param: str | None = None
