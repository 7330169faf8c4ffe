"""Session management models."""

from datetime import datetime
from enum import StrEnum
from typing import NewType
from uuid import UUID

from pydantic import BaseModel, Field

from navigapp.core.db import MongoModel
from navigapp.utils import now

AccessToken = NewType("AccessToken", str)


class SessionType(StrEnum):
    """Channel a session was opened through."""

    BOT = "bot"
    WEBAPP = "webapp"
    HYBRID = "hybrid"


class SessionEndReason(StrEnum):
    EXPIRED = "expired"
    LOGOUT = "logout"


class ClientInfo(BaseModel):
    """Request metadata recorded for audit. The fingerprint is advisory, never enforced."""

    ip_address: str | None = None
    user_agent: str | None = None
    device_fingerprint: str | None = None


class Session(MongoModel):
    """One issued token pair (collection ``auth_sessions``).

    Refreshing rotates both tokens in place on the same row.
    Indexed on refresh_token - unique, access_token, user_id, refresh_expires_at (TTL).
    """

    user_id: UUID
    access_token: str
    refresh_token: str
    session_type: SessionType
    expires_at: datetime
    refresh_expires_at: datetime
    bot_auth_hash: str | None = None  # Handshake this session was opened from
    ip_address: str | None = None
    user_agent: str | None = None
    device_fingerprint: str | None = None
    created_at: datetime = Field(default_factory=now)
    last_used_at: datetime = Field(default_factory=now)
    is_active: bool = True
    ended_at: datetime | None = None
    end_reason: SessionEndReason | None = None
