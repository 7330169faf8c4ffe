"""Bot-to-webapp auth handshake models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from navigapp.core.db import MongoModel
from navigapp.core.modules.identity.models import TelegramUserData
from navigapp.core.modules.session.models import Session
from navigapp.core.modules.token.models import TokenPair
from navigapp.core.modules.user.models import User
from navigapp.utils import now


class AuthHandshake(MongoModel):
    """Pending bridge from a bot chat to a web session (collection ``bot_auth_requests``).

    Consumed exactly once: the completing write is conditioned on ``is_completed == False``.
    Expired rows are dead data; the TTL index sweeps them eventually.
    Indexed on auth_hash - unique, expires_at (TTL).
    """

    auth_hash: str
    telegram_id: int
    user_data: TelegramUserData | None = None
    created_at: datetime = Field(default_factory=now)
    expires_at: datetime
    is_completed: bool = False
    completed_at: datetime | None = None
    ip_address: str | None = None
    user_agent: str | None = None


class InitiatedHandshake(BaseModel):
    auth_hash: str = Field(..., description="Opaque single-use handshake token")
    deep_link_url: str = Field(..., description="Web app URL carrying the hash")
    expires_at: datetime = Field(..., description="Handshake expiry")


class HandshakeStatus(BaseModel):
    valid: bool
    expires_at: datetime | None = None


class CompletedHandshake(BaseModel):
    handshake_id: UUID
    user: User
    session: Session
    tokens: TokenPair
