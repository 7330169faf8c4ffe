from datetime import datetime

from pydantic import BaseModel, Field

from navigapp.core.modules.session.models import SessionType


class TokenPayload(BaseModel):
    """Signed claims carried by both access and refresh tokens."""

    sub: str = Field(..., description="User ID")
    telegram_id: str
    session_id: str
    session_type: SessionType
    iat: int
    exp: int
    iss: str
    aud: str
    jti: str


class TokenPair(BaseModel):
    """Access/refresh pair as returned to clients."""

    access_token: str
    refresh_token: str
    expires_at: datetime
    refresh_expires_at: datetime
