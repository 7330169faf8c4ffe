import base64
import secrets
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import jwt
import structlog
from pydantic import ValidationError as PydanticValidationError

from navigapp.core.modules.session.models import SessionType
from navigapp.core.modules.token.models import TokenPair, TokenPayload
from navigapp.utils import now

logger = structlog.get_logger(__name__)

ACCESS_TOKEN_TTL = timedelta(minutes=15)
REFRESH_TOKEN_TTL = timedelta(days=90)
TOKEN_ISSUER = "navigapp-api"
TOKEN_AUDIENCE = "navigapp-frontend"
ALGORITHM = "HS256"
FINGERPRINT_LENGTH = 32


class TokenService:
    """Mints and validates HS256 access/refresh pairs.

    Validation returns None on every failure so "unauthenticated" and
    "malformed" look the same to callers. Expiry is checked against
    ``now()`` rather than the JWT library clock.
    """

    def __init__(self, secret: str) -> None:
        self._secret = secret

    def generate_token_pair(
        self, user_id: UUID, telegram_id: int, session_id: UUID, session_type: SessionType
    ) -> TokenPair:
        issued_at = int(now().timestamp())
        access_exp = issued_at + int(ACCESS_TOKEN_TTL.total_seconds())
        refresh_exp = issued_at + int(REFRESH_TOKEN_TTL.total_seconds())

        def claims(exp: int) -> dict[str, Any]:
            return TokenPayload(
                sub=str(user_id),
                telegram_id=str(telegram_id),
                session_id=str(session_id),
                session_type=session_type,
                iat=issued_at,
                exp=exp,
                iss=TOKEN_ISSUER,
                aud=TOKEN_AUDIENCE,
                jti=secrets.token_hex(16),
            ).model_dump(mode="json")

        return TokenPair(
            access_token=jwt.encode(claims(access_exp), self._secret, algorithm=ALGORITHM),
            refresh_token=jwt.encode(claims(refresh_exp), self._secret, algorithm=ALGORITHM),
            expires_at=datetime.fromtimestamp(access_exp, UTC),
            refresh_expires_at=datetime.fromtimestamp(refresh_exp, UTC),
        )

    def validate_access_token(self, token: str) -> TokenPayload | None:
        return self._validate(token)

    def validate_refresh_token(self, token: str) -> TokenPayload | None:
        # Same checks as access tokens; callers must also match the stored session row
        return self._validate(token)

    def _validate(self, token: str) -> TokenPayload | None:
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                audience=TOKEN_AUDIENCE,
                issuer=TOKEN_ISSUER,
                options={"verify_exp": False, "verify_iat": False, "require": ["exp", "iat", "iss", "aud", "sub"]},
            )
            payload = TokenPayload.model_validate(claims)
        except (jwt.InvalidTokenError, PydanticValidationError) as e:
            logger.debug("token_rejected", error_type=type(e).__name__)
            return None

        if payload.exp < now().timestamp():
            logger.debug("token_rejected", error_type="expired", session_id=payload.session_id)
            return None
        return payload


def device_fingerprint(headers: Mapping[str, str]) -> str:
    """Soft session-binding signal from user agent, language and forwarded IP. Audit only."""
    raw = "|".join(
        (
            headers.get("user-agent", ""),
            headers.get("accept-language", ""),
            headers.get("x-forwarded-for", ""),
        )
    )
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")[:FINGERPRINT_LENGTH]
