from typing import Any
from uuid import UUID, uuid4

import structlog
from pymongo.asynchronous.database import AsyncDatabase

from navigapp.core.core import Service
from navigapp.core.modules.session.models import AccessToken, ClientInfo, Session, SessionEndReason, SessionType
from navigapp.core.modules.token.models import TokenPair
from navigapp.core.modules.user.models import User
from navigapp.errors import NotFoundError, SessionExpiredError, TokenValidationError
from navigapp.utils import mask_secret, now

logger = structlog.get_logger(__name__)

SESSION_RETENTION_SECONDS = 30 * 24 * 60 * 60


class SessionService(Service):
    """Persists token pairs and runs the refresh/revoke lifecycle.

    A session row is the source of truth: a structurally valid token is only
    accepted while it matches the token stored on an active row.
    """

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("auth_sessions")

    async def on_start(self) -> None:
        """Create indexes on startup."""
        await self._collection.create_index([("refresh_token", 1)], unique=True)
        await self._collection.create_index([("access_token", 1)])
        await self._collection.create_index([("user_id", 1)])
        # Rows are kept for audit a while after the refresh window closes
        await self._collection.create_index([("refresh_expires_at", 1)], expireAfterSeconds=SESSION_RETENTION_SECONDS)

    async def open_session(
        self,
        user: User,
        session_type: SessionType,
        client: ClientInfo | None = None,
        bot_auth_hash: str | None = None,
    ) -> tuple[Session, TokenPair]:
        """Mint a token pair and persist it as a new active session."""
        client = client or ClientInfo()
        session_id = uuid4()
        tokens = self.core.tokens.generate_token_pair(user.id, user.telegram_id, session_id, session_type)
        timestamp = now()
        session = Session(
            id=session_id,
            user_id=user.id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            session_type=session_type,
            expires_at=tokens.expires_at,
            refresh_expires_at=tokens.refresh_expires_at,
            bot_auth_hash=bot_auth_hash,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            device_fingerprint=client.device_fingerprint,
            created_at=timestamp,
            last_used_at=timestamp,
        )
        await self._collection.insert_one(session.to_mongo())
        logger.info(
            "session_opened",
            session_id=session.id,
            user_id=user.id,
            session_type=session_type,
            device_fingerprint=client.device_fingerprint,
        )
        return session, tokens

    async def refresh(self, refresh_token: str, client: ClientInfo | None = None) -> TokenPair:
        """Rotate both tokens of the session that currently holds ``refresh_token``.

        Concurrent refreshes of one session resolve last-writer-wins; the loser's
        pair stops matching the row and its next use fails like any other expiry.
        """
        doc = await self._collection.find_one({"refresh_token": refresh_token, "is_active": True})
        if doc is None:
            logger.info("refresh_rejected", reason="no_active_session", token=mask_secret(refresh_token))
            raise SessionExpiredError

        session = Session.model_validate(doc)
        if session.refresh_expires_at < now():
            await self._end_session(session.id, SessionEndReason.EXPIRED)
            raise SessionExpiredError

        payload = self.core.tokens.validate_refresh_token(refresh_token)
        if payload is None or payload.session_id != str(session.id):
            logger.warning("refresh_rejected", reason="token_invalid", session_id=session.id)
            raise SessionExpiredError

        try:
            user = await self.core.services.user.get_user(session.user_id)
        except NotFoundError:
            await self._end_session(session.id, SessionEndReason.EXPIRED)
            raise SessionExpiredError from None

        if client is not None and client.device_fingerprint and client.device_fingerprint != session.device_fingerprint:
            logger.warning(
                "device_fingerprint_changed",
                session_id=session.id,
                stored=session.device_fingerprint,
                presented=client.device_fingerprint,
            )

        tokens = self.core.tokens.generate_token_pair(user.id, user.telegram_id, session.id, session.session_type)
        result = await self._collection.update_one(
            {"_id": session.id, "is_active": True},
            {
                "$set": {
                    "access_token": tokens.access_token,
                    "refresh_token": tokens.refresh_token,
                    "expires_at": tokens.expires_at,
                    "refresh_expires_at": tokens.refresh_expires_at,
                    "last_used_at": now(),
                }
            },
        )
        if result.matched_count == 0:
            # Revoked between lookup and write
            raise SessionExpiredError

        logger.info("session_refreshed", session_id=session.id, user_id=user.id)
        return tokens

    async def authenticate(self, access_token: AccessToken) -> tuple[User, Session]:
        """Resolve a bearer access token to its user and live session."""
        payload = self.core.tokens.validate_access_token(access_token)
        if payload is None:
            raise TokenValidationError

        try:
            session_id = UUID(payload.session_id)
        except ValueError:
            raise TokenValidationError from None

        doc = await self._collection.find_one({"_id": session_id, "is_active": True, "access_token": access_token})
        if doc is None:
            raise TokenValidationError
        session = Session.model_validate(doc)

        try:
            user = await self.core.services.user.get_user(session.user_id)
        except NotFoundError:
            raise TokenValidationError from None
        return user, session

    async def revoke(self, session_id: UUID) -> None:
        """Deactivate a session on logout."""
        await self._end_session(session_id, SessionEndReason.LOGOUT)

    async def _end_session(self, session_id: UUID, reason: SessionEndReason) -> None:
        result = await self._collection.update_one(
            {"_id": session_id, "is_active": True},
            {"$set": {"is_active": False, "ended_at": now(), "end_reason": reason}},
        )
        if result.modified_count:
            event = "session_expired" if reason == SessionEndReason.EXPIRED else "session_revoked"
            logger.info(event, session_id=session_id)
