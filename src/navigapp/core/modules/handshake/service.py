import secrets
from datetime import timedelta
from typing import Any
from urllib.parse import urlencode
from uuid import UUID

import structlog
from pymongo import ReturnDocument
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import PyMongoError

from navigapp.core.core import Service
from navigapp.core.modules.handshake.models import AuthHandshake, CompletedHandshake, HandshakeStatus, InitiatedHandshake
from navigapp.core.modules.identity.models import TelegramUserData
from navigapp.core.modules.session.models import ClientInfo, SessionType
from navigapp.core.modules.user.models import AuthMethod
from navigapp.errors import DatabaseError, HandshakeError
from navigapp.utils import mask_secret, now

logger = structlog.get_logger(__name__)

HANDSHAKE_TTL = timedelta(minutes=10)
HANDSHAKE_RETENTION_SECONDS = 24 * 60 * 60
AUTH_HASH_BYTES = 32


def merge_user_data(stored: TelegramUserData | None, supplied: TelegramUserData | None) -> TelegramUserData | None:
    """Fields supplied at completion override those captured at initiation."""
    if stored is None:
        return supplied
    if supplied is None:
        return stored
    return stored.model_copy(update=supplied.model_dump(exclude_none=True))


class HandshakeService(Service):
    """Issues and consumes single-use auth hashes bridging the bot chat to the web app."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("bot_auth_requests")

    async def on_start(self) -> None:
        """Create indexes on startup."""
        await self._collection.create_index([("auth_hash", 1)], unique=True)
        await self._collection.create_index([("expires_at", 1)], expireAfterSeconds=HANDSHAKE_RETENTION_SECONDS)
        logger.debug("handshake_service_started")

    def build_deep_link(self, auth_hash: str) -> str:
        base = self.core.config.webapp_url.rstrip("/")
        return f"{base}/auth/bot?{urlencode({'hash': auth_hash, 'auth_type': 'bot'})}"

    async def initiate(
        self, telegram_id: int, user_data: TelegramUserData | None = None, client: ClientInfo | None = None
    ) -> InitiatedHandshake:
        """Persist a new pending handshake. Not idempotent: every call yields an independent hash."""
        client = client or ClientInfo()
        handshake = AuthHandshake(
            auth_hash=secrets.token_urlsafe(AUTH_HASH_BYTES),
            telegram_id=telegram_id,
            user_data=user_data,
            expires_at=now() + HANDSHAKE_TTL,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        await self._collection.insert_one(handshake.to_mongo())
        logger.info(
            "handshake_initiated",
            handshake_id=handshake.id,
            telegram_id=telegram_id,
            expires_at=handshake.expires_at,
        )
        return InitiatedHandshake(
            auth_hash=handshake.auth_hash,
            deep_link_url=self.build_deep_link(handshake.auth_hash),
            expires_at=handshake.expires_at,
        )

    async def get_status(self, auth_hash: str) -> HandshakeStatus:
        """Non-consuming check; unknown, expired and used hashes all read as invalid."""
        doc = await self._collection.find_one(self._pending_filter(auth_hash))
        if doc is None:
            return HandshakeStatus(valid=False)
        return HandshakeStatus(valid=True, expires_at=AuthHandshake.model_validate(doc).expires_at)

    async def complete(
        self,
        auth_hash: str,
        telegram_user_data: TelegramUserData | None = None,
        client: ClientInfo | None = None,
    ) -> CompletedHandshake:
        """Consume the handshake, upsert its user and open a bot session.

        The hash is claimed first with a conditional write, so of any number of
        concurrent completions exactly one proceeds. If a later write fails the
        claim is released and the user can retry the same link.
        """
        handshake = await self._claim(auth_hash)
        try:
            profile = merge_user_data(handshake.user_data, telegram_user_data)
            user = await self.core.services.user.upsert_from_auth(handshake.telegram_id, profile, AuthMethod.BOT)
            session, tokens = await self.core.services.session.open_session(
                user, SessionType.BOT, client, bot_auth_hash=auth_hash
            )
        except PyMongoError as e:
            logger.exception("handshake_completion_failed", handshake_id=handshake.id)
            await self._release(handshake.id)
            raise DatabaseError("Failed to complete bot authentication") from e

        logger.info("handshake_completed", handshake_id=handshake.id, user_id=user.id, session_id=session.id)
        return CompletedHandshake(handshake_id=handshake.id, user=user, session=session, tokens=tokens)

    async def _claim(self, auth_hash: str) -> AuthHandshake:
        doc = await self._collection.find_one_and_update(
            self._pending_filter(auth_hash),
            {"$set": {"is_completed": True, "completed_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            logger.info("handshake_rejected", auth_hash=mask_secret(auth_hash))
            raise HandshakeError
        return AuthHandshake.model_validate(doc)

    async def _release(self, handshake_id: UUID) -> None:
        try:
            await self._collection.update_one(
                {"_id": handshake_id, "is_completed": True},
                {"$set": {"is_completed": False, "completed_at": None}},
            )
        except PyMongoError:
            logger.exception("handshake_release_failed", handshake_id=handshake_id)

    @staticmethod
    def _pending_filter(auth_hash: str) -> dict[str, Any]:
        return {"auth_hash": auth_hash, "is_completed": False, "expires_at": {"$gte": now()}}
