from typing import Any
from uuid import UUID

import structlog
from pymongo import ReturnDocument
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError

from navigapp.core.core import Service
from navigapp.core.modules.identity.models import TelegramUserData
from navigapp.core.modules.user.models import AuthMethod, User
from navigapp.errors import NotFoundError
from navigapp.utils import now

logger = structlog.get_logger(__name__)


class UserService(Service):
    """Manages user accounts keyed by Telegram ID."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("users")

    async def on_start(self) -> None:
        """Create indexes on startup."""
        await self._collection.create_index([("telegram_id", 1)], unique=True)

    async def get_user(self, user_id: UUID) -> User:
        """Get user by internal ID."""
        doc = await self._collection.find_one({"_id": user_id})
        if doc is None:
            raise NotFoundError(f"User '{user_id}' not found")
        return User.model_validate(doc)

    async def find_by_telegram_id(self, telegram_id: int) -> User | None:
        doc = await self._collection.find_one({"telegram_id": telegram_id})
        if doc is None:
            return None
        return User.model_validate(doc)

    async def upsert_from_auth(self, telegram_id: int, profile: TelegramUserData | None, method: AuthMethod) -> User:
        """Create the user on first authentication, otherwise refresh display fields and activity.

        Two concurrent first logins race on the unique telegram_id index; the loser retries as an update.
        """
        timestamp = now()
        updates: dict[str, Any] = {"auth_preference": method, "last_active_at": timestamp}
        if method == AuthMethod.BOT:
            updates["last_bot_auth_at"] = timestamp
        if profile is not None:
            updates.update(profile.model_dump(exclude_none=True))

        on_insert = {
            key: value
            for key, value in User(telegram_id=telegram_id, created_at=timestamp).to_mongo().items()
            if key not in updates and key != "telegram_id"
        }

        update = {"$set": updates, "$setOnInsert": on_insert}
        try:
            doc = await self._collection.find_one_and_update(
                {"telegram_id": telegram_id}, update, upsert=True, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            logger.debug("user_upsert_retry", telegram_id=telegram_id)
            doc = await self._collection.find_one_and_update(
                {"telegram_id": telegram_id}, update, upsert=True, return_document=ReturnDocument.AFTER
            )

        user = User.model_validate(doc)
        logger.info("user_authenticated", user_id=user.id, telegram_id=telegram_id, method=method)
        return user
