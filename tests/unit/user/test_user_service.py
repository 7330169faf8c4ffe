"""Tests for user upsert on authentication."""

import asyncio

import pytest

from navigapp.core.modules.identity.models import TelegramUserData
from navigapp.core.modules.user.models import AuthMethod, SubscriptionType, User, UserView
from navigapp.errors import NotFoundError


@pytest.fixture
def users(started_core):
    return started_core.services.user


@pytest.fixture
def collection(database):
    return database.get_collection("users")


class TestUpsertFromAuth:
    @pytest.mark.asyncio
    async def test_creates_user(self, users, collection, clock):
        """First authentication inserts a free-tier account."""
        user = await users.upsert_from_auth(12345, TelegramUserData(first_name="Ann", username="ann"), AuthMethod.BOT)

        assert user.telegram_id == 12345
        assert user.first_name == "Ann"
        assert user.username == "ann"
        assert user.subscription_type == SubscriptionType.FREE
        assert user.auth_preference == AuthMethod.BOT
        assert user.created_at == clock()
        assert user.last_bot_auth_at == clock()
        assert len(collection.docs) == 1

    @pytest.mark.asyncio
    async def test_updates_display_fields(self, users, collection, clock):
        created = await users.upsert_from_auth(12345, TelegramUserData(first_name="Ann"), AuthMethod.BOT)
        clock.advance(days=1)

        updated = await users.upsert_from_auth(12345, TelegramUserData(first_name="Anna", username="anna"), AuthMethod.WEBAPP)

        assert updated.id == created.id
        assert updated.first_name == "Anna"
        assert updated.username == "anna"
        assert updated.auth_preference == AuthMethod.WEBAPP
        assert updated.last_active_at == clock()
        assert updated.created_at == created.created_at
        assert updated.last_bot_auth_at == created.last_bot_auth_at
        assert len(collection.docs) == 1

    @pytest.mark.asyncio
    async def test_missing_fields_keep_stored_values(self, users, clock):
        """Absent profile fields never blank out what is stored."""
        await users.upsert_from_auth(12345, TelegramUserData(first_name="Ann", username="ann"), AuthMethod.BOT)

        updated = await users.upsert_from_auth(12345, None, AuthMethod.BOT)

        assert updated.first_name == "Ann"
        assert updated.username == "ann"

    @pytest.mark.asyncio
    async def test_concurrent_first_logins(self, users, collection, clock):
        """Racing first logins for one Telegram ID end with a single account."""
        results = await asyncio.gather(
            users.upsert_from_auth(12345, TelegramUserData(first_name="Ann"), AuthMethod.BOT),
            users.upsert_from_auth(12345, TelegramUserData(first_name="Ann"), AuthMethod.WEBAPP),
        )

        assert results[0].id == results[1].id
        assert len(collection.docs) == 1


class TestLookup:
    @pytest.mark.asyncio
    async def test_get_user(self, users, clock):
        created = await users.upsert_from_auth(12345, None, AuthMethod.BOT)

        assert (await users.get_user(created.id)).telegram_id == 12345

    @pytest.mark.asyncio
    async def test_get_missing_user(self, users):
        with pytest.raises(NotFoundError):
            await users.get_user(User(telegram_id=1).id)

    @pytest.mark.asyncio
    async def test_find_by_telegram_id(self, users, clock):
        assert await users.find_by_telegram_id(12345) is None

        await users.upsert_from_auth(12345, None, AuthMethod.BOT)

        found = await users.find_by_telegram_id(12345)
        assert found is not None
        assert found.telegram_id == 12345


class TestUserView:
    def test_telegram_id_as_string(self):
        user = User(telegram_id=12345, first_name="Ann", auth_preference=AuthMethod.BOT)

        view = UserView.from_domain(user)

        assert view.telegram_id == "12345"
        assert view.auth_method == AuthMethod.BOT

    def test_explicit_auth_method(self):
        user = User(telegram_id=12345, auth_preference=AuthMethod.BOT)

        assert UserView.from_domain(user, AuthMethod.WEBAPP).auth_method == AuthMethod.WEBAPP
