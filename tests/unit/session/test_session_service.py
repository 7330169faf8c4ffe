"""Tests for session persistence, refresh rotation and revocation."""

from datetime import timedelta

import pytest

from navigapp.core.modules.identity.models import TelegramUserData
from navigapp.core.modules.session.models import AccessToken, ClientInfo, SessionEndReason, SessionType
from navigapp.core.modules.user.models import AuthMethod
from navigapp.errors import SessionExpiredError, TokenValidationError


@pytest.fixture
def sessions(started_core):
    return started_core.services.session


@pytest.fixture
def collection(database):
    return database.get_collection("auth_sessions")


@pytest.fixture
def make_user(started_core, clock):
    async def create():
        return await started_core.services.user.upsert_from_auth(12345, TelegramUserData(first_name="Ann"), AuthMethod.BOT)

    return create


class TestOpenSession:
    @pytest.mark.asyncio
    async def test_persists_active_row(self, sessions, collection, make_user, clock):
        user = await make_user()
        fingerprint = "VGVsZWdyYW0vMS4wfGVufDEwLjAuMC4x"

        session, tokens = await sessions.open_session(
            user, SessionType.WEBAPP, ClientInfo(ip_address="10.0.0.1", device_fingerprint=fingerprint)
        )

        assert len(collection.docs) == 1
        doc = collection.docs[0]
        assert doc["_id"] == session.id
        assert doc["user_id"] == user.id
        assert doc["access_token"] == tokens.access_token
        assert doc["refresh_token"] == tokens.refresh_token
        assert doc["is_active"] is True
        assert doc["session_type"] == SessionType.WEBAPP
        assert doc["device_fingerprint"] == fingerprint
        assert doc["expires_at"] < doc["refresh_expires_at"]

    @pytest.mark.asyncio
    async def test_token_bound_to_session(self, started_core, sessions, make_user, clock):
        user = await make_user()

        session, tokens = await sessions.open_session(user, SessionType.BOT)

        payload = started_core.tokens.validate_access_token(tokens.access_token)
        assert payload is not None
        assert payload.session_id == str(session.id)
        assert payload.sub == str(user.id)


class TestRefresh:
    @pytest.mark.asyncio
    async def test_rotates_in_place(self, sessions, collection, make_user, clock):
        """Refresh keeps the session row and ID but replaces both tokens."""
        user = await make_user()
        session, old = await sessions.open_session(user, SessionType.BOT)
        clock.advance(minutes=14)

        new = await sessions.refresh(old.refresh_token)

        assert len(collection.docs) == 1
        doc = collection.docs[0]
        assert doc["_id"] == session.id
        assert doc["access_token"] == new.access_token != old.access_token
        assert doc["refresh_token"] == new.refresh_token != old.refresh_token
        assert doc["last_used_at"] == clock()
        assert new.expires_at - clock() == timedelta(minutes=15)

    @pytest.mark.asyncio
    async def test_superseded_refresh_token_rejected(self, sessions, make_user, clock):
        """A second refresh with the old token fails: it no longer matches the row."""
        user = await make_user()
        _, old = await sessions.open_session(user, SessionType.BOT)

        await sessions.refresh(old.refresh_token)

        with pytest.raises(SessionExpiredError):
            await sessions.refresh(old.refresh_token)

    @pytest.mark.asyncio
    async def test_expired_access_token_refreshable(self, sessions, make_user, clock):
        """Access expired, refresh valid: refresh yields a fresh 15 minute window."""
        user = await make_user()
        _, old = await sessions.open_session(user, SessionType.BOT)
        clock.advance(minutes=16)

        with pytest.raises(TokenValidationError):
            await sessions.authenticate(AccessToken(old.access_token))
        new = await sessions.refresh(old.refresh_token)

        assert new.expires_at - clock() == timedelta(minutes=15)
        authenticated, _ = await sessions.authenticate(AccessToken(new.access_token))
        assert authenticated.id == user.id

    @pytest.mark.asyncio
    async def test_refresh_keeps_session_type(self, started_core, sessions, make_user, clock):
        user = await make_user()
        session, old = await sessions.open_session(user, SessionType.WEBAPP)

        new = await sessions.refresh(old.refresh_token)

        payload = started_core.tokens.validate_access_token(new.access_token)
        assert payload is not None
        assert payload.session_type == SessionType.WEBAPP
        assert payload.session_id == str(session.id)

    @pytest.mark.asyncio
    async def test_expired_refresh_token_ends_session(self, sessions, collection, make_user, clock):
        user = await make_user()
        _, old = await sessions.open_session(user, SessionType.BOT)
        clock.advance(days=91)

        with pytest.raises(SessionExpiredError):
            await sessions.refresh(old.refresh_token)

        doc = collection.docs[0]
        assert doc["is_active"] is False
        assert doc["end_reason"] == SessionEndReason.EXPIRED

    @pytest.mark.asyncio
    async def test_unknown_refresh_token(self, sessions, clock):
        with pytest.raises(SessionExpiredError):
            await sessions.refresh("not-a-known-token")

    @pytest.mark.asyncio
    async def test_revoked_session_not_refreshable(self, sessions, make_user, clock):
        user = await make_user()
        session, tokens = await sessions.open_session(user, SessionType.BOT)
        await sessions.revoke(session.id)

        with pytest.raises(SessionExpiredError):
            await sessions.refresh(tokens.refresh_token)

    @pytest.mark.asyncio
    async def test_fingerprint_mismatch_is_advisory(self, sessions, make_user, clock):
        """A different device fingerprint is logged, not rejected."""
        user = await make_user()
        _, old = await sessions.open_session(user, SessionType.BOT, ClientInfo(device_fingerprint="aaa"))

        new = await sessions.refresh(old.refresh_token, ClientInfo(device_fingerprint="bbb"))

        assert new.refresh_token != old.refresh_token


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_valid_token(self, sessions, make_user, clock):
        user = await make_user()
        session, tokens = await sessions.open_session(user, SessionType.BOT)

        authenticated, found = await sessions.authenticate(AccessToken(tokens.access_token))

        assert authenticated.id == user.id
        assert found.id == session.id

    @pytest.mark.asyncio
    async def test_superseded_access_token_rejected(self, sessions, make_user, clock):
        """After a refresh the previous access token no longer matches the row."""
        user = await make_user()
        _, old = await sessions.open_session(user, SessionType.BOT)
        await sessions.refresh(old.refresh_token)

        with pytest.raises(TokenValidationError):
            await sessions.authenticate(AccessToken(old.access_token))

    @pytest.mark.asyncio
    async def test_refresh_token_not_accepted_as_access_token(self, sessions, make_user, clock):
        """Structurally valid is not enough; the token must be the stored access token."""
        user = await make_user()
        _, tokens = await sessions.open_session(user, SessionType.BOT)

        with pytest.raises(TokenValidationError):
            await sessions.authenticate(AccessToken(tokens.refresh_token))

    @pytest.mark.asyncio
    async def test_garbage_token(self, sessions, clock):
        with pytest.raises(TokenValidationError):
            await sessions.authenticate(AccessToken("garbage"))


class TestRevoke:
    @pytest.mark.asyncio
    async def test_logout_deactivates(self, sessions, collection, make_user, clock):
        user = await make_user()
        session, tokens = await sessions.open_session(user, SessionType.BOT)

        await sessions.revoke(session.id)

        doc = collection.docs[0]
        assert doc["is_active"] is False
        assert doc["ended_at"] == clock()
        assert doc["end_reason"] == SessionEndReason.LOGOUT
        with pytest.raises(TokenValidationError):
            await sessions.authenticate(AccessToken(tokens.access_token))

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self, sessions, make_user, clock):
        user = await make_user()
        session, _ = await sessions.open_session(user, SessionType.BOT)

        await sessions.revoke(session.id)
        await sessions.revoke(session.id)

    @pytest.mark.asyncio
    async def test_other_sessions_unaffected(self, sessions, make_user, clock):
        user = await make_user()
        first, _ = await sessions.open_session(user, SessionType.BOT)
        _, second_tokens = await sessions.open_session(user, SessionType.WEBAPP)

        await sessions.revoke(first.id)

        authenticated, _ = await sessions.authenticate(AccessToken(second_tokens.access_token))
        assert authenticated.id == user.id
