import hmac
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime

from pydantic import BaseModel, Field

from navigapp.config import Config
from navigapp.core.core import Core
from navigapp.core.modules.handshake.models import HandshakeStatus, InitiatedHandshake
from navigapp.core.modules.identity.models import TelegramUserData
from navigapp.core.modules.session.models import AccessToken, ClientInfo, SessionType
from navigapp.core.modules.token.models import TokenPair
from navigapp.core.modules.user.models import AuthMethod, User, UserView
from navigapp.errors import AccessDeniedError, InvalidIdentityError


class BotAuthResult(BaseModel):
    """Outcome of a completed bot handshake."""

    user: UserView
    tokens: TokenPair


class WebAppAuthResult(BaseModel):
    """Outcome of the legacy init-data authentication path."""

    user: UserView
    token: str = Field(..., description="Access token")
    refresh_token: str = Field(..., alias="refreshToken", description="Refresh token")
    expires_at: datetime
    refresh_expires_at: datetime

    model_config = {"populate_by_name": True}


class App:
    """Facade for all auth operations used by the HTTP API and the bot."""

    def __init__(self, config: Config, core: Core | None = None) -> None:
        self._core = core or Core(config)

    @property
    def config(self) -> Config:
        return self._core.config

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Application lifespan management - delegates to Core."""
        async with self._core.lifespan():
            yield

    def ensure_bot_caller(self, api_key: str | None) -> None:
        """Require the bot shared secret for handshake initiation; only local may run without one."""
        expected = self._core.config.bot_api_key
        if expected is None:
            return
        if api_key is None or not hmac.compare_digest(api_key.encode("utf-8"), expected.encode("utf-8")):
            raise AccessDeniedError("Bot credentials required")

    async def initiate_bot_auth(
        self, telegram_id: int, user_data: TelegramUserData | None = None, client: ClientInfo | None = None
    ) -> InitiatedHandshake:
        """Issue a single-use auth hash and the deep link that carries it."""
        return await self._core.services.handshake.initiate(telegram_id, user_data, client)

    async def get_bot_auth_status(self, auth_hash: str) -> HandshakeStatus:
        """Check whether a hash is still completable without consuming it."""
        return await self._core.services.handshake.get_status(auth_hash)

    async def complete_bot_auth(
        self, auth_hash: str, telegram_user_data: TelegramUserData | None = None, client: ClientInfo | None = None
    ) -> BotAuthResult:
        """Consume an auth hash and return the user with a fresh token pair."""
        completed = await self._core.services.handshake.complete(auth_hash, telegram_user_data, client)
        return BotAuthResult(user=UserView.from_domain(completed.user, AuthMethod.BOT), tokens=completed.tokens)

    async def authenticate_webapp(self, init_data: str, client: ClientInfo | None = None) -> WebAppAuthResult:
        """Authenticate directly from signed Mini App init data, bypassing the hash broker."""
        identity = self._core.identity.verify(init_data)
        if identity is None:
            raise InvalidIdentityError

        telegram_user = identity.user
        profile = TelegramUserData.model_validate(telegram_user.model_dump())
        user = await self._core.services.user.upsert_from_auth(telegram_user.id, profile, AuthMethod.WEBAPP)
        _, tokens = await self._core.services.session.open_session(user, SessionType.WEBAPP, client)
        return WebAppAuthResult(
            user=UserView.from_domain(user, AuthMethod.WEBAPP),
            token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at,
            refresh_expires_at=tokens.refresh_expires_at,
        )

    async def refresh_tokens(self, refresh_token: str, client: ClientInfo | None = None) -> TokenPair:
        """Rotate the token pair of the session holding ``refresh_token``."""
        return await self._core.services.session.refresh(refresh_token, client)

    async def authenticate(self, access_token: AccessToken) -> User:
        """Resolve a bearer token to its user; raises TokenValidationError otherwise."""
        user, _ = await self._core.services.session.authenticate(access_token)
        return user

    async def logout(self, access_token: AccessToken) -> None:
        """Invalidate the session behind ``access_token``."""
        _, session = await self._core.services.session.authenticate(access_token)
        await self._core.services.session.revoke(session.id)

    async def find_user_by_telegram_id(self, telegram_id: int) -> UserView | None:
        """Look up an account for bot greetings; None for first-time users."""
        user = await self._core.services.user.find_by_telegram_id(telegram_id)
        if user is None:
            return None
        return UserView.from_domain(user)
