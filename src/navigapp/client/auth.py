"""Client-side auth orchestrator.

Drives the bot handshake (initiate, deep link, complete), stores the issued
token pair and refreshes it shortly before the access token expires. Any
refresh failure drops every stored credential.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Self
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from navigapp.client.storage import CredentialStore, MemoryCredentialStore, StoredCredentials
from navigapp.core.modules.identity.models import TelegramUserData
from navigapp.core.modules.token.models import TokenPair
from navigapp.core.modules.user.models import AuthMethod, UserView
from navigapp.errors import (
    AccessDeniedError,
    AuthenticationError,
    HandshakeError,
    InvalidIdentityError,
    NotFoundError,
    SessionExpiredError,
    TokenValidationError,
    UserError,
    ValidationError,
)
from navigapp.utils import now

logger = structlog.get_logger(__name__)

REFRESH_THRESHOLD = timedelta(minutes=5)
BOT_START_PARAM = "webapp"
COMPLETION_PARAMS = ("hash", "auth_type")
SESSION_EXPIRED_MESSAGE = "Session expired. Please sign in again"

_ERRORS_BY_CODE: dict[str, type[UserError]] = {
    "AUTH_ERROR": HandshakeError,
    "INVALID_AUTH_DATA": InvalidIdentityError,
    "UNAUTHORIZED": TokenValidationError,
    "SESSION_EXPIRED": SessionExpiredError,
    "NOT_FOUND": NotFoundError,
    "ACCESS_DENIED": AccessDeniedError,
    "VALIDATION_ERROR": ValidationError,
}


class ApiError(Exception):
    """Server failure without a user-facing error class (database or internal errors)."""

    def __init__(self, message: str, code: str, status_code: int) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code


class AuthState(BaseModel):
    user: UserView | None = None
    is_authenticated: bool = False
    auth_method: AuthMethod | None = None
    error: str | None = None


def strip_completion_params(url: str) -> str:
    """Remove the handshake parameters so a reload cannot resubmit the hash."""
    parts = urlsplit(url)
    query = [(key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True) if key not in COMPLETION_PARAMS]
    return urlunsplit(parts._replace(query=urlencode(query)))


class AuthClient:
    """Single authentication capability for the rest of the application."""

    def __init__(
        self,
        api_url: str,
        store: CredentialStore | None = None,
        bot_username: str = "navigapp_bot",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._store = store or MemoryCredentialStore()
        self._bot_username = bot_username
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=api_url, timeout=10.0)
        self._credentials: StoredCredentials | None = None
        self._refresh_task: asyncio.Task[None] | None = None
        self.state = AuthState()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self._cancel_refresh()
        if self._owns_http_client:
            await self._http.aclose()

    @property
    def access_token(self) -> str | None:
        return self._credentials.access_token if self._credentials else None

    @property
    def token_expires_at(self) -> datetime | None:
        return self._credentials.token_expires_at if self._credentials else None

    def restore(self) -> bool:
        """Optimistically restore stored credentials; the server still has the final say.

        Must be called with a running event loop since it schedules the refresh timer.
        """
        credentials = StoredCredentials.from_items(self._store.load())
        if credentials is None or credentials.refresh_expires_at <= now():
            self._store.clear()
            return False

        self._set_authenticated(credentials)
        logger.debug("credentials_restored", auth_method=credentials.auth_method)
        return True

    def initiate_bot_auth(self) -> str:
        """URL opening the bot chat; /start there replies with a deep link carrying an auth hash."""
        return f"https://t.me/{self._bot_username}?start={BOT_START_PARAM}"

    async def complete_bot_auth(self, auth_hash: str, telegram_user_data: TelegramUserData | None = None) -> UserView:
        body: dict[str, Any] = {"auth_hash": auth_hash}
        if telegram_user_data is not None:
            body["telegram_user_data"] = telegram_user_data.model_dump(exclude_none=True)

        try:
            data = await self._call("POST", "/auth/bot/complete", json=body)
            user = UserView.model_validate(data["user"])
            tokens = TokenPair.model_validate(data["tokens"])
        except (UserError, ApiError, httpx.HTTPError, PydanticValidationError, KeyError, TypeError) as e:
            self.state = self.state.model_copy(update={"error": str(e) or "Bot authentication failed"})
            logger.warning("bot_auth_completion_failed", error=str(e))
            raise

        self._set_authenticated(StoredCredentials.from_tokens(tokens, user, AuthMethod.BOT))
        logger.info("bot_auth_completed", user_id=user.id)
        return user

    async def authenticate_webapp(self, init_data: str) -> UserView:
        """Fallback path: exchange signed Mini App init data for a token pair directly."""
        try:
            data = await self._call("POST", "/auth/telegram", json={"initData": init_data})
            user = UserView.model_validate(data["user"])
            tokens = TokenPair(
                access_token=data["token"],
                refresh_token=data["refreshToken"],
                expires_at=data["expires_at"],
                refresh_expires_at=data["refresh_expires_at"],
            )
        except (UserError, ApiError, httpx.HTTPError, PydanticValidationError, KeyError, TypeError) as e:
            self._clear(error=str(e) or "WebApp authentication failed")
            logger.warning("webapp_auth_failed", error=str(e))
            raise

        self._set_authenticated(StoredCredentials.from_tokens(tokens, user, AuthMethod.WEBAPP))
        logger.info("webapp_auth_completed", user_id=user.id)
        return user

    async def refresh_token(self) -> TokenPair:
        """Rotate the token pair. Any failure is a full logout and raises SessionExpiredError."""
        credentials = self._credentials
        if credentials is None:
            self._clear(error=SESSION_EXPIRED_MESSAGE)
            raise SessionExpiredError

        try:
            data = await self._call("POST", "/auth/refresh", json={"refresh_token": credentials.refresh_token})
            tokens = TokenPair.model_validate(data)
        except (UserError, ApiError, httpx.HTTPError, PydanticValidationError) as e:
            logger.warning("token_refresh_failed", error=str(e))
            if self._credentials is credentials:
                self._clear(error=SESSION_EXPIRED_MESSAGE)
            raise SessionExpiredError from e

        # Logged out or re-authenticated while the request was in flight
        if self._credentials is not credentials:
            logger.info("token_refresh_discarded")
            raise SessionExpiredError

        self._set_authenticated(credentials.with_tokens(tokens))
        logger.debug("token_refreshed", expires_at=tokens.expires_at)
        return tokens

    async def logout(self) -> None:
        """Best-effort server logout; local credentials are cleared regardless."""
        self._cancel_refresh()
        access_token = self.access_token
        try:
            if access_token:
                await self._call("POST", "/auth/logout", access_token=access_token)
        except (UserError, ApiError, httpx.HTTPError) as e:
            logger.warning("server_logout_failed", error=str(e))
        finally:
            self._clear()
        logger.info("logged_out")

    async def handle_location(self, url: str) -> str:
        """Complete a handshake carried in ``url`` and return the URL without its parameters.

        Failures are recorded in ``state.error``; the parameters are stripped either way.
        """
        params = dict(parse_qsl(urlsplit(url).query))
        auth_hash = params.get("hash")
        if not auth_hash:
            return url

        try:
            await self.complete_bot_auth(auth_hash)
        except (UserError, ApiError, httpx.HTTPError, PydanticValidationError, KeyError, TypeError):
            pass  # recorded in state.error by complete_bot_auth
        return strip_completion_params(url)

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Call a protected endpoint. A 401 ends the local session; there is no silent retry."""
        access_token = self.access_token
        if access_token is None:
            raise TokenValidationError

        try:
            return await self._call(method, path, access_token=access_token, **kwargs)
        except AuthenticationError as e:
            self._clear(error=SESSION_EXPIRED_MESSAGE)
            raise SessionExpiredError from e

    async def _call(self, method: str, path: str, *, access_token: str | None = None, **kwargs: Any) -> Any:
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
        response = await self._http.request(method, path, headers=headers, **kwargs)
        return self._unwrap(response)

    @staticmethod
    def _unwrap(response: httpx.Response) -> Any:
        try:
            body = response.json()
        except ValueError as e:
            raise ApiError("Invalid response from server", "INTERNAL_ERROR", response.status_code) from e

        if isinstance(body, dict) and body.get("success") is True and response.is_success:
            return body.get("data")

        error = body.get("error") if isinstance(body, dict) else None
        error = error if isinstance(error, dict) else {}
        code = str(error.get("code", "INTERNAL_ERROR"))
        message = str(error.get("message", "Request failed"))
        error_class = _ERRORS_BY_CODE.get(code)
        if error_class is not None:
            raise error_class(message)
        if response.status_code == 401:
            raise TokenValidationError(message)
        raise ApiError(message, code, response.status_code)

    def _set_authenticated(self, credentials: StoredCredentials) -> None:
        self._credentials = credentials
        self._store.save(credentials.to_items())
        self.state = AuthState(user=credentials.user, is_authenticated=True, auth_method=credentials.auth_method)
        self._schedule_refresh(credentials.token_expires_at)

    def _clear(self, error: str | None = None) -> None:
        self._cancel_refresh()
        self._credentials = None
        self._store.clear()
        self.state = AuthState(error=error)

    def _schedule_refresh(self, expires_at: datetime) -> None:
        self._cancel_refresh()
        delay = (expires_at - now() - REFRESH_THRESHOLD).total_seconds()
        self._refresh_task = asyncio.create_task(self._refresh_after(max(delay, 0.0)))

    def _cancel_refresh(self) -> None:
        task = self._refresh_task
        self._refresh_task = None
        # The timer task itself reschedules on success; it must not cancel itself
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _refresh_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.refresh_token()
        except SessionExpiredError:
            logger.info("scheduled_refresh_ended_session")
