from typing import Annotated, cast

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from navigapp.app import App
from navigapp.core.modules.session.models import AccessToken, ClientInfo
from navigapp.core.modules.token.service import device_fingerprint
from navigapp.core.modules.user.models import User
from navigapp.errors import TokenValidationError

# Security schemes
bearer_scheme = HTTPBearer(auto_error=False)


async def get_app(request: Request) -> App:
    return cast(App, request.app.state.app)


async def get_client_info(request: Request) -> ClientInfo:
    """Collect request metadata for handshake and session audit fields."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        ip_address: str | None = forwarded_for.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return ClientInfo(
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
        device_fingerprint=device_fingerprint(request.headers),
    )


async def get_access_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)] = None,
) -> AccessToken:
    """Extract the bearer access token; validation happens in the session service."""
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise TokenValidationError
    return AccessToken(credentials.credentials)


async def get_current_user(
    app: Annotated[App, Depends(get_app)],
    access_token: Annotated[AccessToken, Depends(get_access_token)],
) -> User:
    """Validated user for protected endpoints and collaborator APIs."""
    return await app.authenticate(access_token)


async def require_bot_caller(
    app: Annotated[App, Depends(get_app)],
    x_bot_api_key: Annotated[str | None, Header()] = None,
) -> None:
    app.ensure_bot_caller(x_bot_api_key)


# Type aliases for dependencies
AppDep = Annotated[App, Depends(get_app)]
ClientInfoDep = Annotated[ClientInfo, Depends(get_client_info)]
AccessTokenDep = Annotated[AccessToken, Depends(get_access_token)]
CurrentUserDep = Annotated[User, Depends(get_current_user)]
BotCallerDep = Annotated[None, Depends(require_bot_caller)]
