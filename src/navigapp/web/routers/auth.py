from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from navigapp.app import BotAuthResult, WebAppAuthResult
from navigapp.core.modules.handshake.models import HandshakeStatus, InitiatedHandshake
from navigapp.core.modules.identity.models import TelegramUserData
from navigapp.core.modules.token.models import TokenPair
from navigapp.web.deps import AccessTokenDep, AppDep, BotCallerDep, ClientInfoDep
from navigapp.web.openapi import ApiResponse, ErrorResponse

router = APIRouter(tags=["auth"])


class InitiateBotAuthRequest(BaseModel):
    """Bot-side request to open a handshake for a Telegram user."""

    telegram_id: int = Field(..., description="Telegram user ID (numeric string accepted)")
    user_data: TelegramUserData | None = Field(None, description="Profile captured from the bot update")

    model_config = {"json_schema_extra": {"examples": [{"telegram_id": 12345, "user_data": {"first_name": "Ann"}}]}}


class ValidateBotAuthRequest(BaseModel):
    auth_hash: str = Field(..., min_length=1, description="Auth hash from the deep link")


class CompleteBotAuthRequest(BaseModel):
    """Web app request to consume an auth hash."""

    auth_hash: str = Field(..., min_length=1, description="Auth hash from the deep link")
    telegram_user_data: TelegramUserData | None = Field(None, description="Fresher profile fields from the web app")


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, description="Refresh token of the current session")


class TelegramAuthRequest(BaseModel):
    """Legacy init-data authentication request."""

    init_data: str = Field(..., alias="initData", min_length=1, description="Raw Telegram WebApp initData string")


@router.post(
    "/auth/bot/initiate",
    summary="Start bot authentication",
    description="Create a single-use auth hash for a Telegram user and return the deep link carrying it. "
    "Every call creates an independent handshake.",
    operation_id="initiateBotAuth",
    responses={
        200: {"description": "Handshake created"},
        400: {"model": ErrorResponse, "description": "Invalid request"},
        403: {"model": ErrorResponse, "description": "Bot credentials required"},
        500: {"model": ErrorResponse, "description": "Database error"},
    },
)
async def initiate_bot_auth(
    req: InitiateBotAuthRequest, app: AppDep, client: ClientInfoDep, _: BotCallerDep
) -> ApiResponse[InitiatedHandshake]:
    return ApiResponse(data=await app.initiate_bot_auth(req.telegram_id, req.user_data, client))


@router.post(
    "/auth/bot/validate",
    summary="Check auth hash",
    description="Report whether an auth hash can still be completed. Does not consume it.",
    operation_id="validateBotAuth",
    responses={
        200: {"description": "Hash status"},
        400: {"model": ErrorResponse, "description": "Invalid request"},
    },
)
async def validate_bot_auth(req: ValidateBotAuthRequest, app: AppDep) -> ApiResponse[HandshakeStatus]:
    return ApiResponse(data=await app.get_bot_auth_status(req.auth_hash))


@router.post(
    "/auth/bot/complete",
    summary="Complete bot authentication",
    description="Consume an auth hash and issue an access/refresh token pair. A hash can be completed once.",
    operation_id="completeBotAuth",
    responses={
        200: {"description": "Authenticated"},
        401: {"model": ErrorResponse, "description": "Invalid, expired or already used auth hash"},
        500: {"model": ErrorResponse, "description": "Database error"},
    },
)
async def complete_bot_auth(req: CompleteBotAuthRequest, app: AppDep, client: ClientInfoDep) -> ApiResponse[BotAuthResult]:
    return ApiResponse(data=await app.complete_bot_auth(req.auth_hash, req.telegram_user_data, client))


@router.post(
    "/auth/refresh",
    summary="Refresh tokens",
    description="Rotate the token pair of the session identified by the refresh token.",
    operation_id="refreshTokens",
    responses={
        200: {"description": "New token pair"},
        401: {"model": ErrorResponse, "description": "Session expired"},
    },
)
async def refresh_tokens(req: RefreshRequest, app: AppDep, client: ClientInfoDep) -> ApiResponse[TokenPair]:
    return ApiResponse(data=await app.refresh_tokens(req.refresh_token, client))


@router.post(
    "/auth/logout",
    summary="End session",
    description="Invalidate the session behind the bearer access token.",
    operation_id="logout",
    responses={
        200: {"description": "Successfully logged out"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def logout(app: AppDep, access_token: AccessTokenDep) -> ApiResponse[dict[str, Any]]:
    await app.logout(access_token)
    return ApiResponse(data={})


@router.post(
    "/auth/telegram",
    summary="Authenticate with init data",
    description="Fallback path: verify signed Telegram WebApp init data directly and issue a token pair.",
    operation_id="authenticateTelegram",
    responses={
        200: {"description": "Authenticated"},
        401: {"model": ErrorResponse, "description": "Invalid Telegram authentication data"},
    },
)
async def authenticate_telegram(
    req: TelegramAuthRequest, app: AppDep, client: ClientInfoDep
) -> ApiResponse[WebAppAuthResult]:
    return ApiResponse(data=await app.authenticate_webapp(req.init_data, client))
