from abc import ABC
from typing import ClassVar


class UserError(ABC, Exception):
    """Base class for user-related errors.

    All errors that inherit from UserError will have their messages
    displayed to the user. These errors should not contain any
    sensitive information.
    """

    code: ClassVar[str] = "BAD_REQUEST"


class NotFoundError(UserError):
    """Raised when a requested resource is not found."""

    code = "NOT_FOUND"

    def __init__(self, message: str = "Document not found") -> None:
        super().__init__(message)


class AccessDeniedError(UserError):
    """Raised when a caller lacks the credentials for a privileged operation."""

    code = "ACCESS_DENIED"

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class ValidationError(UserError):
    """Raised when user input fails validation."""

    code = "VALIDATION_ERROR"


class AuthenticationError(UserError):
    """Raised when authentication fails."""

    code = "AUTH_ERROR"

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message)


class InvalidIdentityError(AuthenticationError):
    """Signed Telegram init data failed signature or freshness checks.

    The reason is never exposed; the user is sent back to the bot.
    """

    code = "INVALID_AUTH_DATA"

    def __init__(self, message: str = "Invalid Telegram authentication data. Please restart via /start") -> None:
        super().__init__(message)


class HandshakeError(AuthenticationError):
    """Auth hash is unknown, expired, or already used.

    The three cases share one message so a replayed hash reveals nothing.
    """

    code = "AUTH_ERROR"

    def __init__(self, message: str = "Invalid or expired auth hash. Please use /start again") -> None:
        super().__init__(message)


class TokenValidationError(AuthenticationError):
    """Access token is missing, malformed, mis-signed, expired, or no longer bound to a live session."""

    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class SessionExpiredError(AuthenticationError):
    """Refresh failed; the client must drop every stored credential."""

    code = "SESSION_EXPIRED"

    def __init__(self, message: str = "Session expired. Please sign in again") -> None:
        super().__init__(message)


class DatabaseError(Exception):
    """Persistence failure during handshake or session writes.

    Not a UserError: details stay in server logs, the user sees a generic retry message.
    """

    code: ClassVar[str] = "DATABASE_ERROR"
    public_message: ClassVar[str] = "Something went wrong. Please try again"
