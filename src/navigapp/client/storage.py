"""Local credential storage for the auth client.

Credentials are written and cleared as one unit: a store never holds a
partial set of keys.
"""

import json
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Protocol

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from navigapp.core.modules.token.models import TokenPair
from navigapp.core.modules.user.models import AuthMethod, UserView

logger = structlog.get_logger(__name__)

CREDENTIAL_KEYS = (
    "access_token",
    "refresh_token",
    "token_expires_at",
    "refresh_expires_at",
    "user_data",
    "auth_method",
)


class StoredCredentials(BaseModel):
    """Everything the client keeps between runs."""

    access_token: str
    refresh_token: str
    token_expires_at: datetime
    refresh_expires_at: datetime
    user: UserView
    auth_method: AuthMethod

    @classmethod
    def from_tokens(cls, tokens: TokenPair, user: UserView, auth_method: AuthMethod) -> "StoredCredentials":
        return cls(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expires_at=tokens.expires_at,
            refresh_expires_at=tokens.refresh_expires_at,
            user=user,
            auth_method=auth_method,
        )

    def with_tokens(self, tokens: TokenPair) -> "StoredCredentials":
        """Same user and method, rotated token pair."""
        return self.model_copy(
            update={
                "access_token": tokens.access_token,
                "refresh_token": tokens.refresh_token,
                "token_expires_at": tokens.expires_at,
                "refresh_expires_at": tokens.refresh_expires_at,
            }
        )

    def to_items(self) -> dict[str, str]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_expires_at": self.token_expires_at.isoformat(),
            "refresh_expires_at": self.refresh_expires_at.isoformat(),
            "user_data": self.user.model_dump_json(),
            "auth_method": self.auth_method.value,
        }

    @classmethod
    def from_items(cls, items: Mapping[str, str]) -> "StoredCredentials | None":
        """Parse stored items; None when any key is missing or unreadable."""
        if any(not items.get(key) for key in CREDENTIAL_KEYS):
            return None
        try:
            return cls(
                access_token=items["access_token"],
                refresh_token=items["refresh_token"],
                token_expires_at=datetime.fromisoformat(items["token_expires_at"]),
                refresh_expires_at=datetime.fromisoformat(items["refresh_expires_at"]),
                user=UserView.model_validate_json(items["user_data"]),
                auth_method=AuthMethod(items["auth_method"]),
            )
        except (ValueError, PydanticValidationError):
            logger.warning("stored_credentials_unreadable")
            return None


class CredentialStore(Protocol):
    """Key/value store holding the credential keys."""

    def load(self) -> dict[str, str]: ...

    def save(self, items: Mapping[str, str]) -> None: ...

    def clear(self) -> None: ...


class MemoryCredentialStore:
    def __init__(self) -> None:
        self.items: dict[str, str] = {}

    def load(self) -> dict[str, str]:
        return dict(self.items)

    def save(self, items: Mapping[str, str]) -> None:
        self.items = {key: items[key] for key in CREDENTIAL_KEYS}

    def clear(self) -> None:
        self.items = {}


class FileCredentialStore:
    """JSON file store, rewritten whole on every save."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("credential_file_unreadable", path=str(self._path))
            return {}
        if not isinstance(data, dict):
            return {}
        return {key: value for key, value in data.items() if isinstance(value, str)}

    def save(self, items: Mapping[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps({key: items[key] for key in CREDENTIAL_KEYS}), encoding="utf-8")
        tmp_path.replace(self._path)

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
