"""Verification of Telegram Mini App init data.

Telegram signs the init data string with a key derived from the bot token:

    secret_key = HMAC_SHA256(key="WebAppData", msg=bot_token)
    hash = hex(HMAC_SHA256(key=secret_key, msg=data_check_string))

where ``data_check_string`` is every ``key=value`` pair except ``hash``,
sorted by key and joined with newlines.

Verification never raises: any failure returns ``None`` so callers cannot
tell a bad signature from a stale or malformed payload.
"""

import hashlib
import hmac
import json
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qsl

import structlog
from pydantic import ValidationError as PydanticValidationError

from navigapp.core.modules.identity.models import TelegramIdentity, TelegramUser
from navigapp.utils import now

logger = structlog.get_logger(__name__)

WEBAPP_DATA_KEY = b"WebAppData"
MAX_AUTH_AGE = timedelta(seconds=86400)
DEMO_INIT_DATA = "demo-init-data"
DEMO_INIT_DATA_PREFIX = "demo:"


def build_data_check_string(pairs: Iterable[tuple[str, str]]) -> str:
    """Canonical string: all fields except ``hash``, sorted by key, newline-joined."""
    fields = [(key, value) for key, value in pairs if key != "hash"]
    fields.sort(key=lambda item: item[0])
    return "\n".join(f"{key}={value}" for key, value in fields)


def derive_secret_key(bot_token: str) -> bytes:
    return hmac.new(WEBAPP_DATA_KEY, bot_token.encode("utf-8"), hashlib.sha256).digest()


def sign_data_check_string(data_check_string: str, bot_token: str) -> str:
    return hmac.new(derive_secret_key(bot_token), data_check_string.encode("utf-8"), hashlib.sha256).hexdigest()


class InitDataVerifier:
    """Validates signed init data against the bot token."""

    def __init__(self, bot_token: str, max_age: timedelta = MAX_AUTH_AGE) -> None:
        self._bot_token = bot_token
        self._max_age = max_age

    def verify(self, init_data: str) -> TelegramIdentity | None:
        """Return the embedded identity, or None if the payload is not authentic and fresh."""
        try:
            pairs = parse_qsl(init_data, keep_blank_values=True)
        except ValueError:
            return self._reject("unparseable")

        fields = dict(pairs)
        supplied_hash = fields.get("hash")
        if not supplied_hash:
            return self._reject("missing_hash")

        expected_hash = sign_data_check_string(build_data_check_string(pairs), self._bot_token)
        if not hmac.compare_digest(expected_hash.encode("ascii"), supplied_hash.encode("utf-8")):
            return self._reject("signature_mismatch")

        try:
            auth_date = datetime.fromtimestamp(int(fields.get("auth_date", "0")), UTC)
        except (ValueError, OverflowError, OSError):
            return self._reject("bad_auth_date")
        if now() - auth_date > self._max_age:
            return self._reject("stale")

        raw_user = fields.get("user")
        if not raw_user:
            return self._reject("missing_user")
        try:
            user = TelegramUser.model_validate(json.loads(raw_user))
        except (ValueError, PydanticValidationError):
            return self._reject("bad_user")

        return TelegramIdentity(
            user=user,
            auth_date=auth_date,
            hash=supplied_hash,
            query_id=fields.get("query_id"),
            start_param=fields.get("start_param"),
        )

    @staticmethod
    def _reject(reason: str) -> None:
        logger.info("init_data_rejected", reason=reason)


class DemoInitDataVerifier(InitDataVerifier):
    """Also accepts the demo sentinel and returns a canned identity.

    Only constructed when ``demo_identity_enabled`` is set, which config
    validation forbids outside the local environment.
    """

    def verify(self, init_data: str) -> TelegramIdentity | None:
        if init_data == DEMO_INIT_DATA or init_data.startswith(DEMO_INIT_DATA_PREFIX):
            logger.warning("demo_identity_used")
            return TelegramIdentity(
                user=TelegramUser(id=12345, first_name="Demo User", username="demo_user"),
                auth_date=now(),
                hash="demo",
            )
        return super().verify(init_data)
