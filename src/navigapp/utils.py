from datetime import UTC, datetime


def now() -> datetime:
    return datetime.now(UTC)


def mask_secret(value: str, visible: int = 6) -> str:
    """Shorten a token or hash for log output."""
    if len(value) <= visible:
        return "***"
    return f"{value[:visible]}..."
