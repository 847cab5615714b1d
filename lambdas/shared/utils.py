"""Utility functions for Scan Gateway Lambda handlers."""
import math
import re
import secrets
import time
from datetime import UTC, datetime

TX_HASH_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")


def generate_payment_id() -> str:
    """Generate a short payment reference.

    Returns:
        12 lowercase hex characters
    """
    return secrets.token_hex(6)


def utc_now() -> str:
    """Get current UTC timestamp in ISO format.

    Returns:
        ISO formatted timestamp string
    """
    return datetime.now(UTC).isoformat()


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def extract_user_id(headers: dict[str, str]) -> str | None:
    """Extract user ID from request headers.

    Looks for the X-User-Id header (case-insensitive).

    Args:
        headers: Request headers dict

    Returns:
        User ID string or None if not found
    """
    # Headers may be case-insensitive
    for key, value in headers.items():
        if key.lower() == "x-user-id":
            return value.strip() or None
    return None


def is_valid_tx_hash(tx_hash: str) -> bool:
    """Check for a 0x-prefixed 32-byte hex transaction hash."""
    return bool(TX_HASH_PATTERN.match(tx_hash))


def retry_after_seconds(retry_after_ms: int) -> int:
    """Round a millisecond wait up to whole seconds (minimum 1)."""
    return max(1, math.ceil(retry_after_ms / 1000))
