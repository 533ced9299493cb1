"""Record ids, join codes and timestamps."""

import secrets
import string
import uuid
from datetime import UTC, datetime

JOIN_CODE_LENGTH = 6
_BASE36 = string.digits + string.ascii_uppercase


def new_id() -> str:
    """Generate a new record id (UUID4 string)."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def generate_join_code() -> str:
    """
    Generate a session join code.

    Three cryptographically random bytes rendered in upper-case base 36,
    zero-padded to six characters. Uniqueness is enforced by the store.
    """
    value = int.from_bytes(secrets.token_bytes(3), "big")
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits)).rjust(JOIN_CODE_LENGTH, "0")


def normalize_join_code(code: str) -> str:
    """Normalize user-typed join codes for lookup."""
    return code.strip().upper()
