"""Account id generation and email normalisation."""

import re
import uuid

ACCOUNT_ID_PREFIX = "acct"

# acct_<16 hex chars>
ACCOUNT_ID_PATTERN = re.compile(r"^acct_[0-9a-f]{16}$")

# Deliberately loose: the auth provider owns real address validation
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def generate_account_id() -> str:
    """Generate a unique internal account id.

    Example: acct_a1b2c3d4e5f6a7b8
    """
    return f"{ACCOUNT_ID_PREFIX}_{uuid.uuid4().hex[:16]}"


def validate_account_id(account_id: str) -> bool:
    """Check that an id looks like one generate_account_id() produced."""
    return bool(account_id) and ACCOUNT_ID_PATTERN.match(account_id) is not None


def normalize_email(email: str) -> str:
    """Normalise an email for identity matching (trimmed, lower-case).

    Raises:
        ValueError: If the value does not look like an email address
    """
    if not email or not isinstance(email, str):
        raise ValueError("Email must be a non-empty string")
    normalized = email.strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValueError(f"Invalid email address: '{email}'")
    return normalized
