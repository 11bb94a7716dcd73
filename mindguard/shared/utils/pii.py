"""PII handling utilities: user identifiers never appear raw in logs.

Every user identifier must be hashed with hash_pii() before it is logged or
handed to a developer-accessible store (event stream, audit tables).
"""
import hashlib
import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)


# Loaded from the deployment secret store in production
_PII_SALT: Optional[str] = None

DEV_PII_SALT = "mindguard_dev_salt_change_in_production_0001"


def configure_pii_salt(salt: str) -> None:
    """Configure the PII hashing salt.

    Must be called during application startup before any PII hashing.

    Args:
        salt: Secret salt value

    Raises:
        ValueError: If salt is empty or too short
    """
    global _PII_SALT
    if not salt or len(salt) < 32:
        logger.critical(
            "PII_SALT_CONFIGURATION_FAILED",
            extra={"reason": "Salt too short or empty", "min_length": 32}
        )
        raise ValueError("PII salt must be at least 32 characters")

    _PII_SALT = salt
    logger.info("PII_SALT_CONFIGURED", extra={"salt_length": len(salt)})


def is_pii_salt_configured() -> bool:
    return _PII_SALT is not None


def ensure_pii_salt() -> None:
    """Configure the salt from PII_HASH_SALT if nothing configured it yet."""
    if _PII_SALT is not None:
        return
    salt = os.getenv("PII_HASH_SALT")
    if not salt:
        logger.warning(
            "PII_SALT_DEV_DEFAULT",
            extra={"action": "set PII_HASH_SALT in production"}
        )
        salt = DEV_PII_SALT
    configure_pii_salt(salt)


def hash_pii(value: str) -> str:
    """Hash a PII value for safe logging and storage.

    Uses SHA-256 with a secret salt to create a consistent,
    non-reversible hash of user identifiers.

    Args:
        value: The PII value to hash (user ID, email, etc.)

    Returns:
        Hashed string safe for logging

    Raises:
        RuntimeError: If PII salt has not been configured

    Example:
        >>> hash_pii("user@example.com")
        'a1b2c3d4e5f6...'  # 64-char hex string
    """
    if _PII_SALT is None:
        logger.critical(
            "PII_HASH_FAILED",
            extra={"reason": "Salt not configured", "action": "call configure_pii_salt()"}
        )
        raise RuntimeError("PII salt not configured. Call configure_pii_salt() first.")

    salted = f"{_PII_SALT}{value}"
    return hashlib.sha256(salted.encode()).hexdigest()


def hash_text_for_audit(text: str) -> str:
    """Fingerprint message text without exposing its content.

    Args:
        text: Raw message text

    Returns:
        SHA-256 hash of the text
    """
    return hashlib.sha256(text.encode()).hexdigest()
