"""Shared utilities for the MindGuard pipeline."""
from .pii import (
    hash_pii,
    hash_text_for_audit,
    configure_pii_salt,
    ensure_pii_salt,
    is_pii_salt_configured,
)
from .clock import Clock, utc_now, hours_between
from .retry import call_with_retry
from .concurrency import UserSerializer

__all__ = [
    "hash_pii",
    "hash_text_for_audit",
    "configure_pii_salt",
    "ensure_pii_salt",
    "is_pii_salt_configured",
    "Clock",
    "utc_now",
    "hours_between",
    "call_with_retry",
    "UserSerializer",
]
