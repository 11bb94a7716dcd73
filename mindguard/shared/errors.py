"""Error taxonomy for the safety pipeline.

ValidationError is raised at the boundary and never retried.
ExternalServiceError is raised by collaborator clients; retryable failures are
retried a bounded number of times before the caller falls back.
InternalStateError signals corrupted per-user state; the owner resets that
user's state and continues.
"""
from typing import Optional


class MindGuardError(Exception):
    """Base exception for all pipeline errors."""
    pass


class ValidationError(MindGuardError):
    """Malformed input rejected before it enters the engine."""
    pass


class ExternalServiceError(MindGuardError):
    """Failure of an external collaborator (sentiment, content safety, store)."""

    def __init__(
        self,
        service: str,
        message: str,
        code: Optional[str] = None,
        retryable: bool = False,
    ):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.code = code or "SERVICE_ERROR"
        self.retryable = retryable


class InternalStateError(MindGuardError):
    """Per-user state is missing or inconsistent."""

    def __init__(self, user_id_hash: str, reason: str):
        super().__init__(reason)
        self.user_id_hash = user_id_hash
        self.reason = reason
