"""
Error taxonomy shared by the registry components.

Every error carries a stable ``kind`` and a client-safe ``message``. The HTTP
layer renders them as ``{"error": kind, "message": message, **extra}``.
"""

from __future__ import annotations

from typing import Any


class RegistryError(Exception):
    """Base class for all client-facing registry errors."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def extra(self) -> dict[str, Any]:
        """Additional structured fields for the response body."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "message": self.message, **self.extra()}


class ValidationError(RegistryError):
    """Missing or malformed input."""

    kind = "validation_error"
    status_code = 400

    def __init__(self, message: str, fields: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or {}

    def extra(self) -> dict[str, Any]:
        return {"fields": self.fields} if self.fields else {}


class NotFound(RegistryError):
    kind = "not_found"
    status_code = 404


class Conflict(RegistryError):
    kind = "conflict"
    status_code = 409


class Unauthorized(RegistryError):
    kind = "unauthorized"
    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class InvalidCredential(RegistryError):
    """Wrong password; reports how many attempts remain before lockout."""

    kind = "invalid_credential"
    status_code = 401

    def __init__(self, remaining_attempts: int) -> None:
        plural = "" if remaining_attempts == 1 else "s"
        super().__init__(
            f"Incorrect password. {remaining_attempts} attempt{plural} remaining"
        )
        self.remaining_attempts = remaining_attempts

    def extra(self) -> dict[str, Any]:
        return {"remaining_attempts": self.remaining_attempts}


class RateLimited(RegistryError):
    """Login refused because the client is inside a lockout window."""

    kind = "rate_limited"
    status_code = 429

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        super().__init__(
            message or f"Too many attempts. Try again in {retry_after}s"
        )
        self.retry_after = retry_after

    def extra(self) -> dict[str, Any]:
        return {"retry_after": self.retry_after}


class StorageFailure(RegistryError):
    """Persistence I/O failed. The cause is logged, never sent to the client."""

    kind = "storage_failure"
    status_code = 500

    def __init__(self, message: str = "Storage failure") -> None:
        super().__init__(message)


class CredentialError(Exception):
    """Credential file missing or unreadable; fatal at startup."""
