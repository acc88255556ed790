"""Exception hierarchy for pixo-sync.

Persistence failures are raised from the gateway and the override store and
caught at the reconciliation layer, which reverts optimistic state.
"""

from typing import Any

# PostgreSQL SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"

# PostgREST code for ``.single()`` returning zero (or many) rows
NO_SINGLE_ROW = "PGRST116"


class PixoSyncError(Exception):
    """Base class for all pixo-sync errors."""


class ConfigurationError(PixoSyncError):
    """Backend URL or key missing or invalid."""


class TransientGatewayError(PixoSyncError):
    """Retryable network/HTTP layer failures.

    Raised for errors that may succeed on a later attempt:
    - Network timeouts
    - Connection errors
    - HTTP 429 (rate limit)
    - HTTP 5xx (server errors)
    """


class GatewayError(PixoSyncError):
    """Non-retryable error reported by the remote backend.

    Attributes:
        status: HTTP status code of the response
        code: Database / PostgREST error code (e.g. ``"23505"``)
        message: Human-readable error message
        details: Extra detail string from the backend
        hint: Optional hint from the backend
    """

    def __init__(
        self,
        status: int,
        code: str | None = None,
        message: str | None = None,
        details: Any = None,
        hint: str | None = None,
    ) -> None:
        self.status = status
        self.code = code
        self.message = message or f"HTTP {status}"
        self.details = details
        self.hint = hint
        super().__init__(f"[{status}] {code or '-'}: {self.message}")

    @property
    def is_unique_violation(self) -> bool:
        """True when the row already exists (toggle-off signal)."""
        return self.code == UNIQUE_VIOLATION

    @classmethod
    def from_payload(cls, status: int, payload: Any) -> "GatewayError":
        """Build the right subclass from a PostgREST/GoTrue error body."""
        if not isinstance(payload, dict):
            return cls(status, message=str(payload)[:200] if payload else None)

        code = payload.get("code") or payload.get("error_code") or payload.get("error")
        message = (
            payload.get("message")
            or payload.get("msg")
            or payload.get("error_description")
        )
        code = str(code) if code is not None else None
        error_cls = NotFoundError if code == NO_SINGLE_ROW else cls
        return error_cls(
            status,
            code=code,
            message=message,
            details=payload.get("details"),
            hint=payload.get("hint"),
        )


class NotFoundError(GatewayError):
    """A single-row lookup matched nothing."""


class OverrideStoreError(PixoSyncError):
    """Local override store write failed."""


__all__ = [
    "UNIQUE_VIOLATION",
    "NO_SINGLE_ROW",
    "PixoSyncError",
    "ConfigurationError",
    "TransientGatewayError",
    "GatewayError",
    "NotFoundError",
    "OverrideStoreError",
]
