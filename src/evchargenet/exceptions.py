"""Library exceptions."""

from __future__ import annotations


class EVChargeNetError(Exception):
    """Base exception for the library."""

    error_type = "unknown"
    default_error_code: str | None = None

    def __init__(
        self,
        message: str | None = None,
        *,
        error_code: str | None = None,
        detail: str | None = None,
        user_message: str | None = None,
    ) -> None:
        text = message if message is not None else detail
        if text is None:
            super().__init__()
        else:
            super().__init__(text)
        self.error_code = error_code or self.default_error_code
        self.detail = detail if detail is not None else message
        self.user_message = user_message


class AuthError(EVChargeNetError):
    """Raised when authentication fails or is required."""

    error_type = "auth"
    default_error_code = "auth_error"


class ValidationError(EVChargeNetError):
    """Raised when inputs fail validation."""

    error_type = "validation"
    default_error_code = "validation_error"


class ConfigError(EVChargeNetError):
    """Raised when a backend is missing required configuration."""

    error_type = "config"
    default_error_code = "config_error"


class NotFoundError(EVChargeNetError):
    """Raised when a referenced record does not exist."""

    error_type = "not_found"
    default_error_code = "not_found"


class StationNotFoundError(NotFoundError):
    default_error_code = "station_not_found"


class SessionNotFoundError(NotFoundError):
    default_error_code = "session_not_found"


class UserNotFoundError(NotFoundError):
    default_error_code = "user_not_found"


class PreconditionFailedError(EVChargeNetError):
    """Raised when an action is not allowed in the current state."""

    error_type = "precondition"
    default_error_code = "precondition_failed"


class NoSlotsAvailableError(PreconditionFailedError):
    """Raised when a station has no free slot; the caller may join the queue."""

    default_error_code = "no_slots_available"


class AlreadyQueuedError(PreconditionFailedError):
    default_error_code = "already_queued"


class StationUnavailableError(PreconditionFailedError):
    default_error_code = "station_unavailable"


class InvalidChargeTargetError(PreconditionFailedError):
    default_error_code = "charge_target_invalid"


class ConflictError(EVChargeNetError):
    """Raised when a transaction lost a race against a concurrent update."""

    error_type = "conflict"
    default_error_code = "conflict"


class BackendUnavailableError(EVChargeNetError):
    """Raised when the backend cannot be reached or timed out."""

    error_type = "network"
    default_error_code = "backend_unavailable"


class BackendError(EVChargeNetError):
    """Raised when a backend returns invalid data or is misconfigured."""

    error_type = "backend"
    default_error_code = "backend_error"
