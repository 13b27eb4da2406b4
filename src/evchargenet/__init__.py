"""evchargenet package."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from .client import Client
from .exceptions import (
    AlreadyQueuedError,
    AuthError,
    BackendError,
    BackendUnavailableError,
    ConfigError,
    ConflictError,
    EVChargeNetError,
    InvalidChargeTargetError,
    NoSlotsAvailableError,
    NotFoundError,
    PreconditionFailedError,
    SessionNotFoundError,
    StationNotFoundError,
    StationUnavailableError,
    UserNotFoundError,
    ValidationError,
)
from .models import (
    ActiveSession,
    BackendInfo,
    Booking,
    ChargeEstimate,
    ProfilePatch,
    Review,
    SessionProgress,
    Station,
    StationAvailability,
    StationDraft,
    StationFilter,
    StationPatch,
    StationStatus,
    UsageSummary,
    User,
    UserProfile,
)
from .service import ChargingService
from .state import StationState, station_availability

try:
    __version__ = version("evchargenet")
except PackageNotFoundError:  # pragma: no cover - not installed
    __version__ = "0.0.0"

__all__ = [
    "ActiveSession",
    "AlreadyQueuedError",
    "AuthError",
    "BackendError",
    "BackendInfo",
    "BackendUnavailableError",
    "Booking",
    "ChargeEstimate",
    "ChargingService",
    "Client",
    "ConfigError",
    "ConflictError",
    "EVChargeNetError",
    "InvalidChargeTargetError",
    "NoSlotsAvailableError",
    "NotFoundError",
    "PreconditionFailedError",
    "ProfilePatch",
    "Review",
    "SessionNotFoundError",
    "SessionProgress",
    "Station",
    "StationAvailability",
    "StationDraft",
    "StationFilter",
    "StationNotFoundError",
    "StationPatch",
    "StationState",
    "StationStatus",
    "StationUnavailableError",
    "UsageSummary",
    "User",
    "UserNotFoundError",
    "UserProfile",
    "ValidationError",
    "__version__",
]
