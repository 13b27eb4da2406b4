"""Public data models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class StationStatus(StrEnum):
    OPERATIONAL = "Operational"
    MAINTENANCE = "Maintenance"


class StationAvailability(StrEnum):
    AVAILABLE = "Available"
    BUSY = "Busy"
    MAINTENANCE = "Under Maintenance"


class UserRole(StrEnum):
    USER = "user"
    ADMIN = "admin"


class Theme(StrEnum):
    LIGHT = "light"
    DARK = "dark"


@dataclass(frozen=True, slots=True)
class BackendInfo:
    id: str
    realtime: bool


@dataclass(frozen=True, slots=True)
class Identity:
    uid: str
    email: str


@dataclass(frozen=True, slots=True)
class SlotCounts:
    total: int
    available: int


@dataclass(frozen=True, slots=True)
class Station:
    id: str
    name: str
    city: str
    lat: float
    lng: float
    slots: SlotCounts
    price_per_kwh: float
    status: StationStatus
    queue: tuple[str, ...] = ()
    current_price: float | None = None
    images: tuple[str, ...] = ()
    amenities: tuple[str, ...] = ()
    charger_types: tuple[str, ...] = ()
    mobile: str = ""


@dataclass(frozen=True, slots=True)
class StationDraft:
    """Administrator input for a new station."""

    name: str
    city: str
    lat: float
    lng: float
    total_slots: int
    available_slots: int
    price_per_kwh: float
    status: StationStatus = StationStatus.OPERATIONAL
    current_price: float | None = None
    images: tuple[str, ...] = ()
    amenities: tuple[str, ...] = ()
    charger_types: tuple[str, ...] = ()
    mobile: str = ""


@dataclass(frozen=True, slots=True)
class StationPatch:
    """Field-level station edit; ``None`` leaves a field unchanged."""

    name: str | None = None
    city: str | None = None
    lat: float | None = None
    lng: float | None = None
    total_slots: int | None = None
    available_slots: int | None = None
    price_per_kwh: float | None = None
    current_price: float | None = None
    clear_current_price: bool = False
    status: StationStatus | None = None
    images: tuple[str, ...] | None = None
    amenities: tuple[str, ...] | None = None
    charger_types: tuple[str, ...] | None = None
    mobile: str | None = None


@dataclass(frozen=True, slots=True)
class StationFilter:
    search_term: str = ""
    charger_type: str | None = None
    amenity: str | None = None
    available_only: bool = False


@dataclass(frozen=True, slots=True)
class ActiveSession:
    id: str
    user_id: str
    station_id: str
    start_time: datetime


@dataclass(frozen=True, slots=True)
class Booking:
    id: str
    user_id: str
    station_id: str
    created_at: datetime
    duration: int
    kwh_consumed: float
    cost: float


@dataclass(frozen=True, slots=True)
class UserProfile:
    favorites: tuple[str, ...] = ()
    vehicle: str = "Other"
    theme: Theme = Theme.LIGHT
    loyalty_points: int = 0
    has_completed_tour: bool = False


@dataclass(frozen=True, slots=True)
class ProfilePatch:
    favorites: tuple[str, ...] | None = None
    vehicle: str | None = None
    theme: Theme | None = None
    has_completed_tour: bool | None = None


@dataclass(frozen=True, slots=True)
class User:
    id: str
    email: str
    role: UserRole
    profile: UserProfile


@dataclass(frozen=True, slots=True)
class Review:
    id: str
    user_id: str
    username: str
    station_id: str
    rating: int
    text: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class EVModel:
    compatible: tuple[str, ...]
    battery_kwh: float


@dataclass(frozen=True, slots=True)
class SessionProgress:
    session_id: str
    elapsed_seconds: int
    kwh_consumed: float
    effective_price: float
    cost: float


@dataclass(frozen=True, slots=True)
class ChargeEstimate:
    kwh_needed: float
    minutes: float
    cost: float


@dataclass(frozen=True, slots=True)
class UsageSummary:
    station_id: str
    station_name: str
    sessions: int
    kwh_consumed: float
    cost: float
