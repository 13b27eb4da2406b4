"""Mapping between typed records and store documents."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, TypeVar

from .accounting import validate_slot_counts
from .backend.base import SERVER_TIMESTAMP, Document, FieldUpdate
from .const import DEFAULT_VEHICLE, MAX_RATING, MIN_RATING
from .exceptions import BackendError, ValidationError
from .models import (
    ActiveSession,
    Booking,
    ProfilePatch,
    Review,
    SlotCounts,
    Station,
    StationDraft,
    StationPatch,
    StationStatus,
    Theme,
    User,
    UserProfile,
    UserRole,
)
from .pricing import get_ev_model
from .util import normalize_tags, require_number, require_text


E = TypeVar("E", bound=StrEnum)


def _coerce_enum(enum_cls: type[E], value: Any, field: str) -> E:
    try:
        return enum_cls(value)
    except ValueError as exc:
        choices = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"{field} must be one of: {choices}.") from exc


def _optional_text(value: Any, field: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string.")
    return value.strip()


def _require_mapping(data: Any, label: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise BackendError(f"Backend returned invalid {label} data.")
    return data


def _read_str(data: dict[str, Any], key: str, label: str, *, default: str | None = None) -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise BackendError(f"Backend returned {label} without a valid {key}.")
    return value


def _read_int(data: dict[str, Any], key: str, label: str, *, default: int | None = None) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise BackendError(f"Backend returned {label} without a valid {key}.")
    return value


def _read_float(data: dict[str, Any], key: str, label: str) -> float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise BackendError(f"Backend returned {label} without a valid {key}.")
    return float(value)


def _read_time(data: dict[str, Any], key: str, label: str) -> datetime:
    value = data.get(key)
    if not isinstance(value, datetime):
        raise BackendError(f"Backend returned {label} without a valid {key}.")
    return value


def _read_strings(data: dict[str, Any], key: str, label: str) -> tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, list | tuple) or not all(isinstance(item, str) for item in value):
        raise BackendError(f"Backend returned {label} with invalid {key}.")
    return tuple(value)


def station_from_document(document: Document) -> Station:
    data = _require_mapping(document.data, "station")
    slots = _require_mapping(data.get("slots"), "station slots")
    total = _read_int(slots, "total", "station slots")
    available = _read_int(slots, "available", "station slots")
    try:
        validate_slot_counts(total, available)
        status = StationStatus(data.get("status"))
    except (ValidationError, ValueError) as exc:
        raise BackendError("Backend returned invalid station data.") from exc
    current_price = data.get("currentPrice")
    if current_price is not None:
        current_price = _read_float(data, "currentPrice", "station")
    return Station(
        id=document.id,
        name=_read_str(data, "name", "station"),
        city=_read_str(data, "city", "station", default=""),
        lat=_read_float(data, "lat", "station"),
        lng=_read_float(data, "lng", "station"),
        slots=SlotCounts(total=total, available=available),
        price_per_kwh=_read_float(data, "pricePerKwh", "station"),
        status=status,
        queue=_read_strings(data, "queue", "station"),
        current_price=current_price,
        images=_read_strings(data, "images", "station"),
        amenities=_read_strings(data, "amenities", "station"),
        charger_types=_read_strings(data, "chargerTypes", "station"),
        mobile=_read_str(data, "mobile", "station", default=""),
    )


def station_document(draft: StationDraft) -> dict[str, Any]:
    """Validate an admin draft and build the document for a new station."""
    validate_slot_counts(draft.total_slots, draft.available_slots)
    price = require_number(draft.price_per_kwh, "price_per_kwh", positive=True)
    data: dict[str, Any] = {
        "name": require_text(draft.name, "name"),
        "city": require_text(draft.city, "city"),
        "lat": require_number(draft.lat, "lat"),
        "lng": require_number(draft.lng, "lng"),
        "mobile": _optional_text(draft.mobile, "mobile"),
        "slots": {"total": draft.total_slots, "available": draft.available_slots},
        "pricePerKwh": price,
        "status": _coerce_enum(StationStatus, draft.status, "status").value,
        "images": list(normalize_tags(draft.images, "images")),
        "amenities": list(normalize_tags(draft.amenities, "amenities")),
        "chargerTypes": list(normalize_tags(draft.charger_types, "charger_types")),
        "queue": [],
    }
    if draft.current_price is not None:
        data["currentPrice"] = require_number(draft.current_price, "current_price", positive=True)
    return data


def station_patch_fields(station: Station, patch: StationPatch) -> tuple[FieldUpdate, ...]:
    """Field updates for ``patch``, validated against the station it applies to."""
    total = patch.total_slots if patch.total_slots is not None else station.slots.total
    available = (
        patch.available_slots if patch.available_slots is not None else station.slots.available
    )
    validate_slot_counts(total, available)
    if patch.clear_current_price and patch.current_price is not None:
        raise ValidationError("current_price cannot be set and cleared at once.")
    fields: list[FieldUpdate] = []
    if patch.name is not None:
        fields.append(FieldUpdate(("name",), require_text(patch.name, "name")))
    if patch.city is not None:
        fields.append(FieldUpdate(("city",), require_text(patch.city, "city")))
    if patch.lat is not None:
        fields.append(FieldUpdate(("lat",), require_number(patch.lat, "lat")))
    if patch.lng is not None:
        fields.append(FieldUpdate(("lng",), require_number(patch.lng, "lng")))
    if patch.mobile is not None:
        fields.append(FieldUpdate(("mobile",), _optional_text(patch.mobile, "mobile")))
    if patch.total_slots is not None:
        fields.append(FieldUpdate(("slots", "total"), total))
    if patch.available_slots is not None:
        fields.append(FieldUpdate(("slots", "available"), available))
    if patch.price_per_kwh is not None:
        price = require_number(patch.price_per_kwh, "price_per_kwh", positive=True)
        fields.append(FieldUpdate(("pricePerKwh",), price))
    if patch.current_price is not None:
        price = require_number(patch.current_price, "current_price", positive=True)
        fields.append(FieldUpdate(("currentPrice",), price))
    if patch.clear_current_price:
        fields.append(FieldUpdate(("currentPrice",), None))
    if patch.status is not None:
        status = _coerce_enum(StationStatus, patch.status, "status")
        fields.append(FieldUpdate(("status",), status.value))
    for values, key, field in (
        (patch.images, "images", "images"),
        (patch.amenities, "amenities", "amenities"),
        (patch.charger_types, "chargerTypes", "charger_types"),
    ):
        if values is not None:
            fields.append(FieldUpdate((key,), list(normalize_tags(values, field))))
    if not fields:
        raise ValidationError("Station patch does not change any field.")
    return tuple(fields)


def session_from_document(document: Document) -> ActiveSession:
    data = _require_mapping(document.data, "session")
    return ActiveSession(
        id=document.id,
        user_id=_read_str(data, "userId", "session"),
        station_id=_read_str(data, "stationId", "session"),
        start_time=_read_time(data, "startTime", "session"),
    )


def session_document(user_id: str, station_id: str) -> dict[str, Any]:
    return {"userId": user_id, "stationId": station_id, "startTime": SERVER_TIMESTAMP}


def booking_from_document(document: Document) -> Booking:
    data = _require_mapping(document.data, "booking")
    return Booking(
        id=document.id,
        user_id=_read_str(data, "userId", "booking"),
        station_id=_read_str(data, "stationId", "booking"),
        created_at=_read_time(data, "createdAt", "booking"),
        duration=_read_int(data, "duration", "booking"),
        kwh_consumed=_read_float(data, "kwhConsumed", "booking"),
        cost=_read_float(data, "cost", "booking"),
    )


def booking_document(
    user_id: str,
    station_id: str,
    *,
    duration: int,
    kwh_consumed: float,
    cost: float,
) -> dict[str, Any]:
    return {
        "userId": user_id,
        "stationId": station_id,
        "createdAt": SERVER_TIMESTAMP,
        "duration": duration,
        "cost": cost,
        "kwhConsumed": kwh_consumed,
    }


def user_from_document(document: Document) -> User:
    data = _require_mapping(document.data, "user")
    raw_profile = data.get("profile") or {}
    profile = _require_mapping(raw_profile, "user profile")
    try:
        role = UserRole(data.get("role", UserRole.USER.value))
        theme = Theme(profile.get("theme", Theme.LIGHT.value))
    except ValueError as exc:
        raise BackendError("Backend returned invalid user data.") from exc
    tour = profile.get("hasCompletedTour", False)
    if not isinstance(tour, bool):
        raise BackendError("Backend returned user profile with invalid hasCompletedTour.")
    return User(
        id=document.id,
        email=_read_str(data, "email", "user"),
        role=role,
        profile=UserProfile(
            favorites=_read_strings(profile, "favorites", "user profile"),
            vehicle=_read_str(profile, "vehicle", "user profile", default=DEFAULT_VEHICLE),
            theme=theme,
            loyalty_points=_read_int(profile, "loyaltyPoints", "user profile", default=0),
            has_completed_tour=tour,
        ),
    )


def user_document(email: str, *, role: UserRole = UserRole.USER) -> dict[str, Any]:
    return {
        "email": email,
        "role": role.value,
        "profile": {
            "favorites": [],
            "vehicle": DEFAULT_VEHICLE,
            "theme": Theme.LIGHT.value,
            "loyaltyPoints": 0,
            "hasCompletedTour": False,
        },
    }


def profile_patch_fields(patch: ProfilePatch) -> tuple[FieldUpdate, ...]:
    fields: list[FieldUpdate] = []
    if patch.favorites is not None:
        favorites = list(normalize_tags(patch.favorites, "favorites"))
        fields.append(FieldUpdate(("profile", "favorites"), favorites))
    if patch.vehicle is not None:
        get_ev_model(patch.vehicle)
        fields.append(FieldUpdate(("profile", "vehicle"), patch.vehicle))
    if patch.theme is not None:
        theme = _coerce_enum(Theme, patch.theme, "theme")
        fields.append(FieldUpdate(("profile", "theme"), theme.value))
    if patch.has_completed_tour is not None:
        if not isinstance(patch.has_completed_tour, bool):
            raise ValidationError("has_completed_tour must be a boolean.")
        fields.append(FieldUpdate(("profile", "hasCompletedTour"), patch.has_completed_tour))
    if not fields:
        raise ValidationError("Profile patch does not change any field.")
    return tuple(fields)


def review_from_document(document: Document) -> Review:
    data = _require_mapping(document.data, "review")
    return Review(
        id=document.id,
        user_id=_read_str(data, "userId", "review"),
        username=_read_str(data, "username", "review", default=""),
        station_id=_read_str(data, "stationId", "review"),
        rating=_read_int(data, "rating", "review"),
        text=_read_str(data, "text", "review", default=""),
        created_at=_read_time(data, "createdAt", "review"),
    )


def review_document(
    user_id: str,
    username: str,
    station_id: str,
    rating: int,
    text: str,
) -> dict[str, Any]:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError("Rating must be an integer.")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}.")
    if not isinstance(text, str):
        raise ValidationError("Review text must be a string.")
    return {
        "userId": user_id,
        "username": username,
        "stationId": station_id,
        "rating": rating,
        "text": text.strip(),
        "createdAt": SERVER_TIMESTAMP,
    }
