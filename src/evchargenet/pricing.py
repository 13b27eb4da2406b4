"""Energy, price and charge estimation helpers."""

from __future__ import annotations

from datetime import datetime

from .const import CHARGING_POWER_KW
from .exceptions import InvalidChargeTargetError, ValidationError
from .models import ActiveSession, ChargeEstimate, EVModel, SessionProgress, Station
from .util import ensure_aware

EV_MODELS: dict[str, EVModel] = {
    "Tata Nexon EV": EVModel(compatible=("CCS", "Type 2"), battery_kwh=40.5),
    "MG ZS EV": EVModel(compatible=("CCS",), battery_kwh=50.3),
    "Hyundai Kona Electric": EVModel(compatible=("CCS",), battery_kwh=39.2),
    "Tata Tigor EV": EVModel(compatible=("CCS",), battery_kwh=26),
    "Other": EVModel(compatible=("Type 2", "CCS", "CHAdeMO"), battery_kwh=50),
}


def is_peak(station: Station) -> bool:
    return station.current_price is not None and station.current_price > station.price_per_kwh


def effective_price(station: Station) -> float:
    """Return the peak override when it is higher than the base price."""
    if is_peak(station):
        return float(station.current_price)  # type: ignore[arg-type]
    return float(station.price_per_kwh)


def elapsed_seconds(start_time: datetime, now: datetime) -> int:
    """Whole seconds between two instants; clock skew never yields a negative value."""
    delta = ensure_aware(now) - ensure_aware(start_time)
    return max(0, int(delta.total_seconds()))


def energy_for_duration(seconds: int | float) -> float:
    return (seconds / 3600) * CHARGING_POWER_KW


def session_progress(session: ActiveSession, station: Station, now: datetime) -> SessionProgress:
    """Live readings for an in-progress session, priced at the current rate."""
    seconds = elapsed_seconds(session.start_time, now)
    kwh = energy_for_duration(seconds)
    price = effective_price(station)
    return SessionProgress(
        session_id=session.id,
        elapsed_seconds=seconds,
        kwh_consumed=kwh,
        effective_price=price,
        cost=kwh * price,
    )


def get_ev_model(vehicle: str) -> EVModel:
    model = EV_MODELS.get(vehicle)
    if model is None:
        raise ValidationError(f"Unknown vehicle model: {vehicle}.")
    return model


def estimate_charge(
    vehicle: str,
    current_soc: int,
    target_soc: int,
    station: Station,
) -> ChargeEstimate:
    for value, field in ((current_soc, "current_soc"), (target_soc, "target_soc")):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{field} must be an integer percentage.")
        if not 0 <= value <= 100:
            raise ValidationError(f"{field} must be between 0 and 100.")
    if target_soc <= current_soc:
        raise InvalidChargeTargetError("Target charge must be higher than the current charge.")
    model = get_ev_model(vehicle)
    kwh_needed = ((target_soc - current_soc) / 100) * model.battery_kwh
    return ChargeEstimate(
        kwh_needed=kwh_needed,
        minutes=(kwh_needed / CHARGING_POWER_KW) * 60,
        cost=kwh_needed * effective_price(station),
    )
