from datetime import UTC, datetime, timedelta

import pytest

from evchargenet.exceptions import InvalidChargeTargetError, ValidationError
from evchargenet.models import ActiveSession, SlotCounts, Station, StationStatus
from evchargenet.pricing import (
    EV_MODELS,
    effective_price,
    elapsed_seconds,
    energy_for_duration,
    estimate_charge,
    get_ev_model,
    is_peak,
    session_progress,
)

START = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)


def _station(*, price: float = 20.0, current_price: float | None = None) -> Station:
    return Station(
        id="s1",
        name="Hub",
        city="Pune",
        lat=18.5,
        lng=73.8,
        slots=SlotCounts(total=2, available=1),
        price_per_kwh=price,
        status=StationStatus.OPERATIONAL,
        current_price=current_price,
    )


def test_effective_price_prefers_higher_override() -> None:
    assert effective_price(_station()) == 20.0
    assert effective_price(_station(current_price=25.0)) == 25.0
    assert is_peak(_station(current_price=25.0))


def test_effective_price_ignores_lower_override() -> None:
    station = _station(current_price=15.0)
    assert effective_price(station) == 20.0
    assert not is_peak(station)


def test_elapsed_seconds_floors_and_clamps() -> None:
    assert elapsed_seconds(START, START + timedelta(seconds=90, milliseconds=900)) == 90
    assert elapsed_seconds(START, START - timedelta(seconds=1)) == 0


def test_energy_for_duration_uses_fixed_power() -> None:
    assert energy_for_duration(3600) == 25
    assert energy_for_duration(144) == pytest.approx(1.0)


def test_session_progress() -> None:
    session = ActiveSession(id="sess1", user_id="u1", station_id="s1", start_time=START)
    progress = session_progress(session, _station(current_price=24.0), START + timedelta(minutes=6))
    assert progress.session_id == "sess1"
    assert progress.elapsed_seconds == 360
    assert progress.kwh_consumed == pytest.approx(2.5)
    assert progress.effective_price == 24.0
    assert progress.cost == pytest.approx(60.0)


def test_ev_models_table() -> None:
    assert get_ev_model("Tata Nexon EV").battery_kwh == 40.5
    assert get_ev_model("Other").compatible == ("Type 2", "CCS", "CHAdeMO")
    assert set(EV_MODELS) == {
        "Tata Nexon EV",
        "MG ZS EV",
        "Hyundai Kona Electric",
        "Tata Tigor EV",
        "Other",
    }
    with pytest.raises(ValidationError):
        get_ev_model("Cybertruck")


def test_estimate_charge() -> None:
    estimate = estimate_charge("Other", 20, 80, _station())
    assert estimate.kwh_needed == pytest.approx(30.0)
    assert estimate.minutes == pytest.approx(72.0)
    assert estimate.cost == pytest.approx(600.0)


def test_estimate_charge_rejects_non_increasing_target() -> None:
    with pytest.raises(InvalidChargeTargetError):
        estimate_charge("Other", 80, 80, _station())
    with pytest.raises(InvalidChargeTargetError):
        estimate_charge("Other", 90, 10, _station())


@pytest.mark.parametrize(("current", "target"), [(-1, 50), (10, 101), (10.5, 50), (True, 50)])
def test_estimate_charge_rejects_invalid_soc(current, target) -> None:
    with pytest.raises(ValidationError):
        estimate_charge("Other", current, target, _station())
