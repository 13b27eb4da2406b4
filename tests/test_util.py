from datetime import UTC, datetime, timedelta, timezone

import pytest

from evchargenet.exceptions import ValidationError
from evchargenet.util import (
    ensure_aware,
    format_utc_timestamp,
    new_document_id,
    normalize_tags,
    parse_timestamp,
    require_id,
    require_int,
    require_number,
    require_text,
)


def test_new_document_id_shape() -> None:
    first = new_document_id()
    second = new_document_id()
    assert len(first) == 20
    assert first.isalnum()
    assert first != second


def test_format_utc_timestamp_converts_offset() -> None:
    dt = datetime(2024, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    assert format_utc_timestamp(dt) == "2024-01-01T10:00:00Z"


def test_format_utc_timestamp_keeps_microseconds() -> None:
    dt = datetime(2024, 1, 1, 10, 0, 0, 123456, tzinfo=UTC)
    assert format_utc_timestamp(dt) == "2024-01-01T10:00:00.123456Z"


def test_format_utc_timestamp_rejects_naive() -> None:
    with pytest.raises(ValidationError):
        format_utc_timestamp(datetime(2024, 1, 1, 12, 0))


def test_parse_timestamp_normalizes_to_utc() -> None:
    parsed = parse_timestamp("2024-01-01T12:00:00+02:00")
    assert parsed == datetime(2024, 1, 1, 10, 0, tzinfo=UTC)
    assert parse_timestamp("2024-01-01T10:00:00Z") == parsed


@pytest.mark.parametrize("value", ["", "yesterday", "2024-01-01T10:00:00"])
def test_parse_timestamp_invalid(value: str) -> None:
    with pytest.raises(ValidationError):
        parse_timestamp(value)


def test_ensure_aware() -> None:
    dt = datetime(2024, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=1)))
    assert ensure_aware(dt) == datetime(2024, 1, 1, 11, 0, tzinfo=UTC)
    with pytest.raises(ValidationError):
        ensure_aware(datetime(2024, 1, 1))


def test_require_helpers() -> None:
    assert require_id(" s1 ", "station_id") == "s1"
    assert require_id(42, "station_id") == "42"
    assert require_text(" Hub ", "name") == "Hub"
    assert require_int(3, "slots", minimum=0) == 3
    assert require_number(4, "price", positive=True) == 4.0
    with pytest.raises(ValidationError):
        require_id("  ", "station_id")
    with pytest.raises(ValidationError):
        require_text("", "name")
    with pytest.raises(ValidationError):
        require_int(True, "slots")
    with pytest.raises(ValidationError):
        require_int(-1, "slots", minimum=0)
    with pytest.raises(ValidationError):
        require_number(0, "price", positive=True)
    with pytest.raises(ValidationError):
        require_number(float("nan"), "lat")


def test_normalize_tags() -> None:
    assert normalize_tags(" Cafe, Wifi ,, Cafe ", "amenities") == ("Cafe", "Wifi")
    assert normalize_tags(["CCS", " Type 2"], "charger_types") == ("CCS", "Type 2")
    with pytest.raises(ValidationError):
        normalize_tags(["CCS", 2], "charger_types")
    with pytest.raises(ValidationError):
        normalize_tags(None, "images")
