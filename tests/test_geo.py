import pytest

from app.shared.geo import format_distance, haversine_meters
from app.shared.validators import local_to_utc, normalize_otp, parse_hhmm, validate_coordinates


def test_same_point_is_zero():
    assert haversine_meters(40.7829, -73.9654, 40.7829, -73.9654) == 0


def test_one_degree_of_latitude():
    assert haversine_meters(0, 0, 1, 0) == pytest.approx(111195, rel=1e-3)


def test_london_to_paris():
    assert haversine_meters(51.5074, -0.1278, 48.8566, 2.3522) == pytest.approx(343500, rel=1e-2)


@pytest.mark.parametrize(
    "meters,expected",
    [(0, "0 meters"), (849.6, "850 meters"), (1000, "1.0 km"), (12400, "12.4 km")],
)
def test_format_distance(meters, expected):
    assert format_distance(meters) == expected


def test_coordinates_must_come_in_pairs():
    assert validate_coordinates(None, None) is False
    assert validate_coordinates(10.0, 20.0) is True
    with pytest.raises(ValueError):
        validate_coordinates(10.0, None)
    with pytest.raises(ValueError):
        validate_coordinates(91.0, 0.0)


def test_parse_hhmm():
    assert parse_hhmm("9:05").strftime("%H:%M") == "09:05"
    with pytest.raises(ValueError):
        parse_hhmm("24:00")
    with pytest.raises(ValueError):
        parse_hhmm("noon")


def test_local_to_utc_crosses_midnight():
    from datetime import date, time

    result = local_to_utc(date(2026, 1, 15), time(23, 30), "Asia/Tokyo")
    assert result.isoformat() == "2026-01-15T14:30:00"


def test_normalize_otp():
    assert normalize_otp(" 123-456 ") == "123456"
    assert normalize_otp(None) == ""
