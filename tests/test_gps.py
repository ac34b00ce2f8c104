import pytest

from app.services import gps
from app.services.gps import Coordinates

BOGOTA = Coordinates(4.6767, -74.0483)
MEDELLIN = Coordinates(6.2442, -75.5812)


def test_distance_is_symmetric():
    assert gps.calculate_distance(BOGOTA, MEDELLIN) == gps.calculate_distance(MEDELLIN, BOGOTA)


def test_distance_to_self_is_zero():
    assert gps.calculate_distance(BOGOTA, BOGOTA) == 0


def test_distance_bogota_medellin_is_roughly_240km():
    assert 235_000 < gps.calculate_distance(BOGOTA, MEDELLIN) < 250_000


def test_boundary_distance_verifies():
    nearby = Coordinates(BOGOTA.latitude + 0.001, BOGOTA.longitude)
    d = gps.calculate_distance(BOGOTA, nearby)
    assert gps.verify_gps_proximity(nearby, BOGOTA, max_distance_meters=d).verified is True
    assert gps.verify_gps_proximity(nearby, BOGOTA, max_distance_meters=d - 1).verified is False


def test_rejected_result_carries_distance_and_reason():
    far = Coordinates(BOGOTA.latitude + 0.01, BOGOTA.longitude)
    result = gps.verify_gps_proximity(far, BOGOTA, max_distance_meters=150)
    assert result.status == gps.STATUS_REJECTED
    assert result.distance > 150
    assert "from the service location" in result.reason


@pytest.mark.parametrize("lat,lng,ok", [
    (0, 0, True),
    (90, 180, True),
    (-90, -180, True),
    (91, 0, False),
    (0, 180.5, False),
    ("abc", 0, False),
    (float("nan"), 0, False),
])
def test_coordinate_validation(lat, lng, ok):
    assert gps.is_valid_coordinate(lat, lng) is ok


@pytest.mark.parametrize("address", [
    {"lat": 4.6767, "lng": -74.0483},
    {"latitude": 4.6767, "longitude": -74.0483},
    {"location": {"lat": 4.6767, "lng": -74.0483}},
    {"geometry": {"location": {"lat": 4.6767, "lng": -74.0483}}},
    '{"lat": 4.6767, "lng": -74.0483}',
])
def test_extract_target_location_shapes(address):
    assert gps.extract_target_location(address) == BOGOTA


def test_missing_coordinates_are_skipped_not_verified():
    result = gps.verify_booking_location(BOGOTA, {"street": "Calle 93"})
    assert result.status == gps.STATUS_SKIPPED
    assert result.verified is True
    assert result.distance is None


def test_invalid_json_address_is_skipped():
    assert gps.verify_booking_location(BOGOTA, "not json").status == gps.STATUS_SKIPPED
