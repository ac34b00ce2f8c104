"""Geofence checks for professional check-in and check-out.

Verification never blocks the transition. A booking whose address carries no
usable coordinates is reported as ``skipped`` so that "passed the geofence"
and "no geofence available" stay distinguishable.
"""
import json
import math
from dataclasses import dataclass, asdict
from typing import Any

EARTH_RADIUS_METERS = 6_371_000
DEFAULT_MAX_DISTANCE_METERS = 150

STATUS_VERIFIED = "verified"
STATUS_REJECTED = "rejected"
STATUS_SKIPPED = "skipped"


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass
class GPSVerification:
    status: str
    verified: bool
    distance: int | None
    max_distance: int
    reason: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def is_valid_coordinate(latitude: float, longitude: float) -> bool:
    try:
        lat, lng = float(latitude), float(longitude)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(lng):
        return False
    return -90 <= lat <= 90 and -180 <= lng <= 180


def calculate_distance(a: Coordinates, b: Coordinates) -> int:
    """Haversine great-circle distance in whole meters."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    d_phi = math.radians(b.latitude - a.latitude)
    d_lambda = math.radians(b.longitude - a.longitude)

    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return round(EARTH_RADIUS_METERS * c)


def verify_gps_proximity(
    current: Coordinates,
    target: Coordinates,
    max_distance_meters: int = DEFAULT_MAX_DISTANCE_METERS,
) -> GPSVerification:
    distance = calculate_distance(current, target)
    if distance <= max_distance_meters:
        return GPSVerification(STATUS_VERIFIED, True, distance, max_distance_meters)
    return GPSVerification(
        STATUS_REJECTED,
        False,
        distance,
        max_distance_meters,
        reason=f"You are {distance}m from the service location (max {max_distance_meters}m)",
    )


def _pair(obj: Any, lat_key: str, lng_key: str) -> Coordinates | None:
    if not isinstance(obj, dict):
        return None
    lat, lng = obj.get(lat_key), obj.get(lng_key)
    if lat is None or lng is None or not is_valid_coordinate(lat, lng):
        return None
    return Coordinates(float(lat), float(lng))


def extract_target_location(address: Any) -> Coordinates | None:
    """Pull coordinates out of the address shapes the apps have stored over time."""
    if isinstance(address, str):
        try:
            address = json.loads(address)
        except ValueError:
            return None
    if not isinstance(address, dict):
        return None

    candidates = [address, address.get("location")]
    geometry = address.get("geometry")
    if isinstance(geometry, dict):
        candidates.append(geometry.get("location"))

    for c in candidates:
        found = _pair(c, "lat", "lng") or _pair(c, "latitude", "longitude")
        if found:
            return found
    return None


def verify_booking_location(
    current: Coordinates,
    address: Any,
    max_distance_meters: int = DEFAULT_MAX_DISTANCE_METERS,
) -> GPSVerification:
    target = extract_target_location(address)
    if target is None:
        return GPSVerification(
            STATUS_SKIPPED,
            True,
            None,
            max_distance_meters,
            reason="Service address has no coordinates",
        )
    return verify_gps_proximity(current, target, max_distance_meters)
