"""Great-circle geometry helpers shared by route deviation and geofencing."""

import math

EARTH_RADIUS_METERS = 6371000.0


class ComputationError(ValueError):
    """Raised when geo input is not a finite, in-range coordinate."""


def validate_coordinates(latitude: float, longitude: float) -> None:
    """Fail fast on malformed coordinates.

    Args:
        latitude: Latitude in degrees, [-90, 90]
        longitude: Longitude in degrees, [-180, 180]

    Raises:
        ComputationError: If either value is non-finite or out of range
    """
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError) as e:
        raise ComputationError(f"Coordinates must be numeric: {e}") from e

    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ComputationError(f"Non-finite coordinates: ({latitude}, {longitude})")
    if not -90.0 <= lat <= 90.0:
        raise ComputationError(f"Latitude out of range: {latitude}")
    if not -180.0 <= lon <= 180.0:
        raise ComputationError(f"Longitude out of range: {longitude}")


def distance_meters(lat_a: float, lon_a: float, lat_b: float, lon_b: float) -> float:
    """Great-circle distance in meters (haversine)."""
    lat_a_r, lat_b_r = math.radians(lat_a), math.radians(lat_b)
    dlat = lat_b_r - lat_a_r
    dlon = math.radians(lon_b - lon_a)

    a = math.sin(dlat / 2.0) ** 2 + math.cos(lat_a_r) * math.cos(lat_b_r) * math.sin(dlon / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c
