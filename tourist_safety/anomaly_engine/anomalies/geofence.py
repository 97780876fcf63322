"""Restricted-zone breach evaluation.

Zones are any objects exposing id, name, latitude, longitude, radius_meters,
risk_level and is_active (the ORM rows and the ZoneRecord schema both do).
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from ..config.thresholds import DEFAULT_THRESHOLDS
from ..geo import distance_meters, validate_coordinates
from .rules import AnomalyResult
from .severity import AnomalyType, RiskLevel

logger = logging.getLogger(__name__)


def is_zone_active(zone) -> bool:
    """A zone is active unless it is explicitly flagged inactive."""
    return getattr(zone, "is_active", None) is not False


def zone_risk(zone) -> RiskLevel:
    return RiskLevel(zone.risk_level)


class ZoneDistance:
    """A zone paired with its distance from the evaluated position."""

    def __init__(self, zone, distance: float):
        self.zone = zone
        self.distance = distance

    @property
    def risk_level(self) -> RiskLevel:
        return zone_risk(self.zone)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.zone.id,
            "name": self.zone.name,
            "zone_type": getattr(self.zone, "zone_type", None),
            "latitude": self.zone.latitude,
            "longitude": self.zone.longitude,
            "radius_meters": self.zone.radius_meters,
            "risk_level": self.risk_level.value,
            "distance_meters": round(self.distance, 1),
        }


class GeofenceResult:
    """Outcome of a geofence evaluation for one position."""

    def __init__(
        self,
        latitude: float,
        longitude: float,
        breached_zones: List[ZoneDistance],
        nearby_zones: List[ZoneDistance],
    ):
        self.latitude = latitude
        self.longitude = longitude
        self.breached_zones = breached_zones
        self.nearby_zones = nearby_zones
        self.dominant_zone = self._dominant(breached_zones)

    @staticmethod
    def _dominant(breached_zones: List[ZoneDistance]) -> Optional[ZoneDistance]:
        # Strict comparison keeps the first encountered zone on ties
        dominant = None
        for entry in breached_zones:
            if dominant is None or entry.risk_level.rank > dominant.risk_level.rank:
                dominant = entry
        return dominant

    @property
    def breached(self) -> bool:
        return bool(self.breached_zones)

    @property
    def risk_level(self) -> int:
        return self.dominant_zone.risk_level.rank if self.dominant_zone else 0

    def to_anomaly(self) -> AnomalyResult:
        """Express the breach as a geofence_breach anomaly signal."""
        if self.dominant_zone is None:
            return AnomalyResult.not_triggered(
                AnomalyType.GEOFENCE_BREACH, "Outside all restricted zones"
            )

        zone = self.dominant_zone.zone
        return AnomalyResult(
            triggered=True,
            anomaly_type=AnomalyType.GEOFENCE_BREACH,
            severity=self.dominant_zone.risk_level.to_severity(),
            details={
                "zone_id": zone.id,
                "zone_name": zone.name,
                "zone_type": getattr(zone, "zone_type", None),
                "distance_meters": round(self.dominant_zone.distance, 1),
                "breached_zone_ids": [entry.zone.id for entry in self.breached_zones],
            },
            explanation=f"Entered restricted zone: {zone.name}",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inside": self.breached,
            "breached_zones": [entry.to_dict() for entry in self.breached_zones],
            "nearby_zones": [entry.to_dict() for entry in self.nearby_zones],
            "risk_level": self.risk_level,
        }


class GeofenceEvaluator:
    """Evaluates a position against the restricted-zone catalog."""

    def __init__(self, thresholds: Optional[Dict] = None):
        t = dict(DEFAULT_THRESHOLDS["geofence"])
        t.update((thresholds or {}).get("geofence", {}))
        self.nearby_within_meters = float(t["nearby_within_meters"])
        self.nearby_limit = int(t["nearby_limit"])

    def evaluate(self, latitude: float, longitude: float, zones: Sequence) -> GeofenceResult:
        """Compute breached and nearby zones for a position.

        Args:
            latitude: Current latitude
            longitude: Current longitude
            zones: Zone catalog; inactive zones are skipped

        Returns:
            GeofenceResult

        Raises:
            ComputationError: If the coordinates are malformed
        """
        validate_coordinates(latitude, longitude)

        breached: List[ZoneDistance] = []
        nearby: List[ZoneDistance] = []
        for zone in zones:
            if not is_zone_active(zone):
                continue
            distance = distance_meters(latitude, longitude, zone.latitude, zone.longitude)
            if distance <= zone.radius_meters:
                breached.append(ZoneDistance(zone, distance))
            elif distance <= self.nearby_within_meters:
                nearby.append(ZoneDistance(zone, distance))

        nearby.sort(key=lambda entry: entry.distance)
        result = GeofenceResult(latitude, longitude, breached, nearby[: self.nearby_limit])

        if result.breached:
            logger.info(
                f"Position ({latitude}, {longitude}) breaches {len(breached)} zone(s); "
                f"dominant: {result.dominant_zone.zone.name} ({result.dominant_zone.risk_level.value})"
            )
        return result
