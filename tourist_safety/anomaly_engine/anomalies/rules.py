"""Threshold rules for anomaly detection.

Each rule is stateless: it reads the recent location window (and reference
data where needed) and reports whether its condition currently holds.
Thresholds come from configuration; see config/thresholds.py for defaults.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from ..config.thresholds import DEFAULT_THRESHOLDS
from ..geo import distance_meters
from ..windows import LocationWindow, as_utc
from .severity import AnomalyType, Severity

logger = logging.getLogger(__name__)


class AnomalyResult:
    """Result of anomaly rule evaluation."""

    def __init__(
        self,
        triggered: bool,
        anomaly_type: AnomalyType,
        severity: Optional[Severity] = None,
        details: Optional[Dict[str, Any]] = None,
        explanation: str = "",
    ):
        """Initialize anomaly result.

        Args:
            triggered: Whether the anomaly condition holds
            anomaly_type: Type of anomaly the rule detects
            severity: Severity level (only meaningful when triggered)
            details: Detector-specific values, persisted as anomaly metadata
            explanation: Human-readable explanation
        """
        self.triggered = triggered
        self.anomaly_type = anomaly_type
        self.severity = severity
        self.details = details or {}
        self.explanation = explanation

    @classmethod
    def not_triggered(cls, anomaly_type: AnomalyType, explanation: str) -> "AnomalyResult":
        return cls(triggered=False, anomaly_type=anomaly_type, explanation=explanation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.anomaly_type.value,
            "severity": self.severity.value if self.severity else None,
            "details": self.details,
            "description": self.explanation,
        }

    def __repr__(self) -> str:
        return (
            f"<AnomalyResult(type={self.anomaly_type.value}, triggered={self.triggered}, "
            f"severity={self.severity})>"
        )


def _rule_thresholds(thresholds: Optional[Dict], rule_name: str) -> Dict:
    merged = dict(DEFAULT_THRESHOLDS[rule_name])
    merged.update((thresholds or {}).get(rule_name, {}))
    return merged


class InactivityRule:
    """Rule for detecting a subject that stopped reporting.

    Severity escalates with the silence since the latest ping:
    > threshold_minutes -> MEDIUM, > high_minutes -> HIGH,
    > critical_minutes -> CRITICAL.
    """

    def __init__(self, thresholds: Optional[Dict] = None):
        t = _rule_thresholds(thresholds, "inactivity")
        self.threshold_minutes = float(t["threshold_minutes"])
        self.high_minutes = float(t["high_minutes"])
        self.critical_minutes = float(t["critical_minutes"])

    def evaluate(self, window: LocationWindow, now: Optional[datetime] = None) -> AnomalyResult:
        latest = window.latest
        if latest is None:
            return AnomalyResult.not_triggered(
                AnomalyType.INACTIVITY, "No location reports recorded"
            )

        now = as_utc(now) if now is not None else datetime.now(timezone.utc)
        elapsed_minutes = (now - latest.timestamp).total_seconds() / 60.0

        if elapsed_minutes > self.critical_minutes:
            severity = Severity.CRITICAL
        elif elapsed_minutes > self.high_minutes:
            severity = Severity.HIGH
        elif elapsed_minutes > self.threshold_minutes:
            severity = Severity.MEDIUM
        else:
            return AnomalyResult.not_triggered(
                AnomalyType.INACTIVITY, "Subject reported recently"
            )

        return AnomalyResult(
            triggered=True,
            anomaly_type=AnomalyType.INACTIVITY,
            severity=severity,
            details={
                "last_seen": latest.timestamp.isoformat(),
                "inactive_minutes": round(elapsed_minutes, 1),
                "threshold_minutes": self.threshold_minutes,
            },
            explanation=f"No location update for {elapsed_minutes:.0f} minutes",
        )


class RouteDeviationRule:
    """Rule for detecting a subject outside every itinerary waypoint radius."""

    def __init__(self, thresholds: Optional[Dict] = None):
        t = _rule_thresholds(thresholds, "route_deviation")
        self.default_radius_meters = float(t["default_radius_meters"])
        self.high_distance_meters = float(t["high_distance_meters"])

    def evaluate(self, window: LocationWindow, waypoints: Sequence) -> AnomalyResult:
        """Evaluate route deviation rule.

        Args:
            window: Recent location window
            waypoints: Itinerary waypoints exposing latitude, longitude and
                optionally radius_meters

        Returns:
            AnomalyResult
        """
        latest = window.latest
        if latest is None or not waypoints:
            return AnomalyResult.not_triggered(
                AnomalyType.ROUTE_DEVIATION, "No itinerary or position on file"
            )

        nearest = None
        nearest_distance = None
        for waypoint in waypoints:
            radius = getattr(waypoint, "radius_meters", None) or self.default_radius_meters
            distance = distance_meters(
                latest.latitude, latest.longitude, waypoint.latitude, waypoint.longitude
            )
            if distance <= radius:
                return AnomalyResult.not_triggered(
                    AnomalyType.ROUTE_DEVIATION, "Subject is on the planned route"
                )
            if nearest_distance is None or distance < nearest_distance:
                nearest, nearest_distance = waypoint, distance

        severity = Severity.HIGH if nearest_distance > self.high_distance_meters else Severity.MEDIUM
        return AnomalyResult(
            triggered=True,
            anomaly_type=AnomalyType.ROUTE_DEVIATION,
            severity=severity,
            details={
                "nearest_waypoint": {"latitude": nearest.latitude, "longitude": nearest.longitude},
                "distance_meters": round(nearest_distance, 1),
                "allowed_radius_meters": getattr(nearest, "radius_meters", None) or self.default_radius_meters,
            },
            explanation=f"Deviated {nearest_distance:.0f} m from the nearest itinerary waypoint",
        )


class AltitudeDropRule:
    """Rule for detecting a sudden altitude loss (fall heuristic).

    Looks at consecutive-in-time altitude samples; a drop of at least
    drop_meters within window_seconds triggers HIGH, at least
    critical_drop_meters triggers CRITICAL.
    """

    def __init__(self, thresholds: Optional[Dict] = None):
        t = _rule_thresholds(thresholds, "altitude_drop")
        self.drop_meters = float(t["drop_meters"])
        self.critical_drop_meters = float(t["critical_drop_meters"])
        self.window_seconds = float(t["window_seconds"])

    def evaluate(self, window: LocationWindow) -> AnomalyResult:
        samples = window.with_altitude()
        if len(samples) < 2:
            return AnomalyResult.not_triggered(
                AnomalyType.ALTITUDE_DROP, "Insufficient altitude samples"
            )

        worst = None
        for earlier, later in zip(samples, samples[1:]):
            span = (later.timestamp - earlier.timestamp).total_seconds()
            if span <= 0 or span > self.window_seconds:
                continue
            drop = earlier.altitude - later.altitude
            if drop >= self.drop_meters and (worst is None or drop > worst[0]):
                worst = (drop, span, earlier, later)

        if worst is None:
            return AnomalyResult.not_triggered(
                AnomalyType.ALTITUDE_DROP, "No altitude drop detected"
            )

        drop, span, earlier, later = worst
        severity = Severity.CRITICAL if drop >= self.critical_drop_meters else Severity.HIGH
        return AnomalyResult(
            triggered=True,
            anomaly_type=AnomalyType.ALTITUDE_DROP,
            severity=severity,
            details={
                "altitude_drop_meters": round(drop, 1),
                "time_span_seconds": span,
                "from_altitude": earlier.altitude,
                "to_altitude": later.altitude,
                "drop_threshold_meters": self.drop_meters,
            },
            explanation=f"Altitude dropped {drop:.0f} m in {span:.0f} s",
        )


class SpeedAnomalyRule:
    """Rule for detecting implausible speed between the two latest pings.

    Speed above max_speed_mps -> MEDIUM, above critical_speed_mps -> HIGH.
    """

    def __init__(self, thresholds: Optional[Dict] = None):
        t = _rule_thresholds(thresholds, "speed_anomaly")
        self.max_speed_mps = float(t["max_speed_mps"])
        self.critical_speed_mps = float(t["critical_speed_mps"])

    def evaluate(self, window: LocationWindow) -> AnomalyResult:
        if not window.has_sufficient_history(min_pings=2):
            return AnomalyResult.not_triggered(
                AnomalyType.SPEED_ANOMALY, "Insufficient history for speed calculation"
            )

        latest, previous = window.pings[0], window.pings[1]
        elapsed = (latest.timestamp - previous.timestamp).total_seconds()
        if elapsed <= 0:
            logger.warning(
                f"Ignoring speed check for subject {latest.subject_id}: "
                f"non-positive elapsed time ({elapsed:.1f}s) between pings"
            )
            return AnomalyResult.not_triggered(
                AnomalyType.SPEED_ANOMALY, "Non-positive elapsed time between pings"
            )

        distance = distance_meters(
            previous.latitude, previous.longitude, latest.latitude, latest.longitude
        )
        speed = distance / elapsed

        if speed > self.critical_speed_mps:
            severity = Severity.HIGH
        elif speed > self.max_speed_mps:
            severity = Severity.MEDIUM
        else:
            return AnomalyResult.not_triggered(
                AnomalyType.SPEED_ANOMALY, "Speed within plausible range"
            )

        return AnomalyResult(
            triggered=True,
            anomaly_type=AnomalyType.SPEED_ANOMALY,
            severity=severity,
            details={
                "speed_mps": round(speed, 2),
                "distance_meters": round(distance, 1),
                "elapsed_seconds": elapsed,
                "max_speed_mps": self.max_speed_mps,
            },
            explanation=f"Implausible speed: {speed:.1f} m/s over {distance:.0f} m",
        )

