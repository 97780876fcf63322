"""Anomaly rules, geofence evaluation and severity scoring."""

from .detectors import AnomalyDetector
from .geofence import GeofenceEvaluator, GeofenceResult, is_zone_active
from .rules import AnomalyResult
from .severity import AnomalyType, RiskLevel, Severity, restore_delta, score_deduction

__all__ = [
    "AnomalyDetector",
    "AnomalyResult",
    "AnomalyType",
    "GeofenceEvaluator",
    "GeofenceResult",
    "RiskLevel",
    "Severity",
    "is_zone_active",
    "restore_delta",
    "score_deduction",
]
