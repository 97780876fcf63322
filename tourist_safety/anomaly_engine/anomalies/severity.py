"""Severity, risk and anomaly type enumerations.

Severity drives the safety score impact of an anomaly. Every member of
``Severity`` must appear in ``SCORE_DEDUCTIONS``.
"""

from enum import Enum
from typing import Union


class Severity(str, Enum):
    """Severity level enumeration."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskLevel(str, Enum):
    """Risk level of a restricted zone, ordered low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return RISK_RANKS[self]

    def to_severity(self) -> Severity:
        return Severity(self.value)


class AnomalyType(str, Enum):
    """Anomaly type enumeration."""

    INACTIVITY = "inactivity"
    ROUTE_DEVIATION = "route_deviation"
    ALTITUDE_DROP = "altitude_drop"
    SPEED_ANOMALY = "speed_anomaly"
    GEOFENCE_BREACH = "geofence_breach"


RISK_RANKS = {
    RiskLevel.LOW: 1,
    RiskLevel.MEDIUM: 2,
    RiskLevel.HIGH: 3,
    RiskLevel.CRITICAL: 4,
}

SCORE_DEDUCTIONS = {
    Severity.LOW: -5.0,
    Severity.MEDIUM: -10.0,
    Severity.HIGH: -20.0,
    Severity.CRITICAL: -30.0,
}

# Applied when a stored severity is not a known Severity value
DEFAULT_SCORE_DEDUCTION = -10.0


def score_deduction(severity: Union[Severity, str, None]) -> float:
    """Safety score delta (negative) for an anomaly of the given severity.

    Args:
        severity: Severity enum member or its string value

    Returns:
        Signed delta; DEFAULT_SCORE_DEDUCTION for an unrecognized severity
    """
    try:
        return SCORE_DEDUCTIONS[Severity(severity)]
    except ValueError:
        return DEFAULT_SCORE_DEDUCTION


def restore_delta(severity: Union[Severity, str, None]) -> float:
    """Score restored when an anomaly is resolved: half of its deduction."""
    return -score_deduction(severity) / 2
