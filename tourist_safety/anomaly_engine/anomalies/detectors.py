"""Rule-based anomaly detectors.

Orchestrates evaluation of all anomaly rules.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from ..windows import LocationWindow
from .rules import (
    AltitudeDropRule,
    AnomalyResult,
    InactivityRule,
    RouteDeviationRule,
    SpeedAnomalyRule,
)

logger = logging.getLogger(__name__)


class AnomalyDetector:
    """Orchestrates anomaly detection using rule-based logic."""

    def __init__(self, thresholds: Optional[Dict] = None):
        """Initialize anomaly detector with rules.

        Args:
            thresholds: Dictionary of thresholds from config
        """
        self.inactivity_rule = InactivityRule(thresholds)
        self.route_deviation_rule = RouteDeviationRule(thresholds)
        self.altitude_drop_rule = AltitudeDropRule(thresholds)
        self.speed_anomaly_rule = SpeedAnomalyRule(thresholds)

    def detect(
        self,
        window: LocationWindow,
        waypoints: Sequence = (),
        now: Optional[datetime] = None,
    ) -> List[AnomalyResult]:
        """Detect anomalies for a subject's recent window.

        A rule that raises is logged and skipped; the remaining rules still run.

        Args:
            window: Recent location window (newest first)
            waypoints: Itinerary waypoints for route deviation
            now: Evaluation time for inactivity (defaults to current UTC time)

        Returns:
            List of AnomalyResult objects (only triggered anomalies)
        """
        if not window:
            logger.debug("Empty location window, skipping detection")
            return []

        evaluations = [
            ("inactivity", lambda: self.inactivity_rule.evaluate(window, now)),
            ("route_deviation", lambda: self.route_deviation_rule.evaluate(window, waypoints)),
            ("altitude_drop", lambda: self.altitude_drop_rule.evaluate(window)),
            ("speed_anomaly", lambda: self.speed_anomaly_rule.evaluate(window)),
        ]

        anomalies = []
        for rule_name, evaluate in evaluations:
            try:
                result = evaluate()
            except Exception as e:
                logger.error(f"Rule {rule_name} failed: {e}", exc_info=True)
                continue
            if result.triggered:
                anomalies.append(result)

        return anomalies
