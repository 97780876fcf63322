"""Geofence check service."""

import logging
from typing import List

from sqlalchemy.orm import Session

from ...anomaly_engine.anomalies import GeofenceResult
from ...anomaly_engine.geo import validate_coordinates
from ..db.models import Anomaly, RestrictedZone
from ..errors import ValidationError
from .anomaly_service import AnomalyService
from .location_service import LocationService

logger = logging.getLogger(__name__)


class GeofenceService:
    """Service for checking a position against restricted zones."""

    def __init__(self, anomaly_service: AnomalyService):
        """Initialize geofence service.

        Args:
            anomaly_service: Lifecycle service used to record breaches
        """
        self.anomaly_service = anomaly_service

    def check(
        self, subject_id: str, latitude: float, longitude: float, db: Session
    ) -> GeofenceResult:
        """Evaluate a position and record a breach anomaly if one occurred.

        The breach goes through the same reconciliation as a detection pass,
        so a subject already holding an ACTIVE geofence_breach is not
        deducted again.

        Args:
            subject_id: Subject identifier
            latitude: Current latitude
            longitude: Current longitude
            db: Database session

        Returns:
            GeofenceResult

        Raises:
            ValidationError: If subject_id is empty
            ComputationError: If the coordinates are malformed
            UpstreamStoreError: If zones or anomalies cannot be read or written
        """
        if not subject_id or not subject_id.strip():
            raise ValidationError("subject_id is required")
        validate_coordinates(latitude, longitude)

        zones = LocationService.load_active_zones(db)
        result = self.anomaly_service.geofence_evaluator.evaluate(latitude, longitude, zones)

        if result.breached:
            created: List[Anomaly] = self.anomaly_service.reconcile(
                subject_id, [result.to_anomaly()], latitude, longitude, db
            )
            if not created:
                logger.debug(f"Subject {subject_id} already has an active geofence breach")

        return result

    @staticmethod
    def list_active_zones(db: Session) -> List[RestrictedZone]:
        """Active zones ordered by descending risk level."""
        return LocationService.load_active_zones(db)
