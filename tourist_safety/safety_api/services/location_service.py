"""Reads and writes of location, itinerary and zone reference data."""

import logging
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...anomaly_engine.anomalies.geofence import is_zone_active, zone_risk
from ...anomaly_engine.windows import DEFAULT_WINDOW_SIZE, LocationPing, LocationWindow
from ...schemas.events import LocationUpdateEvent
from ..db.models import ItineraryWaypoint, LocationRecord, RestrictedZone
from ..errors import UpstreamStoreError

logger = logging.getLogger(__name__)


class LocationService:
    """Service for subject locations and the reference data detectors use."""

    @staticmethod
    def record_location(event: LocationUpdateEvent, db: Session) -> LocationRecord:
        """Persist a location report.

        Args:
            event: LocationUpdateEvent from Kafka
            db: Database session

        Returns:
            Stored LocationRecord
        """
        record = LocationRecord(
            subject_id=event.subject_id,
            latitude=event.latitude,
            longitude=event.longitude,
            altitude=event.altitude,
            timestamp=event.event_time,
        )
        try:
            db.add(record)
            db.commit()
            db.refresh(record)
        except SQLAlchemyError as e:
            db.rollback()
            raise UpstreamStoreError(f"Failed to record location: {e}") from e

        logger.debug(f"Recorded location for subject {event.subject_id} at {event.event_time}")
        return record

    @staticmethod
    def load_window(subject_id: str, db: Session, size: int = DEFAULT_WINDOW_SIZE) -> LocationWindow:
        """Load the most recent pings of a subject, newest first."""
        try:
            records = (
                db.query(LocationRecord)
                .filter(LocationRecord.subject_id == subject_id)
                .order_by(LocationRecord.timestamp.desc())
                .limit(size)
                .all()
            )
        except SQLAlchemyError as e:
            raise UpstreamStoreError(f"Failed to load locations for {subject_id}: {e}") from e
        return LocationWindow((LocationPing.from_record(r) for r in records), size=size)

    @staticmethod
    def load_itinerary(subject_id: str, db: Session) -> List[ItineraryWaypoint]:
        try:
            return (
                db.query(ItineraryWaypoint)
                .filter(ItineraryWaypoint.subject_id == subject_id)
                .order_by(ItineraryWaypoint.id.asc())
                .all()
            )
        except SQLAlchemyError as e:
            raise UpstreamStoreError(f"Failed to load itinerary for {subject_id}: {e}") from e

    @staticmethod
    def load_active_zones(db: Session) -> List[RestrictedZone]:
        """Active restricted zones, highest risk first."""
        try:
            zones = db.query(RestrictedZone).order_by(RestrictedZone.id.asc()).all()
        except SQLAlchemyError as e:
            raise UpstreamStoreError(f"Failed to load restricted zones: {e}") from e

        active = [zone for zone in zones if is_zone_active(zone)]
        active.sort(key=lambda zone: zone_risk(zone).rank, reverse=True)
        return active
