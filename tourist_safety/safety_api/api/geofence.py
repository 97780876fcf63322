"""REST endpoints for geofencing."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db.session import get_db
from ..errors import ComputationError, ValidationError
from ..models.geofence import GeofenceCheckRequest, GeofenceCheckResponse, ZoneRecord
from ..services.geofence_service import GeofenceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/geofence", tags=["geofence"])

# Global service (will be set in main.py)
_geofence_service: Optional[GeofenceService] = None


def set_service(geofence_service: GeofenceService) -> None:
    """Set the geofence service used by the endpoints.

    Args:
        geofence_service: Shared geofence service
    """
    global _geofence_service
    _geofence_service = geofence_service


def _service() -> GeofenceService:
    if _geofence_service is None:
        raise HTTPException(status_code=500, detail="Geofence service not initialized")
    return _geofence_service


@router.post("/check", response_model=GeofenceCheckResponse)
def check_geofence(
    request: GeofenceCheckRequest,
    db: Session = Depends(get_db),
) -> GeofenceCheckResponse:
    """Check a subject's position against restricted zones.

    A breach records a geofence_breach anomaly and deducts safety score.

    Args:
        request: Subject and position
        db: Database session

    Returns:
        Breached zones, up to five nearby zones and the breach risk rank
    """
    try:
        result = _service().check(request.subject_id, request.lat, request.lon, db)
    except (ValidationError, ComputationError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return GeofenceCheckResponse(**result.to_dict())


@router.get("/zones", response_model=List[ZoneRecord])
def get_restricted_zones(db: Session = Depends(get_db)) -> List[ZoneRecord]:
    """Get active restricted zones ordered by descending risk level."""
    zones = _service().list_active_zones(db)
    return [ZoneRecord.model_validate(zone) for zone in zones]
