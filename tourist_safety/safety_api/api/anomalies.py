"""REST endpoints for anomalies."""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..db.models import AnomalyStatus
from ..db.session import get_db
from ..errors import ComputationError, NotFoundError, ValidationError
from ..models.anomalies import (
    AnomalyCheckResponse,
    AnomalyResponse,
    DetectedSignal,
    ResolveAnomalyRequest,
)
from ..services.anomaly_service import AnomalyService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/anomalies", tags=["anomalies"])

# Global service (will be set in main.py)
_anomaly_service: Optional[AnomalyService] = None


def set_service(anomaly_service: AnomalyService) -> None:
    """Set the anomaly service used by the endpoints.

    Args:
        anomaly_service: Shared anomaly lifecycle service
    """
    global _anomaly_service
    _anomaly_service = anomaly_service


def _service() -> AnomalyService:
    if _anomaly_service is None:
        raise HTTPException(status_code=500, detail="Anomaly service not initialized")
    return _anomaly_service


@router.get("", response_model=List[AnomalyResponse])
def list_anomalies(
    status: AnomalyStatus = Query(AnomalyStatus.ACTIVE, description="Filter by anomaly status"),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of anomalies"),
    db: Session = Depends(get_db),
) -> List[AnomalyResponse]:
    """List anomalies in a status, most recent first.

    Args:
        status: Status filter (default active)
        limit: Maximum number of anomalies
        db: Database session

    Returns:
        List of anomalies
    """
    try:
        anomalies = _service().list_anomalies(status.value, limit, db)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [AnomalyResponse.model_validate(anomaly) for anomaly in anomalies]


@router.get("/{subject_id}", response_model=AnomalyCheckResponse)
def check_anomalies(
    subject_id: str,
    db: Session = Depends(get_db),
) -> AnomalyCheckResponse:
    """Run a detection pass for a subject.

    Args:
        subject_id: Subject identifier
        db: Database session

    Returns:
        Active anomalies, signals detected in this pass and overall status
    """
    try:
        result = _service().run_detection_pass(subject_id, db)
    except (ValidationError, ComputationError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return AnomalyCheckResponse(
        anomalies=[AnomalyResponse.model_validate(anomaly) for anomaly in result.anomalies],
        detected_now=[DetectedSignal(**signal.to_dict()) for signal in result.detected_now],
        status=result.status,
    )


@router.put("/{anomaly_id}/resolve", response_model=AnomalyResponse)
def resolve_anomaly(
    anomaly_id: UUID,
    request: ResolveAnomalyRequest,
    db: Session = Depends(get_db),
) -> AnomalyResponse:
    """Resolve an anomaly or mark it as a false positive.

    Args:
        anomaly_id: Anomaly ID
        request: Resolve request
        db: Database session

    Returns:
        Updated anomaly

    Raises:
        HTTPException: If anomaly not found or status invalid
    """
    try:
        anomaly = _service().resolve_anomaly(anomaly_id, request.status, request.notes, db)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return AnomalyResponse.model_validate(anomaly)
