"""REST endpoints for safety scores."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..db.session import get_db
from ..models.scores import SafetyScoreEventResponse, SafetyScoreResponse
from ..services.score_ledger import SafetyScoreLedger

router = APIRouter(prefix="/safety-score", tags=["safety-score"])

# Global ledger (will be set in main.py)
_ledger: Optional[SafetyScoreLedger] = None


def set_service(ledger: SafetyScoreLedger) -> None:
    """Set the ledger used by the endpoints.

    Args:
        ledger: Shared safety score ledger
    """
    global _ledger
    _ledger = ledger


@router.get("/{subject_id}", response_model=SafetyScoreResponse)
def get_safety_score(
    subject_id: str,
    limit: int = Query(20, ge=1, le=200, description="Number of most recent events"),
    db: Session = Depends(get_db),
) -> SafetyScoreResponse:
    """Get a subject's current safety score and most recent score events."""
    if _ledger is None:
        raise HTTPException(status_code=500, detail="Safety score ledger not initialized")

    events = _ledger.list_events(subject_id, db, limit=limit, newest_first=True)
    return SafetyScoreResponse(
        subject_id=subject_id,
        safety_score=_ledger.get_score(subject_id, db),
        events=[SafetyScoreEventResponse.model_validate(event) for event in events],
    )
