"""Pydantic models for safety score responses."""

from datetime import datetime
from typing import List

from pydantic import BaseModel


class SafetyScoreEventResponse(BaseModel):
    """Safety score event response model."""

    delta: float
    reason: str
    resulting_score: float
    created_at: datetime

    class Config:
        """Pydantic config."""

        from_attributes = True


class SafetyScoreResponse(BaseModel):
    """Current safety score of a subject with its recent events."""

    subject_id: str
    safety_score: float
    events: List[SafetyScoreEventResponse]
