"""Pydantic models for anomaly API requests and responses."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from ...anomaly_engine.anomalies.severity import AnomalyType, Severity
from ..db.models import AnomalyStatus


class AnomalyResponse(BaseModel):
    """Anomaly response model."""

    id: UUID
    subject_id: str
    anomaly_type: AnomalyType
    severity: Severity
    description: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("anomaly_metadata", "metadata"),
    )
    status: AnomalyStatus
    detected_at: datetime
    resolved_at: Optional[datetime] = None

    class Config:
        """Pydantic config."""

        from_attributes = True


class DetectedSignal(BaseModel):
    """Signal that held during the current detection pass."""

    type: AnomalyType
    severity: Severity
    details: Dict[str, Any] = Field(default_factory=dict)
    description: str = ""


class AnomalyCheckResponse(BaseModel):
    """Result of a detection pass for one subject."""

    anomalies: List[AnomalyResponse]
    detected_now: List[DetectedSignal]
    status: Literal["no_data", "anomalies_detected", "normal"]


class ResolveAnomalyRequest(BaseModel):
    """Request model for resolving an anomaly.

    status is validated by the service so an invalid value maps to 400.
    """

    status: str = Field(
        default="resolved",
        description='Target status: "resolved" or "false_positive"',
    )
    notes: Optional[str] = Field(None, description="Resolution notes")
