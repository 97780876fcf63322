"""Pydantic models for Kafka message events.

These models define the schema for all messages published to and consumed from Kafka topics.
All models include event_time, processing_time, and the subject identifier.
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

SeverityLiteral = Literal["low", "medium", "high", "critical"]


class LocationUpdateEvent(BaseModel):
    """Location report from a subject's device.

    Consumed from: location_updates topic
    Partition key: subject_id
    """

    event_id: Optional[UUID] = Field(None, description="Unique identifier for this event")
    event_time: datetime = Field(..., description="Timestamp when the location was recorded")
    subject_id: str = Field(..., min_length=1, description="Identifier for the tracked subject")
    latitude: float = Field(..., ge=-90.0, le=90.0, description="Latitude in degrees")
    longitude: float = Field(..., ge=-180.0, le=180.0, description="Longitude in degrees")
    altitude: Optional[float] = Field(None, description="Altitude in meters")


class AnomalyDetectedEvent(BaseModel):
    """Anomaly created by a detection pass.

    Published to: anomalies topic
    Partition key: subject_id
    """

    anomaly_id: UUID = Field(..., description="Unique identifier for this anomaly")
    event_time: datetime = Field(..., description="Timestamp when the anomaly was detected")
    processing_time: datetime = Field(
        ..., description="Timestamp when the event was processed/published"
    )
    subject_id: str = Field(..., description="Identifier for the tracked subject")
    anomaly_type: str = Field(..., description="Type of anomaly")
    severity: SeverityLiteral = Field(..., description="Severity level")
    description: str = Field(..., description="Human-readable description")
    latitude: Optional[float] = Field(None, description="Latitude at detection time")
    longitude: Optional[float] = Field(None, description="Longitude at detection time")
    details: Dict[str, Any] = Field(default_factory=dict, description="Detector-specific values")
    safety_score: float = Field(..., description="Safety score after the deduction")


class AnomalyResolvedEvent(BaseModel):
    """Anomaly moved to a terminal status by an operator.

    Published to: anomaly_resolutions topic
    Partition key: subject_id
    """

    anomaly_id: UUID = Field(..., description="Unique identifier for the anomaly")
    event_time: datetime = Field(..., description="Timestamp when the anomaly was resolved")
    processing_time: datetime = Field(
        ..., description="Timestamp when the event was processed/published"
    )
    subject_id: str = Field(..., description="Identifier for the tracked subject")
    anomaly_type: str = Field(..., description="Type of anomaly")
    status: Literal["resolved", "false_positive"] = Field(..., description="Terminal status")
    notes: Optional[str] = Field(None, description="Resolution notes")
    safety_score: Optional[float] = Field(
        None, description="Safety score after restoration (None when nothing was restored)"
    )
