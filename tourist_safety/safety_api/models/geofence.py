"""Pydantic models for geofence API requests and responses."""

from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from ...anomaly_engine.anomalies.severity import RiskLevel


class GeofenceCheckRequest(BaseModel):
    """Request model for a geofence check."""

    subject_id: str = Field(..., alias="subjectId", min_length=1, description="Subject identifier")
    lat: float = Field(..., description="Current latitude")
    lon: float = Field(..., description="Current longitude")

    class Config:
        """Pydantic config."""

        populate_by_name = True


class ZoneMatch(BaseModel):
    """Zone paired with its distance from the checked position."""

    id: int
    name: str
    zone_type: Optional[str] = None
    latitude: float
    longitude: float
    radius_meters: float
    risk_level: RiskLevel
    distance_meters: float


class GeofenceCheckResponse(BaseModel):
    """Geofence check response model."""

    inside: bool
    breached_zones: List[ZoneMatch]
    nearby_zones: List[ZoneMatch]
    risk_level: int = Field(..., description="Rank of the highest-risk breached zone (0 if none)")


class ZoneRecord(BaseModel):
    """Restricted zone as stored or imported.

    Older catalog exports name the active flag ``active``; both names are
    accepted and a missing flag means active.
    """

    id: Optional[int] = None
    name: str
    zone_type: Optional[str] = None
    latitude: float
    longitude: float
    radius_meters: float = Field(..., gt=0)
    risk_level: RiskLevel
    is_active: bool = Field(
        default=True,
        validation_alias=AliasChoices("is_active", "active"),
    )

    @field_validator("is_active", mode="before")
    @classmethod
    def _missing_flag_means_active(cls, value):
        return True if value is None else value

    class Config:
        """Pydantic config."""

        from_attributes = True
