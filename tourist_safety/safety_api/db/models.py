"""SQLAlchemy models for locations, zones, anomalies and safety scores."""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SQLEnum,
    Float,
    Index,
    Integer,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

from ...anomaly_engine.anomalies.severity import AnomalyType, RiskLevel, Severity

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")


class AnomalyStatus(str, Enum):
    """Anomaly status enumeration."""

    ACTIVE = "active"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


TERMINAL_STATUSES = (AnomalyStatus.RESOLVED, AnomalyStatus.FALSE_POSITIVE)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LocationRecord(Base):
    """Location report for a subject. Never updated once written."""

    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(Text, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    altitude = Column(Float, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (Index("ix_locations_subject_id_timestamp", "subject_id", "timestamp"),)

    def __repr__(self) -> str:
        return f"<LocationRecord(subject_id={self.subject_id}, timestamp={self.timestamp})>"


class ItineraryWaypoint(Base):
    """Planned waypoint of a subject's itinerary."""

    __tablename__ = "itineraries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    radius_meters = Column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<ItineraryWaypoint(subject_id={self.subject_id}, name={self.name})>"


class RestrictedZone(Base):
    """Restricted zone catalog entry.

    is_active is NULL for rows imported before the flag existed; such zones
    count as active.
    """

    __tablename__ = "restricted_zones"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    zone_type = Column(Text, nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    radius_meters = Column(Float, nullable=False)
    risk_level = Column(
        SQLEnum(RiskLevel, name="risklevel", values_callable=_enum_values), nullable=False
    )
    is_active = Column(Boolean, nullable=True, default=True)

    __table_args__ = (CheckConstraint("radius_meters > 0", name="ck_restricted_zones_radius_positive"),)

    def __repr__(self) -> str:
        return f"<RestrictedZone(id={self.id}, name={self.name}, risk_level={self.risk_level})>"


class Anomaly(Base):
    """Anomaly detected for a subject.

    At most one ACTIVE row per (subject_id, anomaly_type), enforced by a
    partial unique index.
    """

    __tablename__ = "anomalies"

    id = Column(Uuid, primary_key=True, default=uuid4)
    subject_id = Column(Text, nullable=False, index=True)
    anomaly_type = Column(
        SQLEnum(AnomalyType, name="anomalytype", values_callable=_enum_values), nullable=False
    )
    severity = Column(
        SQLEnum(Severity, name="severity", values_callable=_enum_values), nullable=False
    )
    description = Column(Text, nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    anomaly_metadata = Column("metadata", JSONType, nullable=False, default=dict)
    status = Column(
        SQLEnum(AnomalyStatus, name="anomalystatus", values_callable=_enum_values),
        nullable=False,
        default=AnomalyStatus.ACTIVE,
    )
    detected_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_anomalies_subject_id_status", "subject_id", "status"),
        Index("ix_anomalies_status_detected_at", "status", "detected_at"),
        Index(
            "uq_anomalies_active_subject_type",
            "subject_id",
            "anomaly_type",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Anomaly(id={self.id}, subject_id={self.subject_id}, "
            f"type={self.anomaly_type}, status={self.status})>"
        )


class SafetyScoreEvent(Base):
    """Append-only audit trail of safety score changes."""

    __tablename__ = "safety_score_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(Text, nullable=False)
    delta = Column(Float, nullable=False)
    reason = Column(Text, nullable=False)
    resulting_score = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (Index("ix_safety_score_events_subject_id_id", "subject_id", "id"),)

    def __repr__(self) -> str:
        return (
            f"<SafetyScoreEvent(subject_id={self.subject_id}, delta={self.delta}, "
            f"resulting_score={self.resulting_score})>"
        )


class SubjectProfile(Base):
    """Current safety score of a subject. Written only by the score ledger."""

    __tablename__ = "subject_profiles"

    subject_id = Column(Text, primary_key=True)
    safety_score = Column(Float, nullable=False, default=100.0)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "safety_score >= 0 AND safety_score <= 100", name="ck_subject_profiles_score_range"
        ),
    )

    def __repr__(self) -> str:
        return f"<SubjectProfile(subject_id={self.subject_id}, safety_score={self.safety_score})>"
