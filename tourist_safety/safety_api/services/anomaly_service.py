"""Anomaly lifecycle service.

Runs detection passes, reconciles their signals with persisted anomalies and
drives the resolve / false-positive transitions.

Lifecycle:
- A triggered signal creates an ACTIVE anomaly unless one of the same
  (subject, type) is already ACTIVE; creation deducts score exactly once.
- ACTIVE -> RESOLVED restores half of the deduction made at creation.
- ACTIVE -> FALSE_POSITIVE restores nothing.
- RESOLVED and FALSE_POSITIVE are terminal.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...anomaly_engine.anomalies import (
    AnomalyDetector,
    AnomalyResult,
    AnomalyType,
    GeofenceEvaluator,
    restore_delta,
    score_deduction,
)
from ...anomaly_engine.config import EngineConfig
from ...anomaly_engine.geo import ComputationError
from ...anomaly_engine.windows import LocationPing
from ...schemas.events import AnomalyDetectedEvent, AnomalyResolvedEvent
from ..db.models import TERMINAL_STATUSES, Anomaly, AnomalyStatus
from ..errors import InvalidTransitionError, NotFoundError, UpstreamStoreError, ValidationError
from ..kafka_producer import KafkaProducer
from ..locks import SubjectLockRegistry, subject_locks
from .location_service import LocationService
from .score_ledger import SafetyScoreLedger

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 500

STATUS_NO_DATA = "no_data"
STATUS_ANOMALIES_DETECTED = "anomalies_detected"
STATUS_NORMAL = "normal"


class DetectionPassResult:
    """Outcome of one detection pass for a subject."""

    def __init__(
        self,
        subject_id: str,
        anomalies: List[Anomaly],
        detected_now: List[AnomalyResult],
        created: List[Anomaly],
        has_data: bool,
    ):
        """Initialize result.

        Args:
            subject_id: Subject identifier
            anomalies: All ACTIVE anomalies of the subject after reconciliation
            detected_now: Signals that held during this pass
            created: Anomalies newly created by this pass
            has_data: Whether the subject had any location reports
        """
        self.subject_id = subject_id
        self.anomalies = anomalies
        self.detected_now = detected_now
        self.created = created
        self.has_data = has_data

    @property
    def status(self) -> str:
        if not self.has_data:
            return STATUS_NO_DATA
        return STATUS_ANOMALIES_DETECTED if self.anomalies else STATUS_NORMAL


class AnomalyService:
    """Service for detecting, deduplicating and resolving anomalies."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        ledger: Optional[SafetyScoreLedger] = None,
        producer: Optional[KafkaProducer] = None,
        locks: SubjectLockRegistry = subject_locks,
    ):
        """Initialize anomaly service.

        Args:
            config: Engine configuration (window size, thresholds)
            ledger: Safety score ledger; one sharing ``locks`` is created if omitted
            producer: Optional Kafka producer for anomaly notifications
            locks: Per-subject lock registry
        """
        self.config = config or EngineConfig()
        self.locks = locks
        self.ledger = ledger or SafetyScoreLedger(locks=locks)
        self.producer = producer
        self.detector = AnomalyDetector(self.config.thresholds)
        self.geofence_evaluator = GeofenceEvaluator(self.config.thresholds)

    def run_detection_pass(
        self, subject_id: str, db: Session, now: Optional[datetime] = None
    ) -> DetectionPassResult:
        """Run every detector for a subject and reconcile with stored anomalies.

        Args:
            subject_id: Subject identifier
            db: Database session
            now: Evaluation time (defaults to current UTC time)

        Returns:
            DetectionPassResult

        Raises:
            ValidationError: If subject_id is empty
            UpstreamStoreError: If locations or anomalies cannot be read or written
        """
        if not subject_id or not subject_id.strip():
            raise ValidationError("subject_id is required")

        window = LocationService.load_window(subject_id, db, self.config.window_size)
        if not window:
            logger.debug(f"No location data for subject {subject_id}")
            return DetectionPassResult(
                subject_id=subject_id,
                anomalies=self.get_active_anomalies(subject_id, db),
                detected_now=[],
                created=[],
                has_data=False,
            )

        itinerary = self._load_itinerary(subject_id, db)
        signals = self.detector.detect(window, itinerary, now)

        geofence_signal = self._evaluate_geofence(window.latest, db)
        if geofence_signal is not None and geofence_signal.triggered:
            signals.append(geofence_signal)

        latest = window.latest
        created = self.reconcile(subject_id, signals, latest.latitude, latest.longitude, db)

        return DetectionPassResult(
            subject_id=subject_id,
            anomalies=self.get_active_anomalies(subject_id, db),
            detected_now=signals,
            created=created,
            has_data=True,
        )

    def _load_itinerary(self, subject_id: str, db: Session) -> Sequence:
        try:
            return LocationService.load_itinerary(subject_id, db)
        except UpstreamStoreError as e:
            db.rollback()
            logger.error(f"Itinerary lookup failed for subject {subject_id}: {e}", exc_info=True)
            return []

    def _evaluate_geofence(self, latest: LocationPing, db: Session) -> Optional[AnomalyResult]:
        try:
            zones = LocationService.load_active_zones(db)
            return self.geofence_evaluator.evaluate(latest.latitude, latest.longitude, zones).to_anomaly()
        except UpstreamStoreError as e:
            db.rollback()
            logger.error(f"Zone lookup failed for subject {latest.subject_id}: {e}", exc_info=True)
        except ComputationError as e:
            logger.error(f"Geofence evaluation failed for subject {latest.subject_id}: {e}")
        return None

    def reconcile(
        self,
        subject_id: str,
        signals: Sequence[AnomalyResult],
        latitude: Optional[float],
        longitude: Optional[float],
        db: Session,
    ) -> List[Anomaly]:
        """Create anomalies for signals with no ACTIVE anomaly of the same type.

        Each anomaly is inserted in the same transaction as its score
        deduction, so a stored anomaly has always been deducted exactly once.
        Holds the subject lock for the whole check-then-insert sequence.

        Args:
            subject_id: Subject identifier
            signals: Triggered signals of the current pass
            latitude: Latitude at detection time
            longitude: Longitude at detection time
            db: Database session

        Returns:
            Newly created anomalies
        """
        created = []
        with self.locks.hold(subject_id):
            for signal in signals:
                if not signal.triggered:
                    continue
                outcome = self.ledger.run_transaction(
                    subject_id,
                    db,
                    lambda session, signal=signal: self._stage_anomaly(
                        subject_id, signal, latitude, longitude, session
                    ),
                )
                if outcome is None:
                    continue
                anomaly, score = outcome
                logger.info(
                    f"Created anomaly {anomaly.id} for subject {subject_id} "
                    f"(type: {anomaly.anomaly_type.value}, severity: {anomaly.severity.value})"
                )
                created.append(anomaly)
                self._publish_created(anomaly, score)
        return created

    def _find_active(self, subject_id: str, anomaly_type: AnomalyType, db: Session) -> Optional[Anomaly]:
        return (
            db.query(Anomaly)
            .filter(
                Anomaly.subject_id == subject_id,
                Anomaly.anomaly_type == anomaly_type,
                Anomaly.status == AnomalyStatus.ACTIVE,
            )
            .first()
        )

    def _stage_anomaly(
        self,
        subject_id: str,
        signal: AnomalyResult,
        latitude: Optional[float],
        longitude: Optional[float],
        db: Session,
    ) -> Optional[Tuple[Anomaly, float]]:
        # Re-checked on every attempt, so rows committed concurrently are seen
        existing = self._find_active(subject_id, signal.anomaly_type, db)
        if existing is not None:
            logger.debug(
                f"Anomaly {signal.anomaly_type.value} already active for subject {subject_id} "
                f"({existing.id}), skipping"
            )
            return None

        anomaly = Anomaly(
            subject_id=subject_id,
            anomaly_type=signal.anomaly_type,
            severity=signal.severity,
            description=signal.explanation,
            latitude=latitude,
            longitude=longitude,
            anomaly_metadata=dict(signal.details),
            status=AnomalyStatus.ACTIVE,
        )
        db.add(anomaly)
        db.flush()
        score = self.ledger.stage_delta(
            subject_id, score_deduction(signal.severity), signal.anomaly_type.value, db
        )
        return anomaly, score

    def resolve_anomaly(
        self,
        anomaly_id: UUID,
        status: str,
        notes: Optional[str],
        db: Session,
    ) -> Anomaly:
        """Move an ACTIVE anomaly to RESOLVED or FALSE_POSITIVE.

        Args:
            anomaly_id: Anomaly ID
            status: Target status ("resolved" or "false_positive")
            notes: Optional resolution notes, merged into metadata
            db: Database session

        Returns:
            Updated anomaly

        Raises:
            ValidationError: If status is not a terminal status
            NotFoundError: If the anomaly does not exist
            InvalidTransitionError: If the anomaly is already terminal
        """
        try:
            target = AnomalyStatus(status)
        except ValueError:
            target = None
        if target not in TERMINAL_STATUSES:
            raise ValidationError('Status must be either "resolved" or "false_positive"')

        anomaly = self.get_anomaly(anomaly_id, db)
        subject_id = anomaly.subject_id

        def transition(session: Session) -> Optional[float]:
            session.refresh(anomaly)
            if anomaly.status != AnomalyStatus.ACTIVE:
                raise InvalidTransitionError(
                    f"Cannot change anomaly {anomaly_id} in status {anomaly.status.value}"
                )

            metadata: Dict[str, Any] = dict(anomaly.anomaly_metadata or {})
            if notes is not None and "resolution_notes" not in metadata:
                metadata["resolution_notes"] = notes

            anomaly.status = target
            anomaly.resolved_at = datetime.now(timezone.utc)
            anomaly.anomaly_metadata = metadata
            session.flush()

            if target != AnomalyStatus.RESOLVED:
                return None
            # Status change and restore commit together
            return self.ledger.stage_delta(
                subject_id, restore_delta(anomaly.severity), "anomaly_resolved", session
            )

        with self.locks.hold(subject_id):
            score = self.ledger.run_transaction(subject_id, db, transition)

        logger.info(f"Anomaly {anomaly_id} for subject {subject_id} marked {target.value}")
        self._publish_resolved(anomaly, notes, score)
        return anomaly

    def get_anomaly(self, anomaly_id: UUID, db: Session) -> Anomaly:
        try:
            anomaly = db.query(Anomaly).filter(Anomaly.id == anomaly_id).first()
        except SQLAlchemyError as e:
            raise UpstreamStoreError(f"Failed to read anomaly {anomaly_id}: {e}") from e
        if anomaly is None:
            raise NotFoundError(f"Anomaly {anomaly_id} not found")
        return anomaly

    def get_active_anomalies(self, subject_id: str, db: Session) -> List[Anomaly]:
        """ACTIVE anomalies of a subject, most recent first."""
        try:
            return (
                db.query(Anomaly)
                .filter(Anomaly.subject_id == subject_id, Anomaly.status == AnomalyStatus.ACTIVE)
                .order_by(Anomaly.detected_at.desc())
                .all()
            )
        except SQLAlchemyError as e:
            raise UpstreamStoreError(f"Failed to read anomalies for {subject_id}: {e}") from e

    def list_anomalies(self, status: str, limit: int, db: Session) -> List[Anomaly]:
        """Anomalies in a given status across subjects, most recent first.

        Raises:
            ValidationError: If status is unknown or limit is out of range
        """
        try:
            status_filter = AnomalyStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown anomaly status: {status}")
        if not 1 <= limit <= MAX_LIST_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_LIST_LIMIT}")

        try:
            return (
                db.query(Anomaly)
                .filter(Anomaly.status == status_filter)
                .order_by(Anomaly.detected_at.desc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            raise UpstreamStoreError(f"Failed to list anomalies: {e}") from e

    def _publish_created(self, anomaly: Anomaly, score: float) -> None:
        if self.producer is None:
            return
        self.producer.produce_anomaly(
            AnomalyDetectedEvent(
                anomaly_id=anomaly.id,
                event_time=anomaly.detected_at,
                processing_time=datetime.now(timezone.utc),
                subject_id=anomaly.subject_id,
                anomaly_type=anomaly.anomaly_type.value,
                severity=anomaly.severity.value,
                description=anomaly.description,
                latitude=anomaly.latitude,
                longitude=anomaly.longitude,
                details=anomaly.anomaly_metadata or {},
                safety_score=score,
            )
        )

    def _publish_resolved(self, anomaly: Anomaly, notes: Optional[str], score: Optional[float]) -> None:
        if self.producer is None:
            return
        self.producer.produce_resolution(
            AnomalyResolvedEvent(
                anomaly_id=anomaly.id,
                event_time=anomaly.resolved_at,
                processing_time=datetime.now(timezone.utc),
                subject_id=anomaly.subject_id,
                anomaly_type=anomaly.anomaly_type.value,
                status=anomaly.status.value,
                notes=notes,
                safety_score=score,
            )
        )
