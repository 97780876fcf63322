"""Tests for the anomaly lifecycle: detection passes, dedup and resolution."""
from __future__ import annotations

import uuid
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from tourist_safety.anomaly_engine.anomalies import AnomalyType, Severity
from tourist_safety.anomaly_engine.geo import ComputationError
from tourist_safety.safety_api.config import LedgerConfig
from tourist_safety.safety_api.db.models import Anomaly, AnomalyStatus, SafetyScoreEvent
from tourist_safety.safety_api.errors import (
    InvalidTransitionError,
    NotFoundError,
    UpstreamStoreError,
    ValidationError,
)
from tourist_safety.safety_api.locks import SubjectLockRegistry
from tourist_safety.safety_api.services.anomaly_service import (
    STATUS_ANOMALIES_DETECTED,
    STATUS_NO_DATA,
    STATUS_NORMAL,
    AnomalyService,
)
from tourist_safety.safety_api.services.geofence_service import GeofenceService
from tourist_safety.safety_api.services.location_service import LocationService
from tourist_safety.safety_api.services.score_ledger import SafetyScoreLedger

from .conftest import BASE_TIME

FIVE_HUNDRED_KM_IN_DEGREES = 500000.0 / 111194.93


def add_speeding_subject(add_ping, subject_id="t-1"):
    add_ping(subject_id, 10.0, 20.0, minutes_ago=1)
    add_ping(subject_id, 10.0 + FIVE_HUNDRED_KM_IN_DEGREES, 20.0, minutes_ago=0)


def active_rows(db, subject_id):
    return (
        db.query(Anomaly)
        .filter(Anomaly.subject_id == subject_id, Anomaly.status == AnomalyStatus.ACTIVE)
        .all()
    )


class TestDetectionPass:
    def test_no_locations_means_no_data(self, anomaly_service, db):
        result = anomaly_service.run_detection_pass("ghost", db, now=BASE_TIME)
        assert result.status == STATUS_NO_DATA
        assert result.anomalies == []
        assert db.query(Anomaly).count() == 0
        assert anomaly_service.ledger.get_score("ghost", db) == 100.0

    def test_recent_ping_is_normal(self, anomaly_service, db, add_ping):
        add_ping("t-1", 10.0, 20.0, minutes_ago=5)
        result = anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME)
        assert result.status == STATUS_NORMAL
        assert result.detected_now == []

    def test_blank_subject_is_rejected(self, anomaly_service, db):
        with pytest.raises(ValidationError):
            anomaly_service.run_detection_pass("  ", db)

    def test_inactivity_is_idempotent(self, anomaly_service, db, add_ping):
        add_ping("t-1", 10.0, 20.0, minutes_ago=180)

        first = anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME)
        second = anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME)

        assert first.status == STATUS_ANOMALIES_DETECTED
        assert len(first.created) == 1
        assert second.created == []
        assert [s.anomaly_type for s in second.detected_now] == [AnomalyType.INACTIVITY]
        assert len(active_rows(db, "t-1")) == 1
        assert anomaly_service.ledger.get_score("t-1", db) == 90.0
        assert db.query(SafetyScoreEvent).count() == 1

    def test_severity_change_does_not_duplicate(self, anomaly_service, db, add_ping):
        add_ping("t-1", 10.0, 20.0, minutes_ago=180)
        anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME)
        anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME + timedelta(hours=5))

        (row,) = active_rows(db, "t-1")
        assert row.severity == Severity.MEDIUM
        assert anomaly_service.ledger.get_score("t-1", db) == 90.0

    def test_geofence_breach_example(self, anomaly_service, db, add_ping, add_zone):
        add_zone("Border area", 28.6, 77.205, 1000.0, "critical")
        add_ping("t-1", 28.6, 77.2, minutes_ago=0)

        result = anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME)

        (anomaly,) = result.anomalies
        assert anomaly.anomaly_type == AnomalyType.GEOFENCE_BREACH
        assert anomaly.severity == Severity.CRITICAL
        assert anomaly.anomaly_metadata["zone_name"] == "Border area"
        assert anomaly.anomaly_metadata["distance_meters"] == pytest.approx(488.1, abs=1.0)
        assert anomaly_service.ledger.get_score("t-1", db) == 70.0

    def test_dominant_zone_sets_severity(self, anomaly_service, db, add_ping, add_zone):
        add_zone("Market", 10.0, 20.0, 3000.0, "low")
        add_zone("Quarry", 10.0, 20.001, 3000.0, "critical")
        add_ping("t-1", 10.0, 20.0, minutes_ago=0)

        (anomaly,) = anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME).anomalies
        assert anomaly.severity == Severity.CRITICAL
        assert anomaly.anomaly_metadata["zone_name"] == "Quarry"

    def test_multiple_signals_in_one_pass(self, anomaly_service, db, add_ping, add_waypoint):
        add_waypoint("t-1", 40.0, 20.0, radius=500.0)
        add_speeding_subject(add_ping)

        result = anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME)

        types = {a.anomaly_type for a in result.created}
        assert types == {AnomalyType.ROUTE_DEVIATION, AnomalyType.SPEED_ANOMALY}
        # route deviation HIGH (-20) and speed HIGH (-20)
        assert anomaly_service.ledger.get_score("t-1", db) == 60.0

    def test_zone_lookup_failure_is_isolated(self, anomaly_service, db, add_ping, add_zone, monkeypatch):
        add_zone("Border area", 10.0, 20.0, 1000.0, "critical")
        add_ping("t-1", 10.0, 20.0, minutes_ago=180)

        def broken(db):
            raise UpstreamStoreError("zone table unavailable")

        monkeypatch.setattr(LocationService, "load_active_zones", staticmethod(broken))
        result = anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME)
        assert [a.anomaly_type for a in result.created] == [AnomalyType.INACTIVITY]

    def test_subjects_are_independent(self, anomaly_service, db, add_ping):
        add_ping("a", 10.0, 20.0, minutes_ago=180)
        add_ping("b", 10.0, 20.0, minutes_ago=1)
        anomaly_service.run_detection_pass("a", db, now=BASE_TIME)
        anomaly_service.run_detection_pass("b", db, now=BASE_TIME)
        assert len(active_rows(db, "a")) == 1
        assert active_rows(db, "b") == []
        assert anomaly_service.ledger.get_score("b", db) == 100.0

    def test_only_recent_window_is_considered(self, db, add_ping, service_config):
        service_config.engine.window_size = 2
        service = AnomalyService(service_config.engine)
        add_ping("t-1", 10.0, 20.0, minutes_ago=3)
        add_ping("t-1", 10.0 + FIVE_HUNDRED_KM_IN_DEGREES, 20.0, minutes_ago=2)
        add_ping("t-1", 10.0 + FIVE_HUNDRED_KM_IN_DEGREES, 20.0, minutes_ago=1)
        add_ping("t-1", 10.0 + FIVE_HUNDRED_KM_IN_DEGREES, 20.0, minutes_ago=0)
        assert service.run_detection_pass("t-1", db, now=BASE_TIME).created == []


class TestActiveUniqueness:
    def test_database_rejects_second_active_row(self, db):
        for _ in range(2):
            db.add(
                Anomaly(
                    subject_id="t-1",
                    anomaly_type=AnomalyType.INACTIVITY,
                    severity=Severity.MEDIUM,
                    description="silent",
                    anomaly_metadata={},
                )
            )
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_terminal_rows_do_not_count(self, db):
        db.add(
            Anomaly(
                subject_id="t-1",
                anomaly_type=AnomalyType.INACTIVITY,
                severity=Severity.MEDIUM,
                description="old",
                anomaly_metadata={},
                status=AnomalyStatus.RESOLVED,
            )
        )
        db.add(
            Anomaly(
                subject_id="t-1",
                anomaly_type=AnomalyType.INACTIVITY,
                severity=Severity.MEDIUM,
                description="new",
                anomaly_metadata={},
            )
        )
        db.commit()
        assert db.query(Anomaly).count() == 2


class TestResolution:
    def test_resolving_high_restores_half(self, anomaly_service, db, add_ping):
        add_speeding_subject(add_ping)
        (anomaly,) = anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME).created
        assert anomaly.severity == Severity.HIGH
        assert anomaly_service.ledger.get_score("t-1", db) == 80.0

        resolved = anomaly_service.resolve_anomaly(anomaly.id, "resolved", "called the guide", db)

        assert resolved.status == AnomalyStatus.RESOLVED
        assert resolved.resolved_at is not None
        assert resolved.anomaly_metadata["resolution_notes"] == "called the guide"
        assert anomaly_service.ledger.get_score("t-1", db) == 90.0
        last = anomaly_service.ledger.list_events("t-1", db, limit=1, newest_first=True)[0]
        assert last.reason == "anomaly_resolved"
        assert last.delta == 10.0

    def test_false_positive_restores_nothing(self, anomaly_service, db, add_ping):
        add_speeding_subject(add_ping)
        (anomaly,) = anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME).created

        resolved = anomaly_service.resolve_anomaly(anomaly.id, "false_positive", None, db)

        assert resolved.status == AnomalyStatus.FALSE_POSITIVE
        assert "resolution_notes" not in resolved.anomaly_metadata
        assert anomaly_service.ledger.get_score("t-1", db) == 80.0
        assert db.query(SafetyScoreEvent).count() == 1

    def test_unknown_anomaly(self, anomaly_service, db):
        with pytest.raises(NotFoundError):
            anomaly_service.resolve_anomaly(uuid.uuid4(), "resolved", None, db)

    @pytest.mark.parametrize("status", ["active", "closed", ""])
    def test_invalid_target_status(self, anomaly_service, db, add_ping, status):
        add_ping("t-1", 10.0, 20.0, minutes_ago=180)
        (anomaly,) = anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME).created
        with pytest.raises(ValidationError):
            anomaly_service.resolve_anomaly(anomaly.id, status, None, db)
        assert anomaly_service.get_anomaly(anomaly.id, db).status == AnomalyStatus.ACTIVE

    def test_terminal_anomaly_cannot_transition(self, anomaly_service, db, add_ping):
        add_ping("t-1", 10.0, 20.0, minutes_ago=180)
        (anomaly,) = anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME).created
        anomaly_service.resolve_anomaly(anomaly.id, "resolved", None, db)

        with pytest.raises(InvalidTransitionError):
            anomaly_service.resolve_anomaly(anomaly.id, "false_positive", None, db)
        assert anomaly_service.ledger.get_score("t-1", db) == 95.0

    def test_existing_resolution_notes_are_kept(self, anomaly_service, db, add_ping):
        add_ping("t-1", 10.0, 20.0, minutes_ago=180)
        (anomaly,) = anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME).created
        anomaly.anomaly_metadata = {**anomaly.anomaly_metadata, "resolution_notes": "first note"}
        db.commit()

        resolved = anomaly_service.resolve_anomaly(anomaly.id, "resolved", "second note", db)
        assert resolved.anomaly_metadata["resolution_notes"] == "first note"
        assert resolved.anomaly_metadata["inactive_minutes"] == pytest.approx(180.0)

    def test_recurring_condition_opens_new_anomaly(self, anomaly_service, db, add_ping):
        add_ping("t-1", 10.0, 20.0, minutes_ago=180)
        (first,) = anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME).created
        anomaly_service.resolve_anomaly(first.id, "resolved", None, db)

        (second,) = anomaly_service.run_detection_pass("t-1", db, now=BASE_TIME).created
        assert second.id != first.id
        # 100 - 10 + 5 - 10
        assert anomaly_service.ledger.get_score("t-1", db) == 85.0


class TestScoreAtomicity:
    @pytest.fixture
    def single_attempt_service(self, service_config):
        locks = SubjectLockRegistry()
        ledger = SafetyScoreLedger(
            LedgerConfig(max_retries=1, base_retry_delay=0.0, max_retry_delay=0.0), locks=locks
        )
        return AnomalyService(service_config.engine, ledger=ledger, locks=locks)

    @staticmethod
    def break_ledger(service, monkeypatch):
        def unavailable(*args, **kwargs):
            raise OperationalError("UPDATE subject_profiles", {}, Exception("server closed the connection"))

        monkeypatch.setattr(service.ledger, "stage_delta", unavailable)

    def test_failed_deduction_leaves_no_anomaly(self, single_attempt_service, db, add_ping, monkeypatch):
        add_ping("t-1", 10.0, 20.0, minutes_ago=180)
        self.break_ledger(single_attempt_service, monkeypatch)

        with pytest.raises(UpstreamStoreError):
            single_attempt_service.run_detection_pass("t-1", db, now=BASE_TIME)
        assert db.query(Anomaly).count() == 0
        assert db.query(SafetyScoreEvent).count() == 0

        monkeypatch.undo()
        (anomaly,) = single_attempt_service.run_detection_pass("t-1", db, now=BASE_TIME).created
        assert anomaly.anomaly_type == AnomalyType.INACTIVITY
        assert len(active_rows(db, "t-1")) == 1
        assert db.query(SafetyScoreEvent).count() == 1
        assert single_attempt_service.ledger.get_score("t-1", db) == 90.0

    def test_failed_restore_keeps_anomaly_active(self, single_attempt_service, db, add_ping, monkeypatch):
        add_speeding_subject(add_ping)
        (anomaly,) = single_attempt_service.run_detection_pass("t-1", db, now=BASE_TIME).created
        self.break_ledger(single_attempt_service, monkeypatch)

        with pytest.raises(UpstreamStoreError):
            single_attempt_service.resolve_anomaly(anomaly.id, "resolved", "guide reached them", db)
        current = single_attempt_service.get_anomaly(anomaly.id, db)
        assert current.status == AnomalyStatus.ACTIVE
        assert current.resolved_at is None
        assert single_attempt_service.ledger.get_score("t-1", db) == 80.0

        monkeypatch.undo()
        resolved = single_attempt_service.resolve_anomaly(anomaly.id, "resolved", "guide reached them", db)
        assert resolved.status == AnomalyStatus.RESOLVED
        assert single_attempt_service.ledger.get_score("t-1", db) == 90.0
        assert db.query(SafetyScoreEvent).count() == 2


class TestListing:
    def test_list_by_status(self, anomaly_service, db, add_ping):
        add_ping("a", 10.0, 20.0, minutes_ago=180)
        add_ping("b", 10.0, 20.0, minutes_ago=180)
        (a,) = anomaly_service.run_detection_pass("a", db, now=BASE_TIME).created
        anomaly_service.run_detection_pass("b", db, now=BASE_TIME)
        anomaly_service.resolve_anomaly(a.id, "resolved", None, db)

        assert [x.subject_id for x in anomaly_service.list_anomalies("active", 50, db)] == ["b"]
        assert [x.subject_id for x in anomaly_service.list_anomalies("resolved", 50, db)] == ["a"]
        assert anomaly_service.list_anomalies("false_positive", 50, db) == []

    def test_list_respects_limit(self, anomaly_service, db, add_ping):
        for subject in ("a", "b", "c"):
            add_ping(subject, 10.0, 20.0, minutes_ago=180)
            anomaly_service.run_detection_pass(subject, db, now=BASE_TIME)
        assert len(anomaly_service.list_anomalies("active", 2, db)) == 2

    @pytest.mark.parametrize("status, limit", [("bogus", 10), ("active", 0), ("active", 501)])
    def test_list_rejects_bad_arguments(self, anomaly_service, db, status, limit):
        with pytest.raises(ValidationError):
            anomaly_service.list_anomalies(status, limit, db)


class TestPublishing:
    def test_creation_and_resolution_are_published(self, service_config, db, add_ping):
        producer = MagicMock()
        service = AnomalyService(service_config.engine, producer=producer)
        add_ping("t-1", 10.0, 20.0, minutes_ago=180)

        (anomaly,) = service.run_detection_pass("t-1", db, now=BASE_TIME).created
        service.run_detection_pass("t-1", db, now=BASE_TIME)

        producer.produce_anomaly.assert_called_once()
        event = producer.produce_anomaly.call_args.args[0]
        assert event.anomaly_id == anomaly.id
        assert event.anomaly_type == "inactivity"
        assert event.safety_score == 90.0

        service.resolve_anomaly(anomaly.id, "false_positive", "wrong device", db)
        resolution = producer.produce_resolution.call_args.args[0]
        assert resolution.status == "false_positive"
        assert resolution.notes == "wrong device"
        assert resolution.safety_score is None


class TestGeofenceService:
    def test_check_records_breach_once(self, anomaly_service, db, add_zone):
        add_zone("Border area", 28.6, 77.205, 1000.0, "critical")
        service = GeofenceService(anomaly_service)

        first = service.check("t-1", 28.6, 77.2, db)
        second = service.check("t-1", 28.6, 77.2, db)

        assert first.breached and second.breached
        assert first.risk_level == 4
        assert len(active_rows(db, "t-1")) == 1
        assert anomaly_service.ledger.get_score("t-1", db) == 70.0

    def test_check_outside_zones_changes_nothing(self, anomaly_service, db, add_zone):
        add_zone("Border area", 28.6, 77.3, 1000.0, "critical")
        result = GeofenceService(anomaly_service).check("t-1", 28.6, 77.2, db)
        assert not result.breached
        assert [e.zone.name for e in result.nearby_zones] == ["Border area"]
        assert db.query(Anomaly).count() == 0

    def test_check_validates_input(self, anomaly_service, db):
        service = GeofenceService(anomaly_service)
        with pytest.raises(ValidationError):
            service.check("", 28.6, 77.2, db)
        with pytest.raises(ComputationError):
            service.check("t-1", 28.6, 181.0, db)

    def test_active_zones_by_descending_risk(self, anomaly_service, db, add_zone):
        add_zone("Low", 0.0, 0.0, 100.0, "low")
        add_zone("Critical", 0.0, 0.0, 100.0, "critical")
        add_zone("Closed", 0.0, 0.0, 100.0, "critical", is_active=False)
        add_zone("Legacy", 0.0, 0.0, 100.0, "medium", is_active=None)

        zones = GeofenceService.list_active_zones(db)
        assert [z.name for z in zones] == ["Critical", "Legacy", "Low"]
