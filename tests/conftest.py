"""Shared fixtures: in-memory SQLite database, services and API client."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tourist_safety.anomaly_engine.config import EngineConfig
from tourist_safety.safety_api.config import KafkaConsumerConfig, KafkaProducerConfig, SafetyServiceConfig
from tourist_safety.safety_api.db.models import (
    Base,
    ItineraryWaypoint,
    LocationRecord,
    RestrictedZone,
)
from tourist_safety.safety_api.db.session import get_db
from tourist_safety.safety_api.locks import SubjectLockRegistry
from tourist_safety.safety_api.services.anomaly_service import AnomalyService

BASE_TIME = datetime(2026, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def service_config():
    return SafetyServiceConfig(
        kafka_consumer=KafkaConsumerConfig(enabled=False),
        kafka_producer=KafkaProducerConfig(enabled=False),
        engine=EngineConfig(thresholds={}),
    )


@pytest.fixture
def anomaly_service(service_config):
    return AnomalyService(service_config.engine, locks=SubjectLockRegistry())


@pytest.fixture
def add_ping(db):
    """Insert a location report; ``minutes_ago`` is relative to ``at``."""

    def _add(subject_id, lat, lon, minutes_ago=0.0, altitude=None, at=BASE_TIME):
        record = LocationRecord(
            subject_id=subject_id,
            latitude=lat,
            longitude=lon,
            altitude=altitude,
            timestamp=at - timedelta(minutes=minutes_ago),
        )
        db.add(record)
        db.commit()
        return record

    return _add


@pytest.fixture
def add_zone(db):
    def _add(name, lat, lon, radius, risk_level, is_active=True, zone_type=None):
        zone = RestrictedZone(
            name=name,
            zone_type=zone_type,
            latitude=lat,
            longitude=lon,
            radius_meters=radius,
            risk_level=risk_level,
            is_active=is_active,
        )
        db.add(zone)
        db.commit()
        return zone

    return _add


@pytest.fixture
def add_waypoint(db):
    def _add(subject_id, lat, lon, radius=None, name=None):
        waypoint = ItineraryWaypoint(
            subject_id=subject_id, name=name, latitude=lat, longitude=lon, radius_meters=radius
        )
        db.add(waypoint)
        db.commit()
        return waypoint

    return _add


@pytest.fixture
def api(session_factory, service_config):
    """TestClient with services wired and get_db bound to the test database.

    Yields (client, anomaly_service).
    """
    from tourist_safety.safety_api import main

    anomaly_service = main.build_services(service_config)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    main.app.dependency_overrides[get_db] = override_get_db
    yield TestClient(main.app), anomaly_service
    main.app.dependency_overrides.clear()
