"""FastAPI application for the tourist safety service."""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..schemas.events import LocationUpdateEvent
from .api import anomalies, geofence, scores
from .config import SafetyServiceConfig
from .db import session as db_session
from .errors import UpstreamStoreError
from .kafka_consumer import LocationUpdateConsumer
from .kafka_producer import KafkaProducer
from .services.anomaly_service import AnomalyService
from .services.geofence_service import GeofenceService
from .services.location_service import LocationService
from .services.score_ledger import SafetyScoreLedger

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global config
config = SafetyServiceConfig()

# Shared services and background task handles
_anomaly_service: Optional[AnomalyService] = None
_producer: Optional[KafkaProducer] = None
_consumer: Optional[LocationUpdateConsumer] = None
_consumer_task: Optional[asyncio.Task] = None
_executor: Optional[ThreadPoolExecutor] = None


def build_services(service_config: SafetyServiceConfig, producer: Optional[KafkaProducer] = None) -> AnomalyService:
    """Create the shared services and hand them to the routers.

    Args:
        service_config: Safety service configuration
        producer: Optional Kafka producer for anomaly notifications

    Returns:
        The anomaly service (other services hang off it)
    """
    ledger = SafetyScoreLedger(service_config.ledger)
    anomaly_service = AnomalyService(service_config.engine, ledger=ledger, producer=producer)

    anomalies.set_service(anomaly_service)
    geofence.set_service(GeofenceService(anomaly_service))
    scores.set_service(ledger)
    return anomaly_service


def process_location_event(event: LocationUpdateEvent, anomaly_service: AnomalyService) -> None:
    """Record a location update and run a detection pass (runs in thread)."""
    # Create a new database session for each message
    if db_session.SessionLocal is None:
        logger.error("Database not initialized. Cannot process location updates.")
        return

    db = db_session.SessionLocal()
    try:
        LocationService.record_location(event, db)
        result = anomaly_service.run_detection_pass(event.subject_id, db)
        if result.created:
            logger.info(
                f"Location update for subject {event.subject_id} created "
                f"{len(result.created)} anomaly(ies)"
            )
    except Exception as e:
        logger.error(f"Error processing location update for {event.subject_id}: {e}", exc_info=True)
    finally:
        db.close()


def _run_location_consumer(consumer: LocationUpdateConsumer, anomaly_service: AnomalyService) -> None:
    """Run location update consumer in thread (blocking)."""
    logger.info("Starting location update consumer in background thread")
    try:
        for event in consumer.consume():
            process_location_event(event, anomaly_service)
    except Exception as e:
        logger.error(f"Fatal error in location update consumer: {e}", exc_info=True)
    finally:
        consumer.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    global _anomaly_service, _producer, _consumer, _consumer_task, _executor

    # Startup
    logger.info("Starting safety service")
    db_session.init_db(config)

    _producer = KafkaProducer(config)
    _anomaly_service = build_services(config, producer=_producer)

    if config.kafka_consumer.enabled:
        _executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="location-consumer")
        _consumer = LocationUpdateConsumer(config)
        loop = asyncio.get_running_loop()
        _consumer_task = asyncio.ensure_future(
            loop.run_in_executor(_executor, _run_location_consumer, _consumer, _anomaly_service)
        )
    else:
        logger.info("Kafka consumer disabled by configuration")

    yield

    # Shutdown
    logger.info("Shutting down safety service")
    if _consumer:
        _consumer.stop()
    if _consumer_task:
        try:
            await _consumer_task
        except Exception as e:
            logger.warning(f"Location consumer ended with error: {e}")
        _consumer_task = None
    if _executor:
        _executor.shutdown(wait=True)
        _executor = None
    if _producer:
        _producer.flush()
        _producer.close()


app = FastAPI(
    title="Tourist Safety Service",
    description="Anomaly detection, geofencing and safety scores for tracked tourists",
    lifespan=lifespan,
)

# Include routers
app.include_router(anomalies.router)
app.include_router(geofence.router)
app.include_router(scores.router)


@app.exception_handler(UpstreamStoreError)
async def upstream_store_error_handler(request: Request, exc: UpstreamStoreError) -> JSONResponse:
    """Surface persistence failures as server errors."""
    logger.error(f"Store failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.get("/health")
def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8004)
