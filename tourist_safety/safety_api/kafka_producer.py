"""Kafka producer for anomaly notifications.

Publishes AnomalyDetectedEvent and AnomalyResolvedEvent messages so that
downstream notifiers (SMS, dashboards) can react. Publishing never blocks or
fails a detection pass.
"""

import json
import logging
from typing import Optional, Union

from ..schemas.events import AnomalyDetectedEvent, AnomalyResolvedEvent
from .config import SafetyServiceConfig

logger = logging.getLogger(__name__)


class KafkaProducer:
    """Thin Kafka producer wrapper for anomaly topics."""

    def __init__(self, config: SafetyServiceConfig):
        """Initialize producer with configuration.

        Args:
            config: Safety service configuration
        """
        self.config = config
        self._producer: Optional[object] = None
        self._initialized = False

    def _ensure_initialized(self) -> bool:
        """Initialize Kafka producer if not already initialized.

        Returns:
            True if initialized successfully, False otherwise
        """
        if self._initialized:
            return self._producer is not None

        if not self.config.kafka_producer.enabled:
            logger.info("Kafka producer disabled by configuration")
            self._initialized = True
            return False

        try:
            # Lazy import to avoid dependency if Kafka is not available
            from kafka import KafkaProducer as _KafkaProducer

            self._producer = _KafkaProducer(
                bootstrap_servers=self.config.kafka_producer.bootstrap_servers,
                key_serializer=lambda k: k.encode("utf-8") if k else None,
                value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
            )
            self._initialized = True
            logger.info("Kafka producer initialized")
            return True
        except Exception as e:
            logger.warning(f"Failed to initialize Kafka producer: {e}")
            self._producer = None
            self._initialized = True  # Mark as attempted to avoid retry loops
            return False

    def _send(self, topic: str, event: Union[AnomalyDetectedEvent, AnomalyResolvedEvent]) -> None:
        if not self._ensure_initialized():
            logger.debug(f"Kafka producer not available, skipping {topic} event")
            return

        try:
            # Partition key: subject_id
            self._producer.send(
                topic=topic,
                key=event.subject_id,
                value=event.model_dump(mode="json"),
            )
            logger.debug(f"Published {topic} event for anomaly {event.anomaly_id}")
        except Exception as e:
            logger.warning(f"Failed to publish {topic} event for anomaly {event.anomaly_id}: {e}")

    def produce_anomaly(self, event: AnomalyDetectedEvent) -> None:
        """Publish a newly created anomaly. Safe no-op if Kafka is unavailable."""
        self._send(self.config.kafka_producer.anomalies_topic, event)

    def produce_resolution(self, event: AnomalyResolvedEvent) -> None:
        """Publish an anomaly resolution. Safe no-op if Kafka is unavailable."""
        self._send(self.config.kafka_producer.resolutions_topic, event)

    def flush(self) -> None:
        """Flush any pending messages.

        Safe no-op if producer is not initialized.
        """
        if self._producer:
            try:
                self._producer.flush()
            except Exception as e:
                logger.warning(f"Failed to flush producer: {e}")

    def close(self) -> None:
        """Close the producer.

        Safe no-op if producer is not initialized.
        """
        if self._producer:
            try:
                self._producer.close()
            except Exception as e:
                logger.warning(f"Failed to close producer: {e}")
