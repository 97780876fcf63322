"""Kafka consumer for the location_updates topic.

Thin wrapper for consuming LocationUpdateEvent messages.
"""

import json
import logging
import threading
from collections import deque
from typing import Iterator, Optional
from uuid import UUID

from ..schemas.events import LocationUpdateEvent
from .config import SafetyServiceConfig

logger = logging.getLogger(__name__)


class LocationUpdateConsumer:
    """Thin Kafka consumer wrapper for location_updates topic."""

    def __init__(self, config: SafetyServiceConfig, deduplication_cache_size: int = 1000):
        """Initialize consumer with configuration.

        Args:
            config: Safety service configuration
            deduplication_cache_size: Maximum number of event_ids to keep in cache
        """
        self.config = config
        self._consumer: Optional[object] = None
        self._initialized = False
        self._retry_count = 0
        self._max_retries = 10
        self._base_retry_delay = 2
        self._max_retry_delay = 15
        self._stop = threading.Event()
        self._deduplication_cache_size = deduplication_cache_size
        # Bounded dedup cache: deque keeps insertion order, set gives O(1) lookups
        self._seen_event_ids: deque = deque(maxlen=deduplication_cache_size)
        self._seen_event_ids_set: set[UUID] = set()

    def _ensure_initialized(self) -> bool:
        """Initialize Kafka consumer if not already initialized.

        Returns:
            True if initialized successfully, False otherwise
        """
        if self._initialized and self._consumer is not None:
            return True

        while self._retry_count < self._max_retries and not self._stop.is_set():
            try:
                # Lazy import to avoid dependency if Kafka is not available
                from kafka import KafkaConsumer as _KafkaConsumer

                self._consumer = _KafkaConsumer(
                    self.config.kafka_consumer.topic,
                    bootstrap_servers=self.config.kafka_consumer.bootstrap_servers,
                    group_id=self.config.kafka_consumer.group_id,
                    key_deserializer=lambda k: k.decode("utf-8") if k else None,
                    value_deserializer=lambda v: json.loads(v.decode("utf-8")),
                    auto_offset_reset="earliest",
                    enable_auto_commit=True,
                    consumer_timeout_ms=1000,
                )
                self._initialized = True
                self._retry_count = 0
                logger.info("Kafka consumer initialized")
                return True
            except Exception as e:
                self._retry_count += 1
                if self._retry_count < self._max_retries:
                    delay = min(self._base_retry_delay * (2 ** (self._retry_count - 1)), self._max_retry_delay)
                    logger.warning(
                        f"Failed to initialize Kafka consumer (attempt {self._retry_count}/{self._max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    self._stop.wait(delay)
                else:
                    logger.error(f"Failed to initialize Kafka consumer after {self._max_retries} attempts: {e}")
                    self._consumer = None
                    self._initialized = True
                    return False

        return False

    def is_duplicate(self, event: LocationUpdateEvent) -> bool:
        """Remember the event_id and report whether it was seen recently.

        Events without an event_id are never treated as duplicates.
        """
        if event.event_id is None:
            return False
        if event.event_id in self._seen_event_ids_set:
            return True

        # Evict oldest if cache is full (before deque auto-evicts)
        if len(self._seen_event_ids) >= self._deduplication_cache_size:
            self._seen_event_ids_set.discard(self._seen_event_ids[0])
        self._seen_event_ids.append(event.event_id)
        self._seen_event_ids_set.add(event.event_id)
        return False

    def consume(self) -> Iterator[LocationUpdateEvent]:
        """Consume messages from Kafka with deduplication until stopped.

        Yields:
            LocationUpdateEvent instances (deduplicated by event_id)

        This will retry connection if Kafka becomes unavailable.
        """
        while not self._stop.is_set():
            if not self._ensure_initialized():
                logger.warning("Kafka consumer not available. Waiting before retrying...")
                self._stop.wait(5)
                self._initialized = False
                self._retry_count = 0
                continue

            try:
                # consumer_timeout_ms ends the iteration periodically so stop() is honoured
                for message in self._consumer:
                    try:
                        event = LocationUpdateEvent(**message.value)
                    except Exception as e:
                        logger.warning(f"Failed to parse location update: {e}")
                        continue

                    if self.is_duplicate(event):
                        logger.debug(
                            f"Skipping duplicate location update {event.event_id} for subject {event.subject_id}"
                        )
                        continue
                    yield event

                    if self._stop.is_set():
                        break
            except Exception as e:
                logger.error(f"Error consuming messages: {e}. Will retry connection...")
                self.close()
                self._consumer = None
                self._initialized = False
                self._retry_count = 0
                self._stop.wait(5)

    def stop(self) -> None:
        """Ask consume() to return after the current message."""
        self._stop.set()

    def close(self) -> None:
        """Close the consumer.

        Safe no-op if consumer is not initialized.
        """
        if self._consumer:
            try:
                self._consumer.close()
            except Exception as e:
                logger.warning(f"Failed to close consumer: {e}")
