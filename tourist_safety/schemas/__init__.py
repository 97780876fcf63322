"""Shared Kafka message schemas.

This module contains Pydantic models for all Kafka message types.
"""

from .events import (
    AnomalyDetectedEvent,
    AnomalyResolvedEvent,
    LocationUpdateEvent,
)

__all__ = [
    "LocationUpdateEvent",
    "AnomalyDetectedEvent",
    "AnomalyResolvedEvent",
]
