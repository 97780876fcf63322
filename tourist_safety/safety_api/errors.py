"""Error taxonomy for the safety service."""

from ..anomaly_engine.geo import ComputationError


class SafetyServiceError(Exception):
    """Base class for safety service errors."""


class ValidationError(SafetyServiceError, ValueError):
    """Missing or malformed request parameters."""


class InvalidTransitionError(ValidationError):
    """Anomaly lifecycle transition not allowed from the current status."""


class NotFoundError(SafetyServiceError):
    """Referenced anomaly or subject has no record."""


class UpstreamStoreError(SafetyServiceError):
    """Failure reported by the persistence layer."""


__all__ = [
    "ComputationError",
    "InvalidTransitionError",
    "NotFoundError",
    "SafetyServiceError",
    "UpstreamStoreError",
    "ValidationError",
]
