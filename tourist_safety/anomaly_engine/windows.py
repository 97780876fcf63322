"""Bounded recent-location window for one subject.

The window is loaded from the ``locations`` table on every detection pass;
nothing is retained between passes.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

# Number of most recent pings a detection pass looks at
DEFAULT_WINDOW_SIZE = 10


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LocationPing:
    """Single location report used by the detectors."""

    def __init__(
        self,
        subject_id: str,
        latitude: float,
        longitude: float,
        timestamp: datetime,
        altitude: Optional[float] = None,
    ):
        self.subject_id = subject_id
        self.latitude = float(latitude)
        self.longitude = float(longitude)
        self.altitude = float(altitude) if altitude is not None else None
        self.timestamp = as_utc(timestamp)

    @classmethod
    def from_record(cls, record) -> "LocationPing":
        """Build a ping from any object exposing the location columns."""
        return cls(
            subject_id=record.subject_id,
            latitude=record.latitude,
            longitude=record.longitude,
            timestamp=record.timestamp,
            altitude=record.altitude,
        )

    def __repr__(self) -> str:
        return (
            f"<LocationPing(subject_id={self.subject_id}, lat={self.latitude}, "
            f"lon={self.longitude}, alt={self.altitude}, ts={self.timestamp.isoformat()})>"
        )


class LocationWindow:
    """Most recent pings of a subject, newest first."""

    def __init__(self, pings: Iterable[LocationPing], size: int = DEFAULT_WINDOW_SIZE):
        """Initialize window.

        Args:
            pings: Pings in any order
            size: Maximum number of pings kept (most recent win)
        """
        ordered = sorted(pings, key=lambda p: p.timestamp, reverse=True)
        self.pings: List[LocationPing] = ordered[:size]
        self.size = size

    def __len__(self) -> int:
        return len(self.pings)

    def __bool__(self) -> bool:
        return bool(self.pings)

    @property
    def latest(self) -> Optional[LocationPing]:
        return self.pings[0] if self.pings else None

    def chronological(self) -> List[LocationPing]:
        """Pings ordered oldest first."""
        return list(reversed(self.pings))

    def with_altitude(self) -> List[LocationPing]:
        """Pings carrying an altitude sample, oldest first."""
        return [p for p in self.chronological() if p.altitude is not None]

    def has_sufficient_history(self, min_pings: int = 2) -> bool:
        return len(self.pings) >= min_pings
