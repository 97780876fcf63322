"""Configuration settings for the anomaly engine."""

import os
from dataclasses import dataclass
from typing import Dict

from .thresholds import DEFAULT_THRESHOLDS, load_thresholds, merge_thresholds


@dataclass
class EngineConfig:
    """Anomaly engine configuration."""

    window_size: int = int(os.getenv("LOCATION_WINDOW_SIZE", "10"))
    thresholds: Dict = None

    def __post_init__(self):
        """Load thresholds after initialization."""
        if self.thresholds is None:
            self.thresholds = load_thresholds()
        else:
            self.thresholds = merge_thresholds(self.thresholds)


__all__ = ["DEFAULT_THRESHOLDS", "EngineConfig", "load_thresholds", "merge_thresholds"]
