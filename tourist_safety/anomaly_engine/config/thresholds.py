"""Threshold configuration loader.

Loads detector thresholds from a JSON file, merged over the defaults.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# Default thresholds (fallback if file not found)
DEFAULT_THRESHOLDS = {
    "inactivity": {
        "threshold_minutes": 120,
        "high_minutes": 360,
        "critical_minutes": 1440,
    },
    "route_deviation": {
        "default_radius_meters": 2000.0,
        "high_distance_meters": 10000.0,
    },
    "altitude_drop": {
        "drop_meters": 100.0,
        "critical_drop_meters": 300.0,
        "window_seconds": 300,
    },
    "speed_anomaly": {
        "max_speed_mps": 70.0,
        "critical_speed_mps": 250.0,
    },
    "geofence": {
        "nearby_within_meters": 10000.0,
        "nearby_limit": 5,
    },
}


def merge_thresholds(overrides: Optional[Dict]) -> Dict:
    """Overlay per-rule overrides on a copy of DEFAULT_THRESHOLDS."""
    merged = copy.deepcopy(DEFAULT_THRESHOLDS)
    for rule_name, rule_thresholds in (overrides or {}).items():
        if isinstance(rule_thresholds, dict):
            merged.setdefault(rule_name, {}).update(rule_thresholds)
        else:
            logger.warning(f"Ignoring malformed thresholds for {rule_name}: {rule_thresholds!r}")
    return merged


def load_thresholds(config_path: Optional[Path] = None) -> Dict:
    """Load thresholds from JSON file.

    Args:
        config_path: Path to thresholds.json. If None, uses THRESHOLDS_PATH
            or thresholds.json next to this module.

    Returns:
        Dictionary of per-rule thresholds
    """
    if config_path is None:
        env_path = os.getenv("THRESHOLDS_PATH")
        config_path = Path(env_path) if env_path else Path(__file__).parent / "thresholds.json"

    if not config_path.exists():
        logger.warning(f"Thresholds file not found at {config_path}, using defaults")
        return merge_thresholds(None)

    try:
        with open(config_path, "r") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to load thresholds from {config_path}: {e}")
        logger.warning("Using default thresholds")
        return merge_thresholds(None)

    thresholds = merge_thresholds(data.get("thresholds", data))
    logger.info(f"Loaded thresholds from {config_path}")
    for rule_name, rule_thresholds in thresholds.items():
        logger.info(f"  {rule_name}: {rule_thresholds}")
    return thresholds
