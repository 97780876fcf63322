"""Tests for threshold loading and severity tables."""
from __future__ import annotations

import json
import logging

import pytest

from tourist_safety.anomaly_engine.anomalies import RiskLevel, Severity, restore_delta, score_deduction
from tourist_safety.anomaly_engine.config import DEFAULT_THRESHOLDS, EngineConfig, load_thresholds


def test_missing_file_falls_back_to_defaults(tmp_path):
    assert load_thresholds(tmp_path / "absent.json") == DEFAULT_THRESHOLDS


def test_malformed_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "thresholds.json"
    path.write_text("{not json")
    assert load_thresholds(path) == DEFAULT_THRESHOLDS


def test_file_values_are_merged_over_defaults(tmp_path):
    path = tmp_path / "thresholds.json"
    path.write_text(json.dumps({"thresholds": {"speed_anomaly": {"max_speed_mps": 40.0}}}))
    thresholds = load_thresholds(path)
    assert thresholds["speed_anomaly"]["max_speed_mps"] == 40.0
    assert thresholds["speed_anomaly"]["critical_speed_mps"] == 250.0
    assert thresholds["inactivity"] == DEFAULT_THRESHOLDS["inactivity"]


def test_bare_mapping_is_accepted(tmp_path):
    path = tmp_path / "thresholds.json"
    path.write_text(json.dumps({"geofence": {"nearby_limit": 3}}))
    assert load_thresholds(path)["geofence"]["nearby_limit"] == 3


def test_env_path_is_honoured(tmp_path, monkeypatch):
    path = tmp_path / "custom.json"
    path.write_text(json.dumps({"inactivity": {"threshold_minutes": 30}}))
    monkeypatch.setenv("THRESHOLDS_PATH", str(path))
    assert load_thresholds()["inactivity"]["threshold_minutes"] == 30


def test_bundled_file_matches_defaults(monkeypatch, caplog):
    monkeypatch.delenv("THRESHOLDS_PATH", raising=False)
    caplog.set_level(logging.INFO, logger="tourist_safety.anomaly_engine.config.thresholds")

    assert load_thresholds() == DEFAULT_THRESHOLDS
    assert "not found" not in caplog.text
    assert "Loaded thresholds from" in caplog.text


def test_engine_config_does_not_mutate_defaults():
    config = EngineConfig(thresholds={"altitude_drop": {"drop_meters": 50.0}})
    assert config.thresholds["altitude_drop"]["drop_meters"] == 50.0
    assert DEFAULT_THRESHOLDS["altitude_drop"]["drop_meters"] == 100.0


@pytest.mark.parametrize(
    "severity, deduction",
    [
        (Severity.LOW, -5.0),
        (Severity.MEDIUM, -10.0),
        (Severity.HIGH, -20.0),
        (Severity.CRITICAL, -30.0),
        ("high", -20.0),
        ("unknown", -10.0),
        (None, -10.0),
    ],
)
def test_score_deduction(severity, deduction):
    assert score_deduction(severity) == deduction


def test_every_severity_has_a_deduction():
    for severity in Severity:
        assert score_deduction(severity) < 0


def test_restore_is_half_the_deduction():
    assert restore_delta(Severity.HIGH) == 10.0
    assert restore_delta(Severity.LOW) == 2.5


def test_risk_ranks_are_ordered():
    assert [level.rank for level in RiskLevel] == [1, 2, 3, 4]
    assert RiskLevel.CRITICAL.to_severity() == Severity.CRITICAL
