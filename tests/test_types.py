"""
Unit tests for the shared value types and configuration.
Run with:  pytest tests/
"""

from __future__ import annotations

import dataclasses

import numpy as np
import pytest

from ppg_vitals.config import HeartbeatConfig, VitalsConfig
from ppg_vitals.types import EVALUATING, EVALUATING_SEGMENT, BloodPressure, RollingBuffer


# ---------------------------------------------------------------------------
# RollingBuffer tests
# ---------------------------------------------------------------------------

class TestRollingBuffer:

    def test_length_never_exceeds_capacity(self):
        buf = RollingBuffer(5)
        for i in range(12):
            buf.append(float(i))
            assert len(buf) <= buf.capacity
        assert list(buf) == [7.0, 8.0, 9.0, 10.0, 11.0]
        assert buf.is_full

    def test_last_returns_most_recent_oldest_first(self):
        buf = RollingBuffer(10)
        for i in range(4):
            buf.append(i)
        assert buf.last(2) == [2, 3]
        assert buf.last(10) == [0, 1, 2, 3]
        assert buf.last(0) == []

    def test_to_array_and_clear(self):
        buf = RollingBuffer(3)
        buf.append(1.5)
        buf.append(2.5)
        np.testing.assert_allclose(buf.to_array(), [1.5, 2.5])
        buf.clear()
        assert len(buf) == 0
        assert not buf

    def test_non_positive_capacity_rejected(self):
        with pytest.raises(ValueError):
            RollingBuffer(0)


class TestRecords:

    def test_placeholder_segment(self):
        assert EVALUATING_SEGMENT.label == EVALUATING
        assert EVALUATING_SEGMENT.is_evaluating

    def test_blood_pressure_str(self):
        assert str(BloodPressure(systolic=120, diastolic=80)) == "120/80"


# ---------------------------------------------------------------------------
# VitalsConfig tests
# ---------------------------------------------------------------------------

class TestVitalsConfig:

    def test_defaults_assume_30_fps(self):
        cfg = VitalsConfig()
        assert cfg.fps == 30.0
        assert cfg.heartbeat.window_size == 60
        assert cfg.spo2.window_size == 60

    def test_with_fps_rescales_sample_windows(self):
        cfg = VitalsConfig().with_fps(60.0)
        assert cfg.fps == 60.0
        assert cfg.heartbeat.window_size == 120
        assert cfg.heartbeat.min_samples == 60
        assert cfg.spo2.peak_distance == 18
        # time-based settings are untouched
        assert cfg.heartbeat.warmup_s == 3.0
        assert cfg.heartbeat.refractory_s == 0.4

    def test_with_fps_rejects_non_positive(self):
        with pytest.raises(ValueError):
            VitalsConfig().with_fps(0)

    def test_configs_are_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            HeartbeatConfig().window_size = 10  # type: ignore[misc]
