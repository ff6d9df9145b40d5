"""
Unit tests for SpO2Engine.
Run with:  pytest tests/
"""

from __future__ import annotations

import numpy as np
import pytest

from ppg_vitals.spo2 import SpO2Engine
from ppg_vitals.types import Fallback

FPS = 30.0


def _window(amp: float, n: int = 60, hz: float = 1.2, mean: float = 100.0) -> np.ndarray:
    t = np.arange(n) / FPS
    return mean + amp * np.sin(2 * np.pi * hz * t)


class TestSpO2Engine:

    def test_no_data_returns_zero(self):
        engine = SpO2Engine()
        assert engine.calculate([]) == 0.0
        assert engine.calculate_raw([100.0] * 5) == 0.0
        assert engine.last_fallback is Fallback.INSUFFICIENT_DATA

    def test_flat_signal_rejected(self):
        engine = SpO2Engine()
        assert engine.calculate(np.full(60, 100.0)) == 0.0
        assert engine.last_fallback is Fallback.SIGNAL_QUALITY_TOO_LOW

    def test_raw_value_for_synthetic_pulse(self):
        engine = SpO2Engine()
        assert engine.calculate_raw(_window(20.0)) == 93.0
        assert engine.last_fallback is None

    def test_raw_value_clamped_to_range(self):
        """A very large perfusion index would map below 90 %."""
        engine = SpO2Engine()
        assert engine.calculate_raw(_window(30.0)) == 90.0

    def test_raw_value_held_on_bad_window(self):
        engine = SpO2Engine()
        good = engine.calculate_raw(_window(20.0))
        assert engine.calculate_raw(np.full(60, 100.0)) == good
        assert engine.last_fallback is Fallback.SIGNAL_QUALITY_TOO_LOW

    def test_calibration_offset_applied(self):
        engine = SpO2Engine()
        for v in (94, 95, 96, 94, 97):
            engine.add_calibration_value(v)
        assert engine.calibrate() is True
        assert engine.calibration.is_calibrated
        assert engine.calibration.offset == pytest.approx(2.0)
        assert engine.calculate(_window(20.0)) == pytest.approx(95.0)

    def test_calibration_needs_five_values(self):
        engine = SpO2Engine()
        for v in (94, 95, 96, 97):
            engine.add_calibration_value(v)
        assert engine.calibrate() is False
        assert not engine.calibration.is_calibrated
        assert engine.calibration.offset == 0.0

    def test_calibration_ignores_non_positive_values(self):
        engine = SpO2Engine()
        for v in (0, -3, 95, 95, 95, 95):
            engine.add_calibration_value(v)
        assert len(engine.calibration.samples) == 4
        assert engine.calibrate() is False

    def test_calibrate_is_idempotent(self):
        engine = SpO2Engine()
        for v in (93, 94, 95, 96, 98, 92):
            engine.add_calibration_value(v)
        engine.calibrate()
        first = engine.calibration.offset
        engine.calibrate()
        assert engine.calibration.offset == first

    def test_output_is_zero_or_in_range(self):
        rng = np.random.default_rng(3)
        engine = SpO2Engine()
        for i in range(200):
            window = _window(rng.uniform(0.5, 25.0)) + rng.normal(0.0, 1.0, 60)
            spo2 = engine.calculate(window)
            assert spo2 == 0.0 or 90.0 <= spo2 <= 100.0

    def test_display_is_smoothed(self):
        engine = SpO2Engine()
        first = engine.calculate(_window(20.0))
        # a weaker pulse maps to a higher raw value; the display moves towards it slowly
        second = engine.calculate(_window(5.0))
        assert first < second < engine.calculate_raw(_window(5.0))

    def test_reset_clears_value(self):
        engine = SpO2Engine()
        for v in (94, 95, 96, 94, 97):
            engine.add_calibration_value(v)
        engine.calibrate()
        engine.calculate(_window(20.0))
        engine.reset()
        assert engine.last_value == 0.0
        assert not engine.calibration.is_calibrated
        assert len(engine.calibration.samples) == 0
