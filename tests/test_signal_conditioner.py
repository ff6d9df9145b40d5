"""
Unit tests for SignalConditioner.
Run with:  pytest tests/
"""

from __future__ import annotations

import numpy as np
import pytest

from ppg_vitals.signal_conditioner import SignalConditioner


class TestSignalConditioner:

    def test_first_sample_passes_through(self):
        sc = SignalConditioner()
        assert sc.condition(42.0) == pytest.approx(42.0)
        assert sc.baseline == pytest.approx(42.0)

    def test_constant_input_is_a_fixed_point(self):
        sc = SignalConditioner()
        for _ in range(50):
            out = sc.condition(100.0)
        assert out == pytest.approx(100.0)
        assert sc.baseline == pytest.approx(100.0)

    def test_single_frame_spike_rejected(self):
        """The median stage removes an isolated outlier entirely."""
        sc = SignalConditioner()
        outputs = [sc.condition(v) for v in (10.0, 10.0, 250.0, 10.0, 10.0)]
        assert outputs == pytest.approx([10.0] * 5)

    def test_baseline_is_cumulative_mean_at_start(self):
        sc = SignalConditioner()
        outputs = [sc.condition(v) for v in (0.0, 3.0, 6.0)]
        assert sc.baseline == pytest.approx(np.mean(outputs))

    def test_baseline_tracks_slowly(self):
        sc = SignalConditioner()
        for _ in range(200):
            sc.condition(100.0)
        for _ in range(5):
            sc.condition(200.0)
        assert sc.smoothed_value > 150.0
        assert sc.baseline < 120.0

    def test_reset(self):
        sc = SignalConditioner()
        for v in range(10):
            sc.condition(float(v))
        sc.reset()
        assert sc.smoothed_value == 0.0
        assert sc.baseline == 0.0
        assert sc.condition(7.0) == pytest.approx(7.0)
