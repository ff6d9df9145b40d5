"""
Unit tests for HeartbeatEngine.
Run with:  pytest tests/
"""

from __future__ import annotations

import numpy as np
import pytest

from ppg_vitals.heartbeat import HeartbeatEngine, HeartbeatState, _similarity, _unit_scale
from ppg_vitals.signal_conditioner import SignalConditioner
from ppg_vitals.types import PeakCandidate

FPS = 30.0


def _sine(seconds: float, hz: float = 1.2, mean: float = 100.0, amp: float = 5.0,
          t0: float = 0.0) -> tuple[np.ndarray, np.ndarray]:
    t = t0 + np.arange(int(FPS * seconds)) / FPS
    return t, mean + amp * np.sin(2 * np.pi * hz * t)


def _feed(engine: HeartbeatEngine, conditioner: SignalConditioner, t, values):
    results = []
    for ts, raw in zip(t, values):
        smoothed = conditioner.condition(raw)
        results.append(engine.process(smoothed, float(ts), conditioner.baseline))
    return results


def _dome(shift: int = 0) -> np.ndarray:
    k = np.arange(-5, 6) - shift
    return 100.0 + 5.0 * np.cos(2 * np.pi * k / 25.0)


def _uncorrelated(shape: np.ndarray) -> np.ndarray:
    """A zigzag template with zero correlation to *shape*."""
    zigzag = np.where(np.arange(len(shape)) % 2 == 0, 1.0, -1.0)
    zigzag -= zigzag.mean()
    centred = shape - shape.mean()
    return zigzag - (zigzag @ centred) / (centred @ centred) * centred


def _engine_with_pending(delay: float):
    """
    Engine after 10 s of clean sine, with its templates replaced by shapes
    unlike the latest segment and a candidate *delay* seconds after one
    mean interval.
    """
    engine = HeartbeatEngine()
    sc = SignalConditioner()
    t, values = _sine(10.0)
    _feed(engine, sc, t, values)

    half = engine.config.segment_half_width
    position = len(engine._values) - 1 - half
    segment = engine._values.to_array()[position - half:position + half + 1]
    template = _uncorrelated(_unit_scale(segment))
    engine._templates = [template.copy() for _ in range(engine.config.min_templates)]

    mean_interval = float(np.mean(engine._intervals.to_array()))
    engine._pending = PeakCandidate(
        index=engine._sample_count - 1 - half,
        value=float(engine._values[position]),
        derivative=-0.1,
        timestamp=engine.last_peak_time + mean_interval + delay,
        confidence=0.9,
    )
    return engine, segment


class TestHeartbeatEngine:

    def test_too_few_samples_returns_zero(self):
        engine = HeartbeatEngine()
        sc = SignalConditioner()
        t, values = _sine(0.9)                # 27 samples
        results = _feed(engine, sc, t, values)
        assert all(r.bpm == 0.0 and r.confidence == 0.0 for r in results)

    def test_synthetic_sine_detected(self):
        """Feed a clean 1.2 Hz sine (72 BPM) and verify convergence."""
        engine = HeartbeatEngine()
        sc = SignalConditioner()
        t, values = _sine(10.0)
        results = _feed(engine, sc, t, values)

        assert abs(results[-1].bpm - 72.0) <= 3.0, f"Expected ~72 BPM, got {results[-1].bpm:.1f}"
        assert results[-1].confidence >= 0.6
        assert engine.state is HeartbeatState.ACTIVE
        assert abs(engine.final_bpm() - 72.0) <= 3.0
        for interval in engine.rr_intervals[-5:]:
            assert interval == pytest.approx(1000.0 / 1.2, abs=40.0)

    def test_no_peaks_flagged_during_warmup(self):
        engine = HeartbeatEngine()
        sc = SignalConditioner()
        t, values = _sine(10.0)
        results = _feed(engine, sc, t, values)
        warmup = [r for ts, r in zip(t, results) if ts < engine.config.warmup_s]
        later = [r for ts, r in zip(t, results) if ts >= engine.config.warmup_s]
        assert not any(r.is_peak for r in warmup)
        assert any(r.is_peak for r in later)

    def test_refractory_on_noise(self):
        """No two confirmed beats are closer than the refractory interval."""
        rng = np.random.default_rng(7)
        engine = HeartbeatEngine()
        sc = SignalConditioner()
        t = np.arange(int(FPS * 30)) / FPS
        values = 100 + rng.normal(0.0, 5.0, len(t))
        results = _feed(engine, sc, t, values)

        times = [r.beat.time for r in results if r.beat is not None]
        assert np.all(np.diff(times) >= engine.config.refractory_s - 1e-9)

    def test_low_signal_resets_detection_but_keeps_history(self):
        engine = HeartbeatEngine()
        sc = SignalConditioner()
        t, values = _sine(12.0)
        _feed(engine, sc, t, values)

        # finger lifted: the camera sees (almost) nothing
        ts = t[-1]
        while engine.state is not HeartbeatState.LOW_SIGNAL:
            ts += 1.0 / FPS
            engine.process(0.0, ts, sc.baseline)
        history = engine.bpm_history
        assert len(history) >= 3
        assert engine.pending_candidate is None
        assert engine.last_peak_time is None

        for _ in range(20):
            ts += 1.0 / FPS
            result = engine.process(0.0, ts, sc.baseline)
        assert engine.state is HeartbeatState.LOW_SIGNAL
        assert result.confidence == 0.0
        assert result.bpm > 0.0
        assert engine.bpm_history == history

    def test_recovers_from_low_signal(self):
        engine = HeartbeatEngine()
        sc = SignalConditioner()
        t, values = _sine(8.0)
        _feed(engine, sc, t, values)
        ts = t[-1]
        for _ in range(engine.config.low_signal_frames + 2):
            ts += 1.0 / FPS
            engine.process(0.0, ts, sc.baseline)
        assert engine.state is HeartbeatState.LOW_SIGNAL

        t2, values2 = _sine(2.0, t0=ts + 1.0 / FPS)
        _feed(engine, sc, t2, values2)
        assert engine.state is HeartbeatState.ACTIVE

    def test_bpm_history_is_bounded(self):
        engine = HeartbeatEngine()
        sc = SignalConditioner()
        t, values = _sine(30.0)
        _feed(engine, sc, t, values)
        assert len(engine.bpm_history) <= engine.config.bpm_history_size
        assert all(40.0 <= b <= 200.0 for b in engine.bpm_history)

    def test_reset(self):
        engine = HeartbeatEngine()
        sc = SignalConditioner()
        t, values = _sine(10.0)
        _feed(engine, sc, t, values)
        engine.reset()
        assert engine.bpm == 0.0
        assert engine.state is HeartbeatState.WARMUP
        assert engine.bpm_history == []
        assert engine.beat_history == []
        assert engine.template_count == 0
        assert engine.final_bpm() == 0.0


class TestTemplateValidation:

    def test_similarity(self):
        dome = _dome()
        assert _similarity(dome, dome) == pytest.approx(1.0)
        assert _similarity(dome, -dome) == pytest.approx(-1.0)
        assert _similarity(dome, np.full(11, 3.0)) == 0.0
        assert _similarity(dome[:2], dome[:2]) == 0.0
        # compared over the shorter of the two
        assert _similarity(dome, dome[:7]) == pytest.approx(1.0)

    def test_templates_seeded_until_minimum(self):
        engine = HeartbeatEngine()
        for expected in (1, 2, 3):
            assert engine._matches_template(_dome()) is True
            assert engine.template_count == expected
        assert engine._matches_template(_dome()) is True
        assert engine.template_count == engine.config.min_templates

    def test_flat_segment_never_matches(self):
        engine = HeartbeatEngine()
        assert engine._matches_template(np.full(11, 100.0)) is False
        assert engine.template_count == 0

    def test_match_blends_into_best_template(self):
        engine = HeartbeatEngine()
        for _ in range(3):
            engine._matches_template(_dome())
        shifted = _dome(shift=1)
        assert _similarity(_unit_scale(shifted), _unit_scale(_dome())) >= 0.70

        assert engine._matches_template(shifted) is True
        expected = 0.8 * _unit_scale(_dome()) + 0.2 * _unit_scale(shifted)
        np.testing.assert_allclose(engine._templates[0], expected)
        np.testing.assert_allclose(engine._templates[1], _unit_scale(_dome()))
        assert engine.template_count == 3

    def test_morphology_mismatch_is_rejected(self):
        engine = HeartbeatEngine()
        for _ in range(3):
            engine._matches_template(_dome())
        assert engine._matches_template(200.0 - _dome()) is False
        np.testing.assert_allclose(engine._templates[0], _unit_scale(_dome()))

    def test_timing_plausibility(self):
        engine = HeartbeatEngine()
        engine._last_peak_time = 10.0
        engine._intervals.append(0.8)
        assert engine._timing_plausible(10.8) is False      # needs two intervals
        for _ in range(4):
            engine._intervals.append(0.8)
        # tolerance is std (0 here) + 80 ms around the mean interval
        assert engine._timing_plausible(10.85) is True
        assert engine._timing_plausible(10.75) is True
        assert engine._timing_plausible(11.0) is False
        assert engine._timing_plausible(10.5) is False
        engine._last_peak_time = None
        assert engine._timing_plausible(10.8) is False

    def test_clean_sine_keeps_minimum_templates(self):
        engine = HeartbeatEngine()
        sc = SignalConditioner()
        t, values = _sine(10.0)
        _feed(engine, sc, t, values)
        assert engine.template_count == engine.config.min_templates

    def test_mismatched_candidate_accepted_on_timing(self):
        """A poor shape inside mean IBI +/- (std + 80 ms) still confirms a beat."""
        engine, segment = _engine_with_pending(delay=0.05)
        assert _similarity(_unit_scale(segment), engine._templates[0]) < 0.70
        beats = len(engine.beat_history)

        beat = engine._validate_pending()
        assert beat is not None
        assert beat.time == pytest.approx(engine.last_peak_time)
        assert len(engine.beat_history) == beats + 1
        # the accepted shape becomes a new template
        assert engine.template_count == engine.config.min_templates + 1

    def test_mismatched_candidate_rejected_on_implausible_timing(self):
        engine, segment = _engine_with_pending(delay=0.3)
        assert _similarity(_unit_scale(segment), engine._templates[0]) < 0.70
        beats = len(engine.beat_history)
        last = engine.last_peak_time

        assert engine._validate_pending() is None
        assert len(engine.beat_history) == beats
        assert engine.last_peak_time == last
        assert engine.template_count == engine.config.min_templates
