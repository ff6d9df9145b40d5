"""
Beat detection and BPM estimation on the conditioned PPG signal.

Algorithm
---------
1. Normalize each conditioned sample against the min/max of the last
   ``window_size`` samples and take the first difference as derivative.
2. A raw peak is a falling edge (``derivative < derivative_threshold``)
   high in the window (``normalized > amplitude_threshold``) and at or
   above the slow baseline (``value >= baseline * baseline_ratio``).
3. The peak becomes a :class:`~ppg_vitals.types.PeakCandidate` once the
   last three samples show two consecutive downward steps and the
   confidence reaches ``min_confidence``.
4. When the waveform segment centred on the candidate is complete, it is
   validated against learned pulse templates (normalized cross-correlation).
   A poor morphology match is still accepted when the beat timing agrees
   with the recent inter-beat intervals.
5. Confirmed beats respect a refractory interval and feed a bounded BPM
   history; the reported BPM is its trimmed mean, smoothed by an EMA.

A run of low-amplitude frames (finger lifted or repositioned) moves the
engine into ``LOW_SIGNAL`` and clears the transient detection state while
keeping the BPM history.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import numpy as np

from .config import HeartbeatConfig
from .types import ConfirmedBeat, PeakCandidate, RollingBuffer

logger = logging.getLogger(__name__)

_EPS = 1e-9


class HeartbeatState(Enum):
    WARMUP     = "warmup"       # detections counted, peaks not shown
    ACTIVE     = "active"
    LOW_SIGNAL = "low_signal"   # detection paused until amplitude returns


@dataclass(frozen=True)
class HeartbeatResult:
    bpm:            float
    confidence:     float
    is_peak:        bool
    filtered_value: float
    beat:           Optional[ConfirmedBeat] = None


class HeartbeatEngine:
    """
    Peak detector with template and timing validation.

    Parameters
    ----------
    config:
        Detection thresholds, window sizes and smoothing factors.
    """

    def __init__(self, config: Optional[HeartbeatConfig] = None) -> None:
        self.config = config or HeartbeatConfig()
        cfg = self.config

        self._values: RollingBuffer[float] = RollingBuffer(cfg.window_size)
        self._times: RollingBuffer[float] = RollingBuffer(cfg.window_size)
        self._bpm_history: RollingBuffer[float] = RollingBuffer(cfg.bpm_history_size)
        self._intervals: RollingBuffer[float] = RollingBuffer(cfg.interval_history_size)
        self._beats: RollingBuffer[ConfirmedBeat] = RollingBuffer(cfg.interval_history_size)
        self._templates: List[np.ndarray] = []

        self._sample_count = 0
        self._start_time: Optional[float] = None
        self._state = HeartbeatState.WARMUP
        self._low_signal_count = 0
        self._last_value: Optional[float] = None

        self._pending: Optional[PeakCandidate] = None
        self._last_candidate_index = -1
        self._last_peak_time: Optional[float] = None
        self._confidence = 0.0
        self._smooth_bpm = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(self, value: float, timestamp: float, baseline: float) -> HeartbeatResult:
        """
        Consume one conditioned sample.

        Parameters
        ----------
        value:
            Output of :class:`~ppg_vitals.signal_conditioner.SignalConditioner`.
        timestamp:
            Monotonic capture time in seconds.
        baseline:
            The conditioner's slow baseline for the same sample.
        """
        cfg = self.config
        if self._start_time is None:
            self._start_time = timestamp

        self._values.append(value)
        self._times.append(timestamp)
        self._sample_count += 1

        previous = self._last_value if self._last_value is not None else value
        self._last_value = value

        window = self._values.to_array()
        span = float(window.max() - window.min())
        if span > _EPS:
            normalized = (value - float(window.min())) / span
            derivative = (value - previous) / span
        else:
            normalized = 0.0
            derivative = 0.0

        self._update_state(normalized, timestamp)
        filtered_value = value - baseline

        if len(self._values) < cfg.min_samples:
            return HeartbeatResult(0.0, 0.0, False, filtered_value)

        if self._state is HeartbeatState.LOW_SIGNAL:
            return HeartbeatResult(self.bpm, 0.0, False, filtered_value)

        beat = None
        if self._pending is not None:
            beat = self._validate_pending()

        if self._pending is None and beat is None:
            self._look_for_candidate(value, normalized, derivative, baseline)

        is_peak = beat is not None and self._state is not HeartbeatState.WARMUP
        return HeartbeatResult(self.bpm, self.confidence, is_peak, filtered_value, beat)

    def reset_detection_states(self) -> None:
        """Drop transient candidate state; BPM history and templates survive."""
        self._pending = None
        self._last_peak_time = None
        self._confidence = 0.0
        self._low_signal_count = 0

    def reset(self) -> None:
        self._values.clear()
        self._times.clear()
        self._bpm_history.clear()
        self._intervals.clear()
        self._beats.clear()
        self._templates = []
        self._sample_count = 0
        self._start_time = None
        self._state = HeartbeatState.WARMUP
        self._last_value = None
        self._last_candidate_index = -1
        self._smooth_bpm = 0.0
        self.reset_detection_states()

    def final_bpm(self) -> float:
        """BPM to report when the measurement ends."""
        if len(self._bpm_history) >= 3:
            return float(round(self._smooth_bpm))
        if self._bpm_history:
            return float(round(float(np.mean(self._bpm_history.to_array()))))
        return 0.0

    @property
    def bpm(self) -> float:
        if len(self._values) < self.config.min_samples:
            return 0.0
        return self._smooth_bpm

    @property
    def confidence(self) -> float:
        if len(self._values) < self.config.min_samples:
            return 0.0
        return self._confidence

    @property
    def state(self) -> HeartbeatState:
        return self._state

    @property
    def pending_candidate(self) -> Optional[PeakCandidate]:
        return self._pending

    @property
    def last_peak_time(self) -> Optional[float]:
        return self._last_peak_time

    @property
    def bpm_history(self) -> List[float]:
        return list(self._bpm_history)

    @property
    def beat_history(self) -> List[ConfirmedBeat]:
        return list(self._beats)

    @property
    def rr_intervals(self) -> List[float]:
        """Recent inter-beat intervals in milliseconds."""
        return [interval * 1000.0 for interval in self._intervals]

    @property
    def template_count(self) -> int:
        return len(self._templates)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _update_state(self, normalized: float, timestamp: float) -> None:
        cfg = self.config
        in_warmup = timestamp - self._start_time < cfg.warmup_s

        if normalized < cfg.low_signal_threshold:
            self._low_signal_count += 1
        else:
            self._low_signal_count = 0

        if self._low_signal_count >= cfg.low_signal_frames:
            if self._state is not HeartbeatState.LOW_SIGNAL:
                logger.info(
                    "Low signal for %d frames – resetting detection state (bpm history kept: %d)",
                    cfg.low_signal_frames, len(self._bpm_history),
                )
                self.reset_detection_states()
                # keep counting so the state holds until amplitude returns
                self._low_signal_count = cfg.low_signal_frames
                self._state = HeartbeatState.LOW_SIGNAL
        elif self._state is HeartbeatState.LOW_SIGNAL:
            if self._low_signal_count == 0:
                logger.debug("Signal recovered at t=%.3f", timestamp)
                self._state = HeartbeatState.WARMUP if in_warmup else HeartbeatState.ACTIVE
        elif self._state is HeartbeatState.WARMUP and not in_warmup:
            self._state = HeartbeatState.ACTIVE

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def _look_for_candidate(
        self, value: float, normalized: float, derivative: float, baseline: float
    ) -> None:
        cfg = self.config
        if not (
            derivative < cfg.derivative_threshold
            and normalized > cfg.amplitude_threshold
            and value >= baseline * cfg.baseline_ratio
        ):
            return

        confidence = self._peak_confidence(normalized, derivative)
        recent = self._values.last(3)
        passed = recent[0] > recent[1] > recent[2]
        if not passed or confidence < cfg.min_confidence:
            return

        # The crest is the local maximum just behind the falling edge.
        lookback = self._values.last(cfg.segment_half_width + 1)
        offset = len(lookback) - 1 - int(np.argmax(lookback))
        index = self._sample_count - 1 - offset
        if index <= self._last_candidate_index:
            return

        self._last_candidate_index = index
        self._pending = PeakCandidate(
            index=index,
            value=lookback[-1 - offset],
            derivative=derivative,
            timestamp=self._times[self._position(index)],
            confidence=confidence,
        )

    def _peak_confidence(self, normalized: float, derivative: float) -> float:
        cfg = self.config
        amplitude_term = min(1.0, max(0.0, normalized / (2.0 * cfg.amplitude_threshold)))
        derivative_term = min(1.0, max(0.0, -derivative / (3.0 * abs(cfg.derivative_threshold))))
        return (amplitude_term + derivative_term) / 2.0

    def _validate_pending(self) -> Optional[ConfirmedBeat]:
        cfg = self.config
        candidate = self._pending
        position = self._position(candidate.index)
        if position < 0:
            # scrolled out of the window before it could be checked
            self._pending = None
            return None
        if len(self._values) - 1 - position < cfg.segment_half_width:
            return None

        self._pending = None
        if self._beats and candidate.timestamp - self._beats[-1].time < cfg.refractory_s:
            return None

        window = self._values.to_array()
        start = max(0, position - cfg.segment_half_width)
        segment = window[start:position + cfg.segment_half_width + 1]

        if self._matches_template(segment):
            accepted = True
        elif self._timing_plausible(candidate.timestamp):
            accepted = True
            self._seed_template(segment)
            logger.debug("Beat at t=%.3f accepted on timing despite morphology", candidate.timestamp)
        else:
            accepted = False

        if not accepted:
            return None

        trough = float(window[max(0, position - cfg.window_size // 2):position + 1].min())
        return self._confirm(candidate, candidate.value - trough)

    def _confirm(self, candidate: PeakCandidate, amplitude: float) -> ConfirmedBeat:
        cfg = self.config
        beat_time = candidate.timestamp
        counted = 0.0
        if self._last_peak_time is not None:
            interval = beat_time - self._last_peak_time
            if interval > 0:
                instant_bpm = 60000.0 / (interval * 1000.0)
                if cfg.min_bpm <= instant_bpm <= cfg.max_bpm:
                    self._bpm_history.append(instant_bpm)
                    self._intervals.append(interval)
                    self._update_bpm()
                    counted = interval

        self._last_peak_time = beat_time
        self._confidence = candidate.confidence
        beat = ConfirmedBeat(
            time=beat_time, confidence=candidate.confidence, amplitude=amplitude, interval=counted,
        )
        self._beats.append(beat)
        return beat

    def _update_bpm(self) -> None:
        history = np.sort(self._bpm_history.to_array())
        if len(history) >= 3:
            history = history[1:-1]
        current = float(np.mean(history))
        if self._smooth_bpm <= 0:
            self._smooth_bpm = current
        else:
            alpha = self.config.bpm_alpha
            self._smooth_bpm = alpha * current + (1.0 - alpha) * self._smooth_bpm

    # ------------------------------------------------------------------
    # Template / timing validation
    # ------------------------------------------------------------------

    def _matches_template(self, segment: np.ndarray) -> bool:
        cfg = self.config
        shape = _unit_scale(segment)
        if shape is None:
            return False
        if len(self._templates) < cfg.min_templates:
            self._seed_template(segment)
            return True

        scores = [_similarity(shape, template) for template in self._templates]
        best = int(np.argmax(scores))
        if scores[best] < cfg.similarity_threshold:
            return False

        w = cfg.template_weight
        if len(self._templates[best]) == len(shape):
            self._templates[best] = w * self._templates[best] + (1.0 - w) * shape
        return True

    def _seed_template(self, segment: np.ndarray) -> None:
        shape = _unit_scale(segment)
        if shape is not None and len(self._templates) < self.config.max_templates:
            self._templates.append(shape)

    def _timing_plausible(self, beat_time: float) -> bool:
        if self._last_peak_time is None or len(self._intervals) < 2:
            return False
        intervals = self._intervals.to_array()
        interval = beat_time - self._last_peak_time
        tolerance = float(np.std(intervals)) + self.config.timing_jitter_s
        return abs(interval - float(np.mean(intervals))) <= tolerance

    def _position(self, index: int) -> int:
        """Map an absolute sample index to a position in the value window."""
        return len(self._values) - (self._sample_count - index)


def _unit_scale(segment: np.ndarray) -> Optional[np.ndarray]:
    lo = float(segment.min())
    hi = float(segment.max())
    if hi - lo <= _EPS:
        return None
    return (segment - lo) / (hi - lo)


def _similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Normalized cross-correlation at zero lag over the common length."""
    n = min(len(a), len(b))
    a = a[:n]
    b = b[:n]
    if n < 3 or np.std(a) <= _EPS or np.std(b) <= _EPS:
        return 0.0
    return float(np.corrcoef(a, b)[0, 1])
