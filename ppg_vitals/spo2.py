"""
Blood-oxygen estimate from the single-channel PPG window.

Algorithm
---------
1. Signal-quality gate on the normalized variance ``var / mean**2``.
2. AC and DC components: peak/valley averaging (``scipy.signal.find_peaks``)
   when the window holds at least two of each, otherwise a linear detrend
   followed by a trimmed peak-to-peak estimate.
3. Perfusion index ``PI = AC / DC``, rejected outside a plausible band.
4. ``R = PI * 1.8 / 1.05`` and ``SpO2 = 110 - 25 * R``, clamped to 90 – 100.
5. Optional calibration offset (see :meth:`SpO2Engine.calibrate`).
6. Stabilization: trimmed median of the last five values, Z-score anomaly
   suppression, then an EWMA against the displayed value.

Notes
-----
Camera PPG has no infrared channel, so the ratio-of-ratios is replaced by
a perfusion-index proxy.  Results are indicative only.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy.signal import detrend, find_peaks
from scipy.stats import trimboth

from .config import SpO2Config
from .types import CalibrationState, Fallback, RollingBuffer

logger = logging.getLogger(__name__)


class SpO2Engine:
    """
    Stateful SpO2 calculator.

    Parameters
    ----------
    config:
        Quality gates, empirical ratio constants and stabilizer settings.
    """

    def __init__(self, config: Optional[SpO2Config] = None) -> None:
        self.config = config or SpO2Config()
        cfg = self.config

        self.calibration = CalibrationState(samples=RollingBuffer(cfg.calibration_buffer))
        self._recent: RollingBuffer[float] = RollingBuffer(cfg.median_window)
        self._history: RollingBuffer[float] = RollingBuffer(cfg.anomaly_history)
        self._display = 0.0
        self._last_raw = 0.0
        self.last_fallback: Optional[Fallback] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def calculate_raw(self, buffer: Sequence[float]) -> float:
        """
        Return the uncalibrated SpO2 for *buffer* (conditioned samples).

        When the window is too short or fails a quality gate the previous
        raw value is returned (0.0 if there has never been one).
        """
        cfg = self.config
        values = np.asarray(buffer, dtype=np.float64)
        if len(values) < cfg.min_samples or not np.all(np.isfinite(values)):
            return self._hold(Fallback.INSUFFICIENT_DATA)

        mean = float(values.mean())
        if mean <= 0:
            return self._hold(Fallback.SIGNAL_QUALITY_TOO_LOW)
        normalized_variance = float(values.var()) / (mean * mean)
        if not cfg.min_normalized_variance <= normalized_variance <= cfg.max_normalized_variance:
            return self._hold(Fallback.SIGNAL_QUALITY_TOO_LOW)

        try:
            ac, dc = self._ac_dc(values)
        except ValueError as e:
            logger.warning("AC/DC extraction failed: %s", e)
            return self._hold(Fallback.SIGNAL_QUALITY_TOO_LOW)

        if dc <= 0 or ac < cfg.min_ac:
            return self._hold(Fallback.SIGNAL_QUALITY_TOO_LOW)

        perfusion_index = ac / dc
        if not cfg.min_perfusion <= perfusion_index <= cfg.max_perfusion:
            return self._hold(Fallback.SIGNAL_QUALITY_TOO_LOW)

        ratio = perfusion_index * cfg.perfusion_gain / cfg.calibration_factor
        raw = cfg.ratio_a - cfg.ratio_b * ratio
        self._last_raw = float(round(self._clamp(raw)))
        self.last_fallback = None
        return self._last_raw

    def add_calibration_value(self, value: float) -> None:
        """Collect one raw reading during the calibration phase."""
        if value > 0:
            self.calibration.samples.append(float(value))

    def calibrate(self) -> bool:
        """
        Derive the additive offset from the collected calibration values.

        The offset maps the interquartile-trimmed mean of the buffer onto
        ``calibration_target``.  Returns False (and changes nothing) when
        fewer than ``min_calibration_samples`` values were collected.
        Recomputed from the buffer on every call, so repeating it is safe.
        """
        cfg = self.config
        samples = sorted(self.calibration.samples)
        if len(samples) < cfg.min_calibration_samples:
            logger.debug("Calibration skipped: %d/%d samples",
                         len(samples), cfg.min_calibration_samples)
            return False

        start = int(math.floor(len(samples) * 0.25))
        end = int(math.floor(len(samples) * 0.75))
        middle = samples[start:end + 1]
        average = float(np.mean(middle))
        if average <= 0:
            return False

        self.calibration.offset = cfg.calibration_target - average
        self.calibration.is_calibrated = True
        logger.info("SpO2 calibrated: trimmed mean %.2f, offset %+.2f",
                    average, self.calibration.offset)
        return True

    def calculate(self, buffer: Sequence[float]) -> float:
        """Return the stabilized, calibrated SpO2 for display."""
        cfg = self.config
        if len(buffer) < cfg.min_samples:
            self.last_fallback = Fallback.INSUFFICIENT_DATA
            return self._display

        raw = self.calculate_raw(buffer)
        if raw <= 0 or self.last_fallback is not None:
            return self._display

        value = raw
        if self.calibration.is_calibrated:
            value = raw + self.calibration.offset
        value = self._clamp(value)
        return self._stabilize(value)

    def reset(self) -> None:
        self.calibration.clear()
        self._recent.clear()
        self._history.clear()
        self._display = 0.0
        self._last_raw = 0.0
        self.last_fallback = None

    @property
    def last_value(self) -> float:
        return self._display

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _hold(self, reason: Fallback) -> float:
        self.last_fallback = reason
        logger.debug("SpO2 held at %.1f (%s)", self._last_raw, reason.value)
        return self._last_raw

    def _clamp(self, value: float) -> float:
        return max(self.config.min_spo2, min(self.config.max_spo2, value))

    def _ac_dc(self, values: np.ndarray) -> Tuple[float, float]:
        cfg = self.config
        dc = float(values.mean())
        peaks, _ = find_peaks(values, distance=cfg.peak_distance)
        valleys, _ = find_peaks(-values, distance=cfg.peak_distance)
        if len(peaks) >= 2 and len(valleys) >= 2:
            ac = float(values[peaks].mean() - values[valleys].mean())
            return ac, dc

        # Detrended fallback: peak-to-peak of the trimmed residual.
        residual = np.sort(trimboth(detrend(values), cfg.trim_fraction))
        ac = float(residual[-1] - residual[0]) if len(residual) else 0.0
        return ac, dc

    def _stabilize(self, value: float) -> float:
        cfg = self.config
        self._recent.append(value)
        recent = np.sort(self._recent.to_array())
        if len(recent) >= cfg.median_window:
            candidate = float(recent[1:-1].mean())
        else:
            candidate = float(np.median(recent))

        anomalous = self._is_anomalous(candidate)
        # suppressed values still enter the history
        self._history.append(candidate)
        if anomalous:
            self.last_fallback = Fallback.ANOMALOUS_SAMPLE
            logger.debug("SpO2 %.1f suppressed as anomalous", candidate)
            return self._display

        if self._display <= 0:
            display = candidate
        else:
            display = self._display + cfg.display_alpha * (candidate - self._display)
        self._display = self._clamp(display)
        return self._display

    def _is_anomalous(self, value: float) -> bool:
        cfg = self.config
        if len(self._history) < cfg.anomaly_min_history:
            return False
        window = np.asarray(self._history.last(cfg.anomaly_window))
        std = float(window.std())
        if std < 1e-3:
            return False
        return abs(value - float(window.mean())) / std > cfg.anomaly_z
