"""
Blood-pressure-like estimate from pulse morphology.

Uses the relations commonly reported for cuffless PPG estimates: larger
pulses lower the systolic value, wider pulses lower the diastolic value
and a stiffer arterial profile (shallow dicrotic notch, fast decay) raises
both.  Values are indicative only and feed the pressure risk label.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np
from scipy.signal import find_peaks

from .config import BloodPressureConfig
from .types import BloodPressure, Fallback

logger = logging.getLogger(__name__)

_DEFAULT_STIFFNESS = 5.0


class BloodPressureEstimator:
    """
    Systolic/diastolic estimate from the conditioned PPG window.

    Parameters
    ----------
    config:
        Peak spacing, accepted pulse widths, smoothing weight and the
        plausible systolic, diastolic and pulse-pressure ranges.
    """

    def __init__(self, config: Optional[BloodPressureConfig] = None) -> None:
        self.config = config or BloodPressureConfig()
        self._last: Optional[BloodPressure] = None
        self.last_fallback: Optional[Fallback] = None

    @property
    def last_valid(self) -> Optional[BloodPressure]:
        return self._last

    def reset(self) -> None:
        self._last = None
        self.last_fallback = None

    def estimate(self, buffer: Sequence[float]) -> Optional[BloodPressure]:
        """Return the latest plausible pressure pair, or None before the first one."""
        cfg = self.config
        values = np.asarray(buffer, dtype=np.float64)
        if len(values) < cfg.min_samples:
            self.last_fallback = Fallback.INSUFFICIENT_DATA
            return self._last

        peaks, _ = find_peaks(values, distance=cfg.peak_distance)
        valleys, _ = find_peaks(-values, distance=cfg.peak_distance)
        if len(peaks) < 2 or len(valleys) < 2:
            self.last_fallback = Fallback.SIGNAL_QUALITY_TOO_LOW
            return self._last

        dc = float(values.mean())
        amplitudes: List[float] = []
        widths: List[float] = []
        for peak, following in zip(peaks[:-1], peaks[1:]):
            preceding = valleys[valleys < peak]
            if len(preceding) == 0:
                continue
            amplitudes.append(values[peak] - values[preceding[-1]])
            widths.append(float(following - peak))
        if not amplitudes or dc <= 0:
            self.last_fallback = Fallback.SIGNAL_QUALITY_TOO_LOW
            return self._last

        # pulse height as a percentage of the DC level
        relative = np.asarray(amplitudes) / dc * 100.0
        amplitude = float(np.clip(relative.mean(), 0.1, 2.0))
        amplitude_std = float(relative.std())
        width = float(np.clip(np.mean(widths), 10.0, 40.0))
        stiffness = self._stiffness(values, peaks)

        systolic = 140.0 - amplitude * 15.0 + (stiffness - 5.0) * 3.0 + amplitude_std * 5.0
        diastolic = 90.0 - width * 0.5 + (stiffness - 5.0) * 2.0

        pulse_pressure = systolic - diastolic
        if pulse_pressure < cfg.min_pulse_pressure:
            diastolic = systolic - cfg.min_pulse_pressure
        elif pulse_pressure > cfg.max_pulse_pressure:
            diastolic = systolic - cfg.max_pulse_pressure

        if self._last is not None:
            w = cfg.smoothing
            systolic = w * systolic + (1.0 - w) * self._last.systolic
            diastolic = w * diastolic + (1.0 - w) * self._last.diastolic

        systolic = int(round(systolic))
        diastolic = int(round(diastolic))
        lo_s, hi_s = cfg.systolic_range
        lo_d, hi_d = cfg.diastolic_range
        if not (lo_s <= systolic <= hi_s and lo_d <= diastolic <= hi_d and systolic > diastolic):
            self.last_fallback = Fallback.PHYSIOLOGICALLY_IMPLAUSIBLE
            logger.debug("Discarding implausible pressure %d/%d", systolic, diastolic)
            return self._last

        self._last = BloodPressure(systolic=systolic, diastolic=diastolic)
        self.last_fallback = None
        return self._last

    def _stiffness(self, values: np.ndarray, peaks: np.ndarray) -> float:
        """Arterial stiffness score, 0 (elastic) – 10 (stiff)."""
        cfg = self.config
        notch_scores = []
        decay_scores = []
        for start, end in zip(peaks[:5], peaks[1:6]):
            if not cfg.min_pulse_width < end - start < cfg.max_pulse_width:
                continue
            pulse = values[start:end]
            span = pulse.max() - pulse.min()
            if span <= 0:
                continue
            pulse = (pulse - pulse.min()) / span

            # A dicrotic notch is a local valley in the middle third.
            notch_depth = None
            first, second = len(pulse) // 3, 2 * len(pulse) // 3
            for i in range(first + 1, second - 1):
                if pulse[i] < pulse[i - 1] and pulse[i] < pulse[i + 1]:
                    notch_depth = 1.0 - pulse[i]
                    break
            notch_scores.append(10.0 - notch_depth * 10.0 if notch_depth is not None else 10.0)

            decay = pulse[:max(2, int(len(pulse) * 0.7))]
            max_slope = float(np.max(decay[:-1] - decay[1:]))
            decay_scores.append(min(10.0, max(0.0, max_slope * 50.0)))

        if not notch_scores:
            return _DEFAULT_STIFFNESS
        return float(np.mean(notch_scores)) * 0.6 + float(np.mean(decay_scores)) * 0.4
