"""
Respiration from respiratory-induced amplitude variation of the pulse.

Breathing modulates the height of successive PPG pulses.  The engine is
fed one pulse amplitude per confirmed beat, tracks a slow baseline of
those amplitudes and counts a breath on each rising excursion of the
short-term average above it.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

import numpy as np

from .config import RespirationConfig
from .types import RespirationReading, RollingBuffer

logger = logging.getLogger(__name__)


class RespirationEngine:
    """
    Breath rate, depth and regularity from per-beat pulse amplitudes.

    Parameters
    ----------
    config:
        Buffer sizes, detection threshold and accepted rate band.
    """

    def __init__(self, config: Optional[RespirationConfig] = None) -> None:
        self.config = config or RespirationConfig()
        cfg = self.config
        self._amplitudes: RollingBuffer[float] = RollingBuffer(cfg.amplitude_buffer)
        self._intervals: RollingBuffer[float] = RollingBuffer(cfg.rate_history_size)
        self._rates: RollingBuffer[float] = RollingBuffer(cfg.rate_history_size)
        self._baseline = 0.0
        self._count = 0
        self._armed = True
        self._last_breath: Optional[float] = None
        self._reading = RespirationReading()

    def process_signal(self, amplitude: float, timestamp: float) -> RespirationReading:
        """Consume one pulse amplitude observed at *timestamp* (seconds)."""
        cfg = self.config
        if not math.isfinite(amplitude) or amplitude <= 0:
            return self._reading

        self._amplitudes.append(float(amplitude))
        self._count += 1
        if self._count <= cfg.fast_adaptation_samples:
            self._baseline += (amplitude - self._baseline) / self._count
        else:
            self._baseline = (1.0 - cfg.baseline_alpha) * self._baseline + cfg.baseline_alpha * amplitude

        if self._count < cfg.short_term_window or self._baseline <= 0:
            return self._reading

        short_term = float(np.mean(self._amplitudes.last(cfg.short_term_window)))
        deviation = (short_term - self._baseline) / self._baseline
        strength = 1.0 / (1.0 + math.exp(-cfg.sigmoid_gain * (deviation - cfg.deviation_threshold)))

        if strength < 0.5:
            self._armed = True
        elif self._armed:
            self._armed = False
            self._register_breath(timestamp)

        self._reading = RespirationReading(
            rate=self._rate(),
            depth=self._depth(),
            regularity=self._regularity(),
        )
        return self._reading

    def has_valid_data(self) -> bool:
        return len(self._intervals) >= 2

    @property
    def reading(self) -> RespirationReading:
        return self._reading

    def reset(self) -> None:
        self._amplitudes.clear()
        self._intervals.clear()
        self._rates.clear()
        self._baseline = 0.0
        self._count = 0
        self._armed = True
        self._last_breath = None
        self._reading = RespirationReading()

    # ------------------------------------------------------------------

    def _register_breath(self, timestamp: float) -> None:
        cfg = self.config
        if self._last_breath is not None:
            interval = timestamp - self._last_breath
            if interval < cfg.min_breath_interval_s:
                return
            rate = 60.0 / interval
            if cfg.min_rate <= rate <= cfg.max_rate:
                self._intervals.append(interval)
                self._rates.append(rate)
            else:
                logger.debug("Breath interval %.2fs outside rate band", interval)
        self._last_breath = timestamp

    def _rate(self) -> float:
        rates = list(self._rates)
        if not rates:
            return 0.0
        if len(rates) >= 3:
            rates = rates[1:-1]
        return float(np.mean(rates))

    def _depth(self) -> float:
        recent = self._amplitudes.last(self.config.depth_window)
        if len(recent) < 2:
            return 0.0
        spread = max(recent) - min(recent)
        return float(min(100.0, max(0.0, spread / self._baseline * 100.0)))

    def _regularity(self) -> float:
        if len(self._intervals) < 2:
            return 0.0
        intervals = self._intervals.to_array()
        variation = float(intervals.std() / intervals.mean()) * 100.0
        return float(min(100.0, max(0.0, 100.0 - variation)))
