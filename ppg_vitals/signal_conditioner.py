"""
Per-sample PPG conditioning.

Stages, each feeding the next:

1. Median of the last 3 raw values (removes single-frame spikes).
2. Simple moving average of the last 3 medians (camera noise).
3. Exponential moving average, alpha = 0.4 (final smoothed sample).

A slow baseline is tracked alongside: it starts as the cumulative average
of the smoothed samples and becomes an EMA with factor ``baseline_factor``
once that average has settled.
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Optional

import numpy as np

from .config import ConditionerConfig


class SignalConditioner:
    """
    Stateful filter chain: ``condition(raw) -> smoothed``.

    Parameters
    ----------
    config:
        Window sizes and smoothing factors.  Defaults to
        :class:`~ppg_vitals.config.ConditionerConfig`.
    """

    def __init__(self, config: Optional[ConditionerConfig] = None) -> None:
        self.config = config or ConditionerConfig()
        self._median_buf: Deque[float] = deque(maxlen=self.config.median_window)
        self._average_buf: Deque[float] = deque(maxlen=self.config.average_window)
        self._smoothed: Optional[float] = None
        self._baseline: Optional[float] = None
        self._count = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def condition(self, raw: float) -> float:
        """Push one raw sample and return the smoothed value."""
        self._median_buf.append(float(raw))
        ordered = sorted(self._median_buf)
        median = ordered[len(ordered) // 2]

        self._average_buf.append(median)
        average = float(np.mean(self._average_buf))

        alpha = self.config.ema_alpha
        if self._smoothed is None:
            self._smoothed = average
        else:
            self._smoothed = alpha * average + (1.0 - alpha) * self._smoothed

        self._update_baseline(self._smoothed)
        return self._smoothed

    @property
    def smoothed_value(self) -> float:
        return self._smoothed if self._smoothed is not None else 0.0

    @property
    def baseline(self) -> float:
        return self._baseline if self._baseline is not None else 0.0

    def reset(self) -> None:
        self._median_buf.clear()
        self._average_buf.clear()
        self._smoothed = None
        self._baseline = None
        self._count = 0

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _update_baseline(self, smoothed: float) -> None:
        self._count += 1
        if self._baseline is None:
            self._baseline = smoothed
            return
        # Cumulative mean until its weight reaches the tracking factor.
        factor = min((self._count - 1) / self._count, self.config.baseline_factor)
        self._baseline = self._baseline * factor + smoothed * (1.0 - factor)
