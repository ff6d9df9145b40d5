"""
Premature-beat counter on RR intervals.

After a short learning phase a trimmed-mean RR baseline is fixed; a short
interval followed by a compensatory long one counts as a premature beat.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

import numpy as np

from .config import ArrhythmiaConfig
from .types import ARRHYTHMIA_DETECTED, EVALUATING, NO_ARRHYTHMIA, RollingBuffer

logger = logging.getLogger(__name__)


class ArrhythmiaDetector:
    """
    Counts premature beats in the stream of RR intervals.

    Parameters
    ----------
    config:
        Learning period, accepted RR range and the premature/compensatory
        ratios relative to the learned baseline.
    """

    def __init__(self, config: Optional[ArrhythmiaConfig] = None) -> None:
        self.config = config or ArrhythmiaConfig()
        self._intervals: RollingBuffer[float] = RollingBuffer(self.config.window)
        self._start_time: Optional[float] = None
        self._baseline_rr = 0.0
        self._last_detection: Optional[float] = None
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    @property
    def learning(self) -> bool:
        return self._baseline_rr <= 0

    @property
    def label(self) -> str:
        """``"evaluating"`` while learning, then whether any premature beat was seen."""
        if self.learning:
            return EVALUATING
        return ARRHYTHMIA_DETECTED if self._count > 0 else NO_ARRHYTHMIA

    @property
    def baseline_rr(self) -> float:
        return self._baseline_rr

    @property
    def rmssd(self) -> float:
        """Root mean square of successive RR differences, in ms."""
        if len(self._intervals) < 2:
            return 0.0
        diffs = np.diff(self._intervals.to_array())
        return float(np.sqrt(np.mean(diffs ** 2)))

    def update(self, interval_ms: float, timestamp: float) -> bool:
        """Add one RR interval; return True when it completes a premature beat."""
        cfg = self.config
        if self._start_time is None:
            self._start_time = timestamp
        if not cfg.min_interval_ms <= interval_ms <= cfg.max_interval_ms:
            return False
        self._intervals.append(float(interval_ms))

        if self.learning:
            if (timestamp - self._start_time >= cfg.learning_period_s
                    and len(self._intervals) >= cfg.min_learning_intervals):
                self._learn_baseline()
            return False

        if len(self._intervals) < 3:
            return False
        previous = self._intervals[-2] / self._baseline_rr
        latest = self._intervals[-1] / self._baseline_rr
        if not (previous < cfg.premature_threshold and latest > cfg.compensatory_threshold):
            return False

        confidence = min(1.0, ((cfg.premature_threshold - previous)
                               + (latest - cfg.compensatory_threshold)) / 0.6)
        if confidence < cfg.min_confidence:
            return False
        if self._last_detection is not None and timestamp - self._last_detection <= cfg.min_detection_gap_s:
            return False

        self._count += 1
        self._last_detection = timestamp
        logger.info("Premature beat detected (count=%d, confidence=%.2f)", self._count, confidence)
        return True

    def reset(self) -> None:
        self._intervals.clear()
        self._start_time = None
        self._baseline_rr = 0.0
        self._last_detection = None
        self._count = 0

    def _learn_baseline(self) -> None:
        ordered = np.sort(self._intervals.to_array())
        start = int(math.floor(len(ordered) * 0.2))
        end = int(math.ceil(len(ordered) * 0.8))
        middle = ordered[start:end]
        if len(middle):
            self._baseline_rr = float(middle.mean())
            logger.debug("RR baseline learned: %.1f ms", self._baseline_rr)
