"""
Categorical risk labels for heart rate, SpO2 and blood pressure.

Live labels need a quorum: at least three smoothed samples inside the
short stability window, two thirds of them inside one band.  The final
reading re-classifies the session average and falls back to the most
frequent live label when no average is available.
"""

from __future__ import annotations

import logging
import math
from collections import Counter, deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Sequence, Tuple

import numpy as np

from .config import RiskConfig
from .types import (
    EVALUATING_SEGMENT,
    BPCheck,
    RiskSegment,
    StabilityCheck,
)

logger = logging.getLogger(__name__)

RED = "#ea384c"
ORANGE = "#F97316"
WHITE = "#FFFFFF"
BLUE = "#0EA5E9"


@dataclass(frozen=True)
class RiskBand:
    segment: RiskSegment
    low:     float
    high:    float

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high


@dataclass(frozen=True)
class PressureBand:
    segment:   RiskSegment
    systolic:  Tuple[float, float]
    diastolic: Tuple[float, float]

    def contains(self, systolic: float, diastolic: float) -> bool:
        return (self.systolic[0] <= systolic <= self.systolic[1]
                and self.diastolic[0] <= diastolic <= self.diastolic[1])


# Closed intervals checked in order; a shared edge belongs to the earlier band.
HEART_RATE_BANDS: Tuple[RiskBand, ...] = (
    RiskBand(RiskSegment(RED, "tachycardia"), 140, 300),
    RiskBand(RiskSegment(ORANGE, "mild tachycardia"), 110, 140),
    RiskBand(RiskSegment(WHITE, "normal"), 50, 110),
    RiskBand(RiskSegment(ORANGE, "bradycardia"), 40, 50),
)

SPO2_BANDS: Tuple[RiskBand, ...] = (
    RiskBand(RiskSegment(RED, "respiratory insufficiency"), 0, 90),
    RiskBand(RiskSegment(BLUE, "normal"), 93, 100),
    RiskBand(RiskSegment(ORANGE, "mild respiratory insufficiency"), 90, 93),
)

PRESSURE_BANDS: Tuple[PressureBand, ...] = (
    PressureBand(RiskSegment(RED, "high pressure"), (150, 300), (100, 200)),
    PressureBand(RiskSegment(ORANGE, "mild high pressure"), (140, 149), (90, 99)),
    PressureBand(RiskSegment(BLUE, "normal pressure"), (114, 126), (76, 84)),
    PressureBand(RiskSegment(ORANGE, "mild low pressure"), (100, 110), (60, 70)),
)

# The session average is classified with open-ended high-pressure bands.
FINAL_PRESSURE_BANDS: Tuple[PressureBand, ...] = (
    PressureBand(RiskSegment(RED, "high pressure"), (150, math.inf), (100, math.inf)),
    PressureBand(RiskSegment(ORANGE, "mild high pressure"), (140, math.inf), (90, math.inf)),
) + PRESSURE_BANDS[2:]


class VitalTrack:
    """Median + EWMA smoothing and a time-windowed history for one vital."""

    def __init__(self, alpha: float, config: RiskConfig) -> None:
        self.alpha = alpha
        self.config = config
        self._recent: Deque[float] = deque(maxlen=config.median_window)
        self._smoothed: Optional[float] = None
        self.history: Deque[StabilityCheck] = deque()
        self.segments: List[RiskSegment] = []
        self._session_sum = 0.0
        self._session_count = 0

    def update(self, value: float, timestamp: float) -> float:
        self._recent.append(value)
        filtered = float(np.median(self._recent))
        if self._smoothed is None:
            self._smoothed = filtered
        else:
            self._smoothed += self.alpha * (filtered - self._smoothed)
        self._session_sum += self._smoothed
        self._session_count += 1
        self.record(StabilityCheck(self._smoothed, timestamp))
        return self._smoothed

    def record(self, check: StabilityCheck) -> None:
        _prune(self.history, check.timestamp, self.config.measurement_window_s)
        self.history.append(check)

    def session_average(self) -> Optional[float]:
        if self._session_count == 0:
            return None
        return self._session_sum / self._session_count

    def reset(self) -> None:
        self._recent.clear()
        self._smoothed = None
        self.history.clear()
        self.segments = []
        self._session_sum = 0.0
        self._session_count = 0


class RiskClassifier:
    """
    Session-owned classifier; one instance per monitoring session.

    Parameters
    ----------
    config:
        Stability/measurement windows, quorum and per-vital smoothing.
    """

    def __init__(self, config: Optional[RiskConfig] = None) -> None:
        self.config = config or RiskConfig()
        cfg = self.config
        self.heart_rate = VitalTrack(cfg.heart_rate_alpha, cfg)
        self.spo2 = VitalTrack(cfg.spo2_alpha, cfg)
        self.systolic = VitalTrack(cfg.pressure_alpha, cfg)
        self.diastolic = VitalTrack(cfg.pressure_alpha, cfg)
        self.pressure_history: Deque[BPCheck] = deque()
        self.pressure_segments: List[RiskSegment] = []

    # ------------------------------------------------------------------
    # Stability
    # ------------------------------------------------------------------

    def is_stable(
        self, history: Sequence[StabilityCheck], value_range: Tuple[float, float], now: float
    ) -> bool:
        """True if >= 3 recent checks exist and a quorum lies inside *value_range*."""
        recent = self._recent(history, now)
        if len(recent) < self.config.min_stable_samples:
            return False
        inside = sum(1 for c in recent if value_range[0] <= c.value <= value_range[1])
        return inside >= math.ceil(len(recent) * self.config.quorum)

    def is_stable_pressure(self, band: PressureBand, now: float) -> bool:
        recent = self._recent(self.pressure_history, now)
        if len(recent) < self.config.min_stable_samples:
            return False
        inside = sum(1 for c in recent if band.contains(c.systolic, c.diastolic))
        return inside >= math.ceil(len(recent) * self.config.quorum)

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify_heart_rate(self, bpm: float, timestamp: float, final: bool = False) -> RiskSegment:
        if bpm <= 0:
            return EVALUATING_SEGMENT
        self.heart_rate.update(bpm, timestamp)
        if final:
            return self._final(self.heart_rate, HEART_RATE_BANDS)
        return self._live(self.heart_rate, HEART_RATE_BANDS, timestamp)

    def classify_spo2(self, spo2: float, timestamp: float, final: bool = False) -> RiskSegment:
        if spo2 <= 0:
            return EVALUATING_SEGMENT
        self.spo2.update(spo2, timestamp)
        if final:
            return self._final(self.spo2, SPO2_BANDS)
        return self._live(self.spo2, SPO2_BANDS, timestamp)

    def classify_pressure(
        self, systolic: float, diastolic: float, timestamp: float, final: bool = False
    ) -> RiskSegment:
        if systolic <= 0 or diastolic <= 0 or systolic <= diastolic:
            logger.debug("Ignoring implausible pressure %s/%s", systolic, diastolic)
            return EVALUATING_SEGMENT

        s = self.systolic.update(systolic, timestamp)
        d = self.diastolic.update(diastolic, timestamp)
        _prune(self.pressure_history, timestamp, self.config.measurement_window_s)
        self.pressure_history.append(BPCheck(value=s, timestamp=timestamp, systolic=s, diastolic=d))

        if final:
            return self.final_pressure()

        for band in PRESSURE_BANDS:
            if self.is_stable_pressure(band, timestamp):
                self.pressure_segments.append(band.segment)
                return band.segment
        return EVALUATING_SEGMENT

    # ------------------------------------------------------------------
    # Final reading
    # ------------------------------------------------------------------

    def final_heart_rate(self) -> RiskSegment:
        return self._final(self.heart_rate, HEART_RATE_BANDS)

    def final_spo2(self) -> RiskSegment:
        return self._final(self.spo2, SPO2_BANDS)

    def final_pressure(self) -> RiskSegment:
        systolic = self.systolic.session_average()
        diastolic = self.diastolic.session_average()
        if systolic is not None and diastolic is not None:
            s, d = round(systolic), round(diastolic)
            for band in FINAL_PRESSURE_BANDS:
                if band.contains(s, d):
                    return band.segment
        return _majority(self.pressure_segments)

    def reset_history(self) -> None:
        for track in (self.heart_rate, self.spo2, self.systolic, self.diastolic):
            track.reset()
        self.pressure_history.clear()
        self.pressure_segments = []

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _recent(self, history: Sequence[StabilityCheck], now: float) -> List[StabilityCheck]:
        oldest = now - self.config.stability_window_s
        recent = []
        for check in reversed(history):
            if check.timestamp < oldest:
                break
            recent.append(check)
        return recent

    def _live(self, track: VitalTrack, bands: Sequence[RiskBand], now: float) -> RiskSegment:
        for band in bands:
            if self.is_stable(track.history, (band.low, band.high), now):
                track.segments.append(band.segment)
                return band.segment
        return EVALUATING_SEGMENT

    def _final(self, track: VitalTrack, bands: Sequence[RiskBand]) -> RiskSegment:
        average = track.session_average()
        if average is not None:
            rounded = round(average)
            for band in bands:
                if band.contains(rounded):
                    return band.segment
        return _majority(track.segments)


def _prune(history: Deque[StabilityCheck], now: float, window: float) -> None:
    while history and now - history[0].timestamp >= window:
        history.popleft()


def _majority(segments: Sequence[RiskSegment]) -> RiskSegment:
    if not segments:
        return EVALUATING_SEGMENT
    label, _ = Counter(s.label for s in segments).most_common(1)[0]
    return next(s for s in segments if s.label == label)
