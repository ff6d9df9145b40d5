"""
Value types shared by the vital-signs engines.

All records are small frozen dataclasses; the only mutable container is
:class:`RollingBuffer`, a fixed-capacity FIFO used for every sample,
BPM, SpO2 and stability history in the pipeline.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Generic, Iterator, List, Optional, TypeVar

import numpy as np

T = TypeVar("T")

EVALUATING = "evaluating"
NO_ARRHYTHMIA = "no arrhythmia"
ARRHYTHMIA_DETECTED = "arrhythmia detected"


class Fallback(Enum):
    """Why an engine held its previous value instead of emitting a new one."""

    INSUFFICIENT_DATA = "insufficient_data"
    SIGNAL_QUALITY_TOO_LOW = "signal_quality_too_low"
    PHYSIOLOGICALLY_IMPLAUSIBLE = "physiologically_implausible"
    ANOMALOUS_SAMPLE = "anomalous_sample"


# ---------------------------------------------------------------------------
# Rolling buffer
# ---------------------------------------------------------------------------

class RollingBuffer(Generic[T]):
    """
    Fixed-capacity ordered sequence of the most recent ``capacity`` items.

    Appending to a full buffer evicts the oldest item, so ``len(buf)`` never
    exceeds ``capacity``.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._items: Deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._items.maxlen  # type: ignore[return-value]

    @property
    def is_full(self) -> bool:
        return len(self._items) == self.capacity

    def append(self, item: T) -> None:
        self._items.append(item)

    def clear(self) -> None:
        self._items.clear()

    def last(self, n: int) -> List[T]:
        """Return up to the ``n`` most recent items, oldest first."""
        if n <= 0:
            return []
        return list(self._items)[-n:]

    def to_array(self) -> np.ndarray:
        return np.asarray(self._items, dtype=np.float64)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    def __bool__(self) -> bool:
        return bool(self._items)

    def __repr__(self) -> str:
        return f"RollingBuffer(capacity={self.capacity}, len={len(self)})"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Sample:
    """One brightness sample per video frame; ``timestamp`` in seconds."""
    timestamp: float
    amplitude: float


@dataclass(frozen=True)
class PeakCandidate:
    index:      int      # absolute sample index inside the engine
    value:      float
    derivative: float
    timestamp:  float
    confidence: float


@dataclass(frozen=True)
class ConfirmedBeat:
    time:       float
    confidence: float
    amplitude:  float = 0.0   # peak-to-trough height of the pulse
    interval:   float = 0.0   # seconds since the previous beat, 0 if none counted


@dataclass
class CalibrationState:
    samples:        RollingBuffer[float]
    offset:         float = 0.0
    is_calibrated:  bool = False

    def clear(self) -> None:
        self.samples.clear()
        self.offset = 0.0
        self.is_calibrated = False


@dataclass(frozen=True)
class StabilityCheck:
    value:     float
    timestamp: float


@dataclass(frozen=True)
class BPCheck(StabilityCheck):
    systolic:  float = 0.0
    diastolic: float = 0.0


@dataclass(frozen=True)
class RiskSegment:
    color: str
    label: str

    @property
    def is_evaluating(self) -> bool:
        return self.label == EVALUATING


EVALUATING_SEGMENT = RiskSegment(color="#FFFFFF", label=EVALUATING)


@dataclass(frozen=True)
class RespirationReading:
    rate:       float = 0.0   # breaths / min
    depth:      float = 0.0   # % of baseline amplitude
    regularity: float = 0.0   # 0 – 100


@dataclass(frozen=True)
class BloodPressure:
    systolic:  int
    diastolic: int

    def __str__(self) -> str:
        return f"{self.systolic}/{self.diastolic}"


@dataclass(frozen=True)
class VitalsSnapshot:
    """Per-frame pipeline output.  Zero / ``"evaluating"`` means "not yet"."""
    timestamp:         float
    filtered_value:    float
    is_peak:           bool
    bpm:               float
    confidence:        float
    spo2:              float
    respiration:       RespirationReading = field(default_factory=RespirationReading)
    heart_rate_label:  str = EVALUATING
    arrhythmia_label:  str = EVALUATING
    arrhythmia_count:  int = 0
    blood_pressure:    Optional[BloodPressure] = None
    spo2_label:        str = EVALUATING
    pressure_label:    str = EVALUATING


@dataclass(frozen=True)
class FinalReading:
    """End-of-session summary returned by ``VitalsMonitor.stop_session``."""
    bpm:               float
    spo2:              float
    blood_pressure:    Optional[BloodPressure]
    heart_rate_label:  str
    spo2_label:        str
    pressure_label:    str
    respiration:       RespirationReading
    arrhythmia_label:  str
    arrhythmia_count:  int
