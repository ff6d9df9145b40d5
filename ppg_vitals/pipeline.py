"""
Session object that drives the whole pipeline, one frame at a time.

::

    monitor = VitalsMonitor()
    monitor.start_session()
    for sample in samples:
        snapshot = monitor.process_frame(sample)
    final = monitor.stop_session()

Every engine is owned by the monitor and rebuilt to a cold state by
:meth:`VitalsMonitor.reset`; there is no module-level state.
"""

from __future__ import annotations

import logging
from typing import Optional

from .arrhythmia import ArrhythmiaDetector
from .blood_pressure import BloodPressureEstimator
from .config import VitalsConfig
from .heartbeat import HeartbeatEngine
from .respiration import RespirationEngine
from .risk import RiskClassifier
from .signal_conditioner import SignalConditioner
from .spo2 import SpO2Engine
from .types import EVALUATING, FinalReading, RollingBuffer, Sample, VitalsSnapshot

logger = logging.getLogger(__name__)


class VitalsMonitor:
    """
    Single-caller, synchronous vital-signs pipeline.

    Parameters
    ----------
    config:
        Bundle of per-engine tunables.  Defaults to 30 fps settings.
    """

    def __init__(self, config: Optional[VitalsConfig] = None) -> None:
        self.config = config or VitalsConfig()
        cfg = self.config

        self.conditioner = SignalConditioner(cfg.conditioner)
        self.heartbeat = HeartbeatEngine(cfg.heartbeat)
        self.spo2 = SpO2Engine(cfg.spo2)
        self.respiration = RespirationEngine(cfg.respiration)
        self.blood_pressure = BloodPressureEstimator(cfg.blood_pressure)
        self.arrhythmia = ArrhythmiaDetector(cfg.arrhythmia)
        self.risk = RiskClassifier(cfg.risk)

        self._window: RollingBuffer[float] = RollingBuffer(
            max(cfg.spo2.window_size, cfg.blood_pressure.min_samples)
        )
        self._active = False
        self._frames = 0

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def frame_count(self) -> int:
        return self._frames

    def start_session(self) -> None:
        self.reset()
        self._active = True
        logger.info("Monitoring session started.")

    def stop_session(self) -> FinalReading:
        """End the session and classify the session-level averages."""
        self._active = False
        pressure = self.blood_pressure.last_valid
        final = FinalReading(
            bpm=self.heartbeat.final_bpm(),
            spo2=self.spo2.last_value,
            blood_pressure=pressure,
            heart_rate_label=self.risk.final_heart_rate().label,
            spo2_label=self.risk.final_spo2().label,
            pressure_label=self.risk.final_pressure().label,
            respiration=self.respiration.reading,
            arrhythmia_label=self.arrhythmia.label,
            arrhythmia_count=self.arrhythmia.count,
        )
        logger.info(
            "Session stopped after %d frames: bpm=%.0f spo2=%.0f bp=%s (%s)",
            self._frames, final.bpm, final.spo2, pressure or "--/--", final.heart_rate_label,
        )
        return final

    def reset(self) -> None:
        """Clear every buffer, history and calibration."""
        self.conditioner.reset()
        self.heartbeat.reset()
        self.spo2.reset()
        self.respiration.reset()
        self.blood_pressure.reset()
        self.arrhythmia.reset()
        self.risk.reset_history()
        self._window.clear()
        self._frames = 0

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------

    def add_calibration_value(self, value: float) -> None:
        self.spo2.add_calibration_value(value)

    def calibrate(self) -> bool:
        return self.spo2.calibrate()

    def raw_spo2(self) -> float:
        """Uncalibrated SpO2 for the current window (feeds calibration)."""
        return self.spo2.calculate_raw(list(self._window))

    # ------------------------------------------------------------------
    # Per-frame processing
    # ------------------------------------------------------------------

    def process_frame(self, sample: Sample) -> VitalsSnapshot:
        """Run one sample through every engine and return a fresh snapshot."""
        if not self._active:
            logger.debug("Frame received outside a session – starting one.")
            self._active = True
        self._frames += 1
        t = sample.timestamp

        smoothed = self.conditioner.condition(sample.amplitude)
        self._window.append(smoothed)
        heart = self.heartbeat.process(smoothed, t, self.conditioner.baseline)

        beat = heart.beat
        if beat is not None:
            self.respiration.process_signal(beat.amplitude, beat.time)
            if beat.interval > 0:
                self.arrhythmia.update(beat.interval * 1000.0, beat.time)

        window = list(self._window)
        spo2 = self.spo2.calculate(window[-self.config.spo2.window_size:])
        pressure = self.blood_pressure.estimate(window)

        hr_segment = self.risk.classify_heart_rate(heart.bpm, t)
        spo2_segment = self.risk.classify_spo2(spo2, t)
        if pressure is not None:
            pressure_label = self.risk.classify_pressure(pressure.systolic, pressure.diastolic, t).label
        else:
            pressure_label = EVALUATING

        return VitalsSnapshot(
            timestamp=t,
            filtered_value=heart.filtered_value,
            is_peak=heart.is_peak,
            bpm=heart.bpm,
            confidence=heart.confidence,
            spo2=spo2,
            respiration=self.respiration.reading,
            heart_rate_label=hr_segment.label,
            arrhythmia_label=self.arrhythmia.label,
            arrhythmia_count=self.arrhythmia.count,
            blood_pressure=pressure,
            spo2_label=spo2_segment.label,
            pressure_label=pressure_label,
        )
