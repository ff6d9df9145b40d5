"""
Tunable constants for every engine in the pipeline.

Each engine gets one frozen dataclass; :class:`VitalsConfig` bundles them
for the session object.  Window sizes expressed in samples assume the
capture rate in ``VitalsConfig.fps``; use :meth:`VitalsConfig.with_fps` to
rescale them for a different camera.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Tuple


@dataclass(frozen=True)
class ConditionerConfig:
    median_window:      int = 3
    average_window:     int = 3
    ema_alpha:          float = 0.4
    baseline_factor:    float = 0.98    # F once the baseline is tracking


@dataclass(frozen=True)
class HeartbeatConfig:
    window_size:            int = 60      # samples kept for normalization
    min_samples:            int = 30      # below this: bpm = confidence = 0
    warmup_s:               float = 3.0
    amplitude_threshold:    float = 0.40  # normalized 0 – 1
    derivative_threshold:   float = -0.03 # normalized units / sample
    baseline_ratio:         float = 0.98
    min_confidence:         float = 0.60
    refractory_s:           float = 0.40
    low_signal_threshold:   float = 0.03
    low_signal_frames:      int = 10
    segment_half_width:     int = 5
    similarity_threshold:   float = 0.70
    min_templates:          int = 3
    max_templates:          int = 5
    template_weight:        float = 0.8   # old template share when blending
    timing_jitter_s:        float = 0.08
    min_bpm:                float = 40.0
    max_bpm:                float = 200.0
    bpm_history_size:       int = 8
    interval_history_size:  int = 16
    bpm_alpha:              float = 0.2


@dataclass(frozen=True)
class SpO2Config:
    window_size:            int = 60
    min_samples:            int = 20
    min_normalized_variance: float = 1e-4
    max_normalized_variance: float = 0.05
    min_ac:                 float = 1e-4
    min_perfusion:          float = 0.01
    max_perfusion:          float = 10.0
    perfusion_gain:         float = 1.8
    calibration_factor:     float = 1.05
    ratio_a:                float = 110.0
    ratio_b:                float = 25.0
    min_spo2:               float = 90.0
    max_spo2:               float = 100.0
    peak_distance:          int = 9       # samples; ~0.3 s at 30 fps
    trim_fraction:          float = 0.1
    calibration_target:     float = 97.0
    calibration_buffer:     int = 10
    min_calibration_samples: int = 5
    median_window:          int = 5
    anomaly_history:        int = 60
    anomaly_window:         int = 20
    anomaly_min_history:    int = 10
    anomaly_z:              float = 3.0
    display_alpha:          float = 0.15


@dataclass(frozen=True)
class RespirationConfig:
    amplitude_buffer:       int = 30
    fast_adaptation_samples: int = 10
    baseline_alpha:         float = 0.05
    short_term_window:      int = 3
    deviation_threshold:    float = 0.05
    sigmoid_gain:           float = 40.0
    min_breath_interval_s:  float = 1.5
    min_rate:               float = 4.0
    max_rate:               float = 60.0
    rate_history_size:      int = 8
    depth_window:           int = 10


@dataclass(frozen=True)
class BloodPressureConfig:
    min_samples:        int = 20
    peak_distance:      int = 9
    min_pulse_width:    int = 5
    max_pulse_width:    int = 50
    smoothing:          float = 0.7     # weight of the fresh estimate
    systolic_range:     Tuple[float, float] = (90.0, 160.0)
    diastolic_range:    Tuple[float, float] = (60.0, 100.0)
    min_pulse_pressure: int = 20
    max_pulse_pressure: int = 60


@dataclass(frozen=True)
class ArrhythmiaConfig:
    learning_period_s:      float = 3.0
    min_learning_intervals: int = 5
    min_interval_ms:        float = 300.0
    max_interval_ms:        float = 1800.0
    window:                 int = 20
    premature_threshold:    float = 0.82
    compensatory_threshold: float = 1.18
    min_confidence:         float = 0.72
    min_detection_gap_s:    float = 0.6


@dataclass(frozen=True)
class RiskConfig:
    stability_window_s:     float = 4.0
    measurement_window_s:   float = 40.0
    min_stable_samples:     int = 3
    quorum:                 float = 0.66
    median_window:          int = 8
    heart_rate_alpha:       float = 0.15
    spo2_alpha:             float = 0.20
    pressure_alpha:         float = 0.10


@dataclass(frozen=True)
class VitalsConfig:
    fps:            float = 30.0
    conditioner:    ConditionerConfig = field(default_factory=ConditionerConfig)
    heartbeat:      HeartbeatConfig = field(default_factory=HeartbeatConfig)
    spo2:           SpO2Config = field(default_factory=SpO2Config)
    respiration:    RespirationConfig = field(default_factory=RespirationConfig)
    blood_pressure: BloodPressureConfig = field(default_factory=BloodPressureConfig)
    arrhythmia:     ArrhythmiaConfig = field(default_factory=ArrhythmiaConfig)
    risk:           RiskConfig = field(default_factory=RiskConfig)

    def with_fps(self, fps: float) -> "VitalsConfig":
        """Return a copy whose sample-count windows are rescaled to *fps*."""
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")
        scale = fps / self.fps

        def scaled(n: int, minimum: int = 1) -> int:
            return max(minimum, int(round(n * scale)))

        hb = self.heartbeat
        sp = self.spo2
        bp = self.blood_pressure
        return replace(
            self,
            fps=fps,
            heartbeat=replace(
                hb,
                window_size=scaled(hb.window_size, 10),
                min_samples=scaled(hb.min_samples, 5),
                low_signal_frames=scaled(hb.low_signal_frames),
                segment_half_width=scaled(hb.segment_half_width, 2),
            ),
            spo2=replace(
                sp,
                window_size=scaled(sp.window_size, 10),
                min_samples=scaled(sp.min_samples, 5),
                peak_distance=scaled(sp.peak_distance),
            ),
            blood_pressure=replace(
                bp,
                min_samples=scaled(bp.min_samples, 5),
                peak_distance=scaled(bp.peak_distance),
                min_pulse_width=scaled(bp.min_pulse_width),
                max_pulse_width=scaled(bp.max_pulse_width),
            ),
        )
