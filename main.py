#!/usr/bin/env python3
"""
PPG Vitals – main entry point.

Replays a recorded fingertip capture through the vital-signs pipeline and
logs the running vitals, then prints the final session reading.

Usage
-----
    python main.py INPUT [OPTIONS]

INPUT is either a ``timestamp,amplitude`` CSV file or a video file that
OpenCV can decode.

Options
-------
    --fps FLOAT                Capture frame rate (default: 30)
    --channel {red,green,blue} Channel reduced to the PPG sample (video only)
    --roi FLOAT                Central crop fraction used per frame (default: 0.5)
    --calibration-seconds FLOAT
                               Collect raw SpO2 for this long, then calibrate
    --log-every FLOAT          Seconds between vitals log lines (default: 1)
    --log-level LEVEL          Logging level (default: INFO)
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable

from ppg_vitals.config import VitalsConfig
from ppg_vitals.frame_source import CHANNELS, iter_video_samples, load_samples_csv
from ppg_vitals.pipeline import VitalsMonitor
from ppg_vitals.types import Sample

logger = logging.getLogger("ppg_vitals")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fingertip PPG vital signs from a recorded capture",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("input", type=Path,
                        help="Sample CSV (timestamp,amplitude) or video file")
    parser.add_argument("--fps", type=float, default=30.0,
                        help="Capture frame rate")
    parser.add_argument("--channel", choices=sorted(CHANNELS), default="red",
                        help="Colour channel reduced to the PPG sample")
    parser.add_argument("--roi", type=float, default=0.5,
                        help="Central crop fraction used for each frame")
    parser.add_argument("--calibration-seconds", type=float, default=0.0,
                        help="Collect raw SpO2 for this long, then calibrate")
    parser.add_argument("--log-every", type=float, default=1.0,
                        help="Seconds between vitals log lines")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging level")
    return parser.parse_args(argv)


def _open_samples(args: argparse.Namespace) -> Iterable[Sample]:
    if args.input.suffix.lower() == ".csv":
        return load_samples_csv(args.input)
    return iter_video_samples(args.input, channel=args.channel,
                              roi_fraction=args.roi, fps=args.fps)


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.fps <= 0:
        logger.error("--fps must be positive.")
        return 1
    if not 0.0 < args.roi <= 1.0:
        logger.error("--roi must lie in (0, 1].")
        return 1

    monitor = VitalsMonitor(VitalsConfig().with_fps(args.fps))
    monitor.start_session()

    calibrating = args.calibration_seconds > 0
    start: float | None = None
    next_log = 0.0

    try:
        for sample in _open_samples(args):
            if start is None:
                start = sample.timestamp
            elapsed = sample.timestamp - start
            snapshot = monitor.process_frame(sample)

            if calibrating:
                raw = monitor.raw_spo2()
                if monitor.spo2.last_fallback is None:
                    monitor.add_calibration_value(raw)
                if elapsed >= args.calibration_seconds:
                    calibrating = False
                    if not monitor.calibrate():
                        logger.warning("Not enough clean SpO2 readings to calibrate.")

            if elapsed >= next_log:
                next_log = elapsed + args.log_every
                if snapshot.bpm > 0:
                    logger.info(
                        "t=%5.1fs BPM=%.0f (%s) conf=%.2f SpO2=%.0f%% (%s) BP=%s resp=%.1f/min rhythm=%s (%d)",
                        elapsed, snapshot.bpm, snapshot.heart_rate_label, snapshot.confidence,
                        snapshot.spo2, snapshot.spo2_label, snapshot.blood_pressure or "--/--",
                        snapshot.respiration.rate, snapshot.arrhythmia_label, snapshot.arrhythmia_count,
                    )
                else:
                    logger.info("t=%5.1fs Waiting for signal…", elapsed)

    except (OSError, ValueError) as exc:
        logger.error("Cannot read %s: %s", args.input, exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted.")

    if monitor.frame_count == 0:
        logger.error("No usable samples in %s.", args.input)
        return 1

    final = monitor.stop_session()
    print(f"Heart rate : {final.bpm:.0f} BPM ({final.heart_rate_label})")
    print(f"SpO2       : {final.spo2:.0f}% ({final.spo2_label})")
    print(f"Pressure   : {final.blood_pressure or '--/--'} ({final.pressure_label})")
    print(f"Respiration: {final.respiration.rate:.1f} breaths/min")
    print(f"Rhythm     : {final.arrhythmia_label} ({final.arrhythmia_count} premature beats)")
    return 0


def main(argv: list[str] | None = None) -> int:
    return run(parse_args(argv))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
