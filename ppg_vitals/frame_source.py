"""
Boundary adapters between recorded captures and the pipeline.

The vital-signs engines only ever see :class:`~ppg_vitals.types.Sample`
values.  This module turns recorded material into samples:

* :class:`FingerDetector` – is the lens covered by a fingertip?
* :func:`reduce_frame` – one BGR frame → mean intensity of one channel.
* :class:`VideoSampleReader` – OpenCV ``VideoCapture`` over a video file,
  and :func:`iter_video_samples` which keeps only finger-covered frames.
* :func:`load_samples_csv` – ``timestamp,amplitude`` rows.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Generator, Iterator, List, Tuple, Union

import cv2
import numpy as np

from .types import Sample

logger = logging.getLogger(__name__)

# BGR channel order, as delivered by OpenCV
CHANNELS = {"blue": 0, "green": 1, "red": 2}


class FingerDetector:
    """
    Heuristic: a covered lens is dark, spatially uniform and red-dominant.

    Parameters
    ----------
    brightness_threshold:
        Maximum mean brightness (0 – 255) of a covered lens.
    variance_threshold:
        Maximum spatial variance of the green channel.
    red_dominance:
        Minimum ``mean_red / mean_green`` for skin tone.
    """

    def __init__(
        self,
        brightness_threshold: float = 100.0,
        variance_threshold: float = 800.0,
        red_dominance: float = 1.05,
    ) -> None:
        self.brightness_threshold = brightness_threshold
        self.variance_threshold = variance_threshold
        self.red_dominance = red_dominance

    def is_finger(self, frame: np.ndarray) -> bool:
        """Return *True* if the BGR *frame* looks like a fingertip on the lens."""
        mean_b, mean_g, mean_r = (float(m) for m in cv2.mean(frame)[:3])
        brightness = (mean_r + mean_g + mean_b) / 3.0
        variance = float(frame[:, :, CHANNELS["green"]].astype(np.float64).var())
        red_ratio = mean_r / (mean_g + 1e-6)

        return (
            brightness < self.brightness_threshold
            and variance < self.variance_threshold
            and red_ratio >= self.red_dominance
        )


def reduce_frame(frame: np.ndarray, channel: str = "red") -> float:
    """Mean intensity of one BGR channel of *frame*."""
    try:
        index = CHANNELS[channel]
    except KeyError:
        raise ValueError(f"Unknown channel {channel!r}; expected one of {sorted(CHANNELS)}") from None
    return float(cv2.mean(frame)[index])


def centre_roi(frame: np.ndarray, fraction: float = 0.5) -> np.ndarray:
    """Central crop covering *fraction* of each dimension."""
    h, w = frame.shape[:2]
    rh, rw = max(1, int(h * fraction)), max(1, int(w * fraction))
    y, x = (h - rh) // 2, (w - rw) // 2
    return frame[y:y + rh, x:x + rw]


class VideoSampleReader:
    """
    Read a recorded fingertip video and yield one sample per frame.

    Parameters
    ----------
    path:
        Any container OpenCV can decode.
    channel:
        BGR channel reduced to the sample amplitude (default red).
    roi_fraction:
        Size of the central crop used for reduction and finger detection.
    fps:
        Fallback frame rate when the container does not report one.
    """

    def __init__(
        self,
        path: Union[str, Path],
        channel: str = "red",
        roi_fraction: float = 0.5,
        fps: float = 30.0,
        detector: FingerDetector | None = None,
    ) -> None:
        if channel not in CHANNELS:
            raise ValueError(f"Unknown channel {channel!r}")
        self.path = Path(path)
        self.channel = channel
        self.roi_fraction = roi_fraction
        self.fps = fps
        self.detector = detector or FingerDetector()
        self._cap: cv2.VideoCapture | None = None

    def open(self) -> None:
        cap = cv2.VideoCapture(str(self.path))
        if not cap.isOpened():
            raise OSError(f"Cannot open video file {self.path}")
        reported = cap.get(cv2.CAP_PROP_FPS)
        if reported and reported > 0:
            self.fps = float(reported)
        self._cap = cap
        logger.info("Video opened – %s @ %.1f fps", self.path, self.fps)

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def __enter__(self) -> "VideoSampleReader":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    def samples(self) -> Generator[Tuple[Sample, bool], None, None]:
        """Yield ``(sample, finger_present)`` for each decoded frame."""
        if self._cap is None:
            raise RuntimeError("Video is not open.  Call open() first.")
        index = 0
        while True:
            ok, frame = self._cap.read()
            if not ok:
                break
            roi = centre_roi(frame, self.roi_fraction)
            timestamp = index / self.fps
            yield Sample(timestamp, reduce_frame(roi, self.channel)), self.detector.is_finger(roi)
            index += 1
        logger.info("Video exhausted after %d frames.", index)


def iter_video_samples(
    path: Union[str, Path],
    channel: str = "red",
    roi_fraction: float = 0.5,
    fps: float = 30.0,
    detector: FingerDetector | None = None,
) -> Iterator[Sample]:
    """
    Yield samples from a video file, skipping frames without a fingertip.

    Raises ``OSError`` if OpenCV cannot open *path*.
    """
    skipped = 0
    with VideoSampleReader(path, channel, roi_fraction, fps, detector) as reader:
        for sample, finger_present in reader.samples():
            if not finger_present:
                skipped += 1
                continue
            yield sample
    if skipped:
        logger.info("Skipped %d frames without a finger on the lens.", skipped)


def load_samples_csv(path: Union[str, Path]) -> List[Sample]:
    """
    Load ``timestamp,amplitude`` rows (seconds, brightness).

    A header line is skipped when present.  Raises ``ValueError`` for a
    file without two numeric columns.
    """
    path = Path(path)
    with path.open() as fh:
        first = fh.readline()
    skip = 0 if _is_numeric_row(first) else 1
    data = np.loadtxt(path, delimiter=",", skiprows=skip, ndmin=2)
    if data.size == 0 or data.shape[1] < 2:
        raise ValueError(f"{path}: expected two columns (timestamp, amplitude)")
    return [Sample(float(t), float(a)) for t, a in data[:, :2]]


def _is_numeric_row(line: str) -> bool:
    try:
        [float(part) for part in line.strip().split(",") if part]
    except ValueError:
        return False
    return bool(line.strip())
