"""
PPG Vitals – fingertip photoplethysmography from a phone or Pi camera.
Cover the lens (and flash) with a fingertip; each frame's mean red
intensity is turned into heart rate, an indicative SpO2, respiration,
blood pressure, premature-beat counts and categorical risk labels.
"""

from .config import VitalsConfig
from .pipeline import VitalsMonitor
from .types import FinalReading, Sample, VitalsSnapshot

__version__ = "0.1.0"
__author__ = "ppg_vitals"

__all__ = ["VitalsConfig", "VitalsMonitor", "Sample", "VitalsSnapshot", "FinalReading"]
