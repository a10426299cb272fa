"""
MTTrack: multi-target tracking of moving objects from cluttered per-frame detections
"""

from .tracking import (
    MultiObservationTrackerRBMCDAIMM,
    TrackerParameters,
    TrackingResult,
    MultiState,
    TargetLabel,
)
from .config_loader import ConfigLoader, TrackerConfig

__version__ = "1.0.0"

__all__ = [
    "MultiObservationTrackerRBMCDAIMM",
    "TrackerParameters",
    "TrackingResult",
    "MultiState",
    "TargetLabel",
    "ConfigLoader",
    "TrackerConfig",
]
