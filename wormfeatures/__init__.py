"""
Worm feature detection for whole-brain C. elegans imaging.

Provides head/tail localization from neuron centroids, density-based
landmark detection (gut granules, HSN soma, nerve ring), worm body curve
fitting and registration-difficulty heuristics between time points.

Usage:
    from wormfeatures.detection import find_head, find_hsn, find_nerve_ring
    from wormfeatures.curvature import CurveCache, wormcurve_difficulty, hsn_nr_difficulty
    from wormfeatures.processing import run_head_detection
    from wormfeatures.utils.config import load_config
"""

__version__ = "0.1.0"

# Individual modules should be imported explicitly:
#   from wormfeatures.detection import find_head
#   from wormfeatures.utils.logging import get_logger

__all__ = [
    "geometry",
    "detection",
    "curvature",
    "io",
    "processing",
    "reporting",
    "utils",
    "errors",
    "cli",
]
