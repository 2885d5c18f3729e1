"""
Worm body curves and registration-difficulty heuristics.
"""

from .worm_curve import WormCurve, fit_worm_curve, project_and_downscale

from .cache import CurveCache

from .difficulty import (
    DifficultyScore,
    curve_distance,
    hsn_nr_difficulty,
    wormcurve_difficulty,
)

__all__ = [
    'WormCurve',
    'fit_worm_curve',
    'project_and_downscale',
    'CurveCache',
    'DifficultyScore',
    'curve_distance',
    'hsn_nr_difficulty',
    'wormcurve_difficulty',
]
