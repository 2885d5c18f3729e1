"""Batch runners over time series."""

from wormfeatures.processing.batch import (
    run_gut_granules,
    run_head_detection,
    run_hsn_detection,
    run_nerve_ring_detection,
    score_hsn_nr_pairs,
    score_wormcurve_pairs,
)

__all__ = [
    'run_head_detection',
    'run_gut_granules',
    'run_hsn_detection',
    'run_nerve_ring_detection',
    'score_wormcurve_pairs',
    'score_hsn_nr_pairs',
]
