"""
Feature detectors.

Provides:
- Head/tail localization from neuron centroids with quality flags
- Local density masks
- Gut granule, HSN and nerve ring landmarks
- Region selection policies for choosing one landmark location
"""

from .density import DensityVolume, dense_mask, neighbor_fraction

from .head import ALL_FLAGS, HeadResult, QualityFlag, find_head

from .landmarks import (
    find_gut_granules,
    find_gut_granules_with_config,
    find_hsn,
    find_nerve_ring,
    find_nerve_ring_with_config,
    hsn_candidates,
)

from .region import (
    LargestRegionPolicy,
    NeighborCountPolicy,
    Region,
    RegionSelector,
    SelectionPolicy,
    create_policy,
)

__all__ = [
    'DensityVolume',
    'dense_mask',
    'neighbor_fraction',
    'ALL_FLAGS',
    'HeadResult',
    'QualityFlag',
    'find_head',
    'find_gut_granules',
    'find_gut_granules_with_config',
    'find_hsn',
    'find_nerve_ring',
    'find_nerve_ring_with_config',
    'hsn_candidates',
    'LargestRegionPolicy',
    'NeighborCountPolicy',
    'Region',
    'RegionSelector',
    'SelectionPolicy',
    'create_policy',
]
