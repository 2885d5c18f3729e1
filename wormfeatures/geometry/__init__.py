"""
Point-cloud geometry: radius queries and local convex hulls.
"""

from .spatial_index import SpatialIndex, as_point_cloud

from .convex_hull import (
    ConvexHullApproximation,
    HullLevel,
    HullSchedule,
    compute_local_hull,
    in_local_convex_hull,
)

__all__ = [
    'SpatialIndex',
    'as_point_cloud',
    'ConvexHullApproximation',
    'HullLevel',
    'HullSchedule',
    'compute_local_hull',
    'in_local_convex_hull',
]
