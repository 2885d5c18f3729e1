"""
Binary mask cleanup used before fitting the worm curve.

Usage:
    from wormfeatures.utils.mask_cleanup import get_largest_connected_component

    body = get_largest_connected_component(small_img > threshold)
"""

import numpy as np
from scipy import ndimage


def get_largest_connected_component(mask: np.ndarray, connectivity: int = 1) -> np.ndarray:
    """
    Keep only the largest connected component of a binary mask.

    Args:
        mask: Binary mask (any dimensionality)
        connectivity: Neighbor connectivity passed to
            ``ndimage.generate_binary_structure`` (1 = faces only)

    Returns:
        Boolean mask containing only the largest component
    """
    mask = np.asarray(mask, dtype=bool)
    if not mask.any():
        return mask.copy()

    structure = ndimage.generate_binary_structure(mask.ndim, connectivity)
    labeled, num_features = ndimage.label(mask, structure=structure)
    if num_features <= 1:
        return mask.copy()

    sizes = ndimage.sum(mask, labeled, range(1, num_features + 1))
    largest_label = int(np.argmax(sizes)) + 1
    return labeled == largest_label
