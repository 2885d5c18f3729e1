"""
Pytest fixtures for wormfeatures tests.

Provides synthetic worm centroid clouds, synthetic intensity volumes and
temporary directories.
"""

import math
import shutil
import tempfile
from pathlib import Path

import numpy as np
import pytest


def make_worm(rotation_deg: float = 0.0, z: float = None) -> np.ndarray:
    """
    Centroids of a synthetic worm lying along x, head at +x.

    The body is an ellipse of half-length 200 centered at (250, 256). The
    head end (x 330..450) holds 90 centroids, the rest of the body 60, so
    the densest region is at the head. Index 0 is the tip of the nose at
    (450, 256).

    Args:
        rotation_deg: Counter-clockwise rotation about (256, 256)
        z: If given, a constant z column is appended

    Returns:
        (150, 2) or (150, 3) float array
    """
    x = np.concatenate([np.linspace(450, 330, 90), np.linspace(330 - 280 / 60, 50, 60)])
    half_width = 20 * np.sqrt(np.clip(1 - ((x - 250) / 200) ** 2, 0, None))
    offsets = np.resize([-0.8, -0.4, 0.0, 0.4, 0.8], len(x))
    # Tip and tail sit on the axis whatever the offset
    y = 256 + half_width * offsets
    pts = np.column_stack([x, y])

    if rotation_deg:
        a = math.radians(rotation_deg)
        rot = np.array([[math.cos(a), -math.sin(a)], [math.sin(a), math.cos(a)]])
        pts = (pts - 256) @ rot.T + 256
    if z is not None:
        pts = np.column_stack([pts, np.full(len(pts), float(z))])
    return pts


@pytest.fixture
def worm_centroids():
    """Synthetic worm, 150 centroids, head at (450, 256)."""
    return make_worm()


@pytest.fixture
def rotated_worm_centroids():
    """Synthetic worm rotated 30 degrees counter-clockwise about (256, 256)."""
    return make_worm(rotation_deg=30)


@pytest.fixture
def worm_centroids_3d():
    """Synthetic worm with every centroid at z=10."""
    return make_worm(z=10)


@pytest.fixture
def hsn_volume():
    """
    40x40x20 volume with a large bright block (neuropil) and a small
    brighter block (the HSN soma).

    Neuropil: [5:25, 5:25, 5:15] = 100
    Soma:     [30:34, 30:34, 8:12] = 200
    """
    vol = np.zeros((40, 40, 20), dtype=np.float64)
    vol[5:25, 5:25, 5:15] = 100
    vol[30:34, 30:34, 8:12] = 200
    return vol


@pytest.fixture
def embedded_hsn_volume():
    """
    40x40x20 volume with the HSN soma inside a speckled neuropil.

    Neuropil: [5:35, 5:35, 3:17] = 100 wherever (x + y + z) % 3 == 0
              (one voxel in three)
    Soma:     [18:22, 18:22, 8:12] = 200 (solid)
    """
    vol = np.zeros((40, 40, 20), dtype=np.float64)
    x, y, z = np.indices(vol.shape)
    speckle = (x + y + z) % 3 == 0
    neuropil = np.zeros(vol.shape, dtype=bool)
    neuropil[5:35, 5:35, 3:17] = True
    vol[neuropil & speckle] = 100
    vol[18:22, 18:22, 8:12] = 200
    return vol


@pytest.fixture
def bar_volume():
    """
    256x128x4 volume with a straight bright bar along x.

    The bar spans x 20..199 and y 60..67; its head end is at (20, 64).
    """
    vol = np.zeros((256, 128, 4), dtype=np.float64)
    vol[20:200, 60:68, :] = 100
    return vol


@pytest.fixture
def temp_output_dir():
    """
    Temporary directory for test outputs, removed after the test.

    Yields:
        Path: Path to temporary directory
    """
    temp_dir = tempfile.mkdtemp(prefix="wormfeatures_test_")
    yield Path(temp_dir)
    shutil.rmtree(temp_dir, ignore_errors=True)
