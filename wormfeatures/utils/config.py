"""
Parameter sets for the feature detectors.

Parameters live in a flat JSON file whose keys match the historical
parameter names (``head_threshold``, ``worm_curve_head_idx``, ...). The file
is merged over ``DEFAULT_CONFIG`` and then split into one typed, validated
config object per component:

    HeadConfig        find_head
    GutConfig         find_gut_granules
    HsnConfig         find_hsn
    NerveRingConfig   find_nerve_ring
    CurveConfig       fit_worm_curve / worm-curve difficulty
    DifficultyConfig  HSN / nerve-ring difficulty

Usage:
    from wormfeatures.utils.config import load_config, HeadConfig

    config = load_config('/path/to/experiment')          # dict, defaults merged
    head_cfg = HeadConfig.from_config(config)            # validated here

Invalid values raise ConfigValidationError when the typed config is
built, not when a detector first touches them.
"""

import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from wormfeatures.errors import ConfigValidationError, PreconditionViolation
from wormfeatures.geometry.convex_hull import HullSchedule
from wormfeatures.utils.json_utils import atomic_json_dump
from wormfeatures.utils.logging import get_logger

logger = get_logger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    # Head detection: three local convex hulls, least to most generous
    "head_threshold": [10, 10, 30],
    "head_max_distance": [30, 50, 50],
    "head_err_threshold": 100,
    "head_vc_err_threshold": 300,
    "head_num_centroids_threshold": 90,
    "head_edge_err_threshold": 5,
    "head_crop_margin": 10,

    # Gut granules (radius is [x, y, z] half-widths in voxels)
    "gut_threshold": 1000,
    "gut_density": 0.5,
    "gut_radius": [3, 3, 1],

    # HSN soma: pass 1 excludes over-dense regions, pass 2 requires density
    "hsn_threshold_outer": 1000,
    "hsn_density_outer": 0.4,
    "hsn_radius_outer": [10, 10, 3],
    "hsn_threshold_inner": 1000,
    "hsn_density_inner": 0.6,
    "hsn_radius_inner": [2, 2, 1],
    "hsn_radius_detection": 5,
    "hsn_selection": "count",

    # Nerve ring
    "nr_threshold": 1000,
    "nr_radius": 5,
    "nr_region": None,

    # Worm curvature
    "worm_curve_n_pts": 9,
    "worm_curve_head_idx": 4,
    "worm_curve_tail_idx": 7,
    "worm_curve_downscale": 3,

    # Registration difficulty
    "nr_weight": 1.0,
}

SELECTION_POLICIES = ("count", "largest_region")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Recursively merge ``override`` into ``base`` in place (values deep-copied)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)


def load_config(
    path: Optional[Union[str, Path]] = None,
    config_filename: str = "config.json",
    **overrides: Any,
) -> Dict[str, Any]:
    """
    Load a parameter set, merged over DEFAULT_CONFIG.

    Args:
        path: A JSON file, or a directory containing ``config_filename``.
            If None or missing, defaults are used.
        config_filename: File name looked up when ``path`` is a directory
        **overrides: Keys applied last

    Returns:
        Dict with merged configuration (validated)

    Raises:
        ConfigValidationError: If the file is not valid JSON or values are invalid
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if path is not None:
        config_path = Path(path)
        if config_path.is_dir():
            config_path = config_path / config_filename
        if config_path.exists():
            try:
                with open(config_path, 'r') as f:
                    file_config = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigValidationError(f"Invalid JSON in {config_path}: {e}") from e
            if not isinstance(file_config, dict):
                raise ConfigValidationError(f"{config_path}: expected a JSON object")
            _deep_merge(config, file_config)
            logger.debug("Loaded config from %s", config_path)
        else:
            logger.warning("Config file %s not found, using defaults", config_path)

    _deep_merge(config, overrides)
    validate_config(config)
    return config


def save_config(
    path: Union[str, Path],
    config: Dict[str, Any],
    config_filename: str = "config.json",
) -> Path:
    """
    Save a parameter set as JSON.

    Args:
        path: Target file, or directory to write ``config_filename`` into
        config: Parameter dict

    Returns:
        Path to the saved file
    """
    config_path = Path(path)
    if config_path.suffix != ".json":
        config_path = config_path / config_filename
    atomic_json_dump(config, config_path, indent=2)
    return config_path


# =============================================================================
# FIELD VALIDATION
# =============================================================================

def _require(config: Dict[str, Any], key: str) -> Any:
    if key not in config:
        raise ConfigValidationError(f"Missing required parameter: {key}")
    return config[key]


def _number(value: Any, key: str, min_val: float = None, max_val: float = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigValidationError(f"{key}: expected numeric type, got {type(value).__name__}")
    if (min_val is not None and value < min_val) or (max_val is not None and value > max_val):
        raise ConfigValidationError(f"{key}: value {value} out of range [{min_val}, {max_val}]")
    return value


def _integer(value: Any, key: str, min_val: int = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigValidationError(f"{key}: expected int, got {type(value).__name__}")
    if min_val is not None and value < min_val:
        raise ConfigValidationError(f"{key}: value {value} must be >= {min_val}")
    return value


def _radius(value: Any, key: str) -> Tuple[int, ...]:
    if not isinstance(value, (list, tuple)) or len(value) not in (2, 3):
        raise ConfigValidationError(f"{key}: expected [rx, ry(, rz)], got {value!r}")
    return tuple(_integer(v, f"{key}[{i}]", min_val=0) for i, v in enumerate(value))


def _levels(value: Any, key: str) -> Tuple[float, ...]:
    if not isinstance(value, (list, tuple)):
        raise ConfigValidationError(f"{key}: expected a list of per-level values, got {value!r}")
    return tuple(_number(v, f"{key}[{i}]", min_val=0) for i, v in enumerate(value))


def _region(value: Any, key: str) -> Optional[Tuple[Tuple[int, int], ...]]:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)) or len(value) not in (2, 3):
        raise ConfigValidationError(f"{key}: expected [[x0, x1], [y0, y1](, [z0, z1])]")
    bounds = []
    for i, pair in enumerate(value):
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ConfigValidationError(f"{key}[{i}]: expected [lo, hi], got {pair!r}")
        lo = _integer(pair[0], f"{key}[{i}][0]", min_val=0)
        hi = _integer(pair[1], f"{key}[{i}][1]", min_val=0)
        if hi <= lo:
            raise ConfigValidationError(f"{key}[{i}]: empty range [{lo}, {hi})")
        bounds.append((lo, hi))
    return tuple(bounds)


# =============================================================================
# TYPED COMPONENT CONFIGS
# =============================================================================

@dataclass(frozen=True)
class DensityParams:
    """A (threshold, density, radius) triple for ``dense_mask``."""
    threshold: float
    density: float
    radius: Tuple[int, ...]

    def __post_init__(self):
        _number(self.threshold, "threshold")
        _number(self.density, "density", 0.0, 1.0)
        object.__setattr__(self, "radius", _radius(self.radius, "radius"))

    @classmethod
    def from_config(cls, config: Dict[str, Any], prefix: str, suffix: str = "") -> "DensityParams":
        return cls(
            threshold=_require(config, f"{prefix}_threshold{suffix}"),
            density=_require(config, f"{prefix}_density{suffix}"),
            radius=_require(config, f"{prefix}_radius{suffix}"),
        )


@dataclass(frozen=True)
class HeadConfig:
    """
    Parameters of ``find_head``.

    Attributes:
        tf: Density divisors per hull level (least to most generous)
        max_d: Neighborhood radii per hull level
        hd_threshold: Max head distance between hulls 2 and 3 before flagging
        vc_threshold: Max tail distance between hulls 2 and 3 before flagging
        num_centroids_threshold: Minimum centroid count before flagging
        edge_threshold: Minimum clearance (px) from the image boundary
        crop_margin: Margin (px) added around the worm for crop bounds
    """
    tf: Tuple[float, ...] = (10, 10, 30)
    max_d: Tuple[float, ...] = (30, 50, 50)
    hd_threshold: float = 100
    vc_threshold: float = 300
    num_centroids_threshold: int = 90
    edge_threshold: float = 5
    crop_margin: int = 10
    schedule: HullSchedule = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        tf = _levels(self.tf, "tf")
        max_d = _levels(self.max_d, "max_d")
        if len(tf) != 3 or len(max_d) != 3:
            raise ConfigValidationError(
                f"Head detection needs exactly 3 hull levels, got tf={tf}, max_d={max_d}"
            )
        object.__setattr__(self, "tf", tf)
        object.__setattr__(self, "max_d", max_d)
        _number(self.hd_threshold, "hd_threshold", min_val=0)
        _number(self.vc_threshold, "vc_threshold", min_val=0)
        _integer(self.num_centroids_threshold, "num_centroids_threshold", min_val=0)
        _number(self.edge_threshold, "edge_threshold", min_val=0)
        _integer(self.crop_margin, "crop_margin", min_val=0)
        # HullOrderError propagates: a mis-ordered schedule is a broken run config
        object.__setattr__(self, "schedule", HullSchedule.from_lists(tf, max_d))

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "HeadConfig":
        return cls(
            tf=_require(config, "head_threshold"),
            max_d=_require(config, "head_max_distance"),
            hd_threshold=_require(config, "head_err_threshold"),
            vc_threshold=_require(config, "head_vc_err_threshold"),
            num_centroids_threshold=_require(config, "head_num_centroids_threshold"),
            edge_threshold=_require(config, "head_edge_err_threshold"),
            crop_margin=config.get("head_crop_margin", 10),
        )


@dataclass(frozen=True)
class GutConfig:
    params: DensityParams

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "GutConfig":
        return cls(params=DensityParams.from_config(config, "gut"))


@dataclass(frozen=True)
class HsnConfig:
    """Two-pass HSN filter plus the selection radius/policy."""
    outer: DensityParams
    inner: DensityParams
    radius_detection: float = 5
    selection: str = "count"

    def __post_init__(self):
        _number(self.radius_detection, "radius_detection", min_val=0)
        if self.selection not in SELECTION_POLICIES:
            raise ConfigValidationError(
                f"selection: expected one of {SELECTION_POLICIES}, got {self.selection!r}"
            )
        if len(self.outer.radius) != len(self.inner.radius):
            raise ConfigValidationError("hsn_radius_outer and hsn_radius_inner differ in length")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "HsnConfig":
        return cls(
            outer=DensityParams.from_config(config, "hsn", "_outer"),
            inner=DensityParams.from_config(config, "hsn", "_inner"),
            radius_detection=_require(config, "hsn_radius_detection"),
            selection=config.get("hsn_selection", "count"),
        )


@dataclass(frozen=True)
class NerveRingConfig:
    """
    Attributes:
        threshold: Minimum voxel intensity
        radius: Neighbor-count radius (voxels)
        region: Optional ``((x0, x1), (y0, y1), (z0, z1))`` half-open search box
    """
    threshold: float
    radius: float
    region: Optional[Tuple[Tuple[int, int], ...]] = None

    def __post_init__(self):
        _number(self.threshold, "threshold")
        _number(self.radius, "radius", min_val=0)
        object.__setattr__(self, "region", _region(self.region, "region"))

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "NerveRingConfig":
        return cls(
            threshold=_require(config, "nr_threshold"),
            radius=_require(config, "nr_radius"),
            region=config.get("nr_region"),
        )


@dataclass(frozen=True)
class CurveConfig:
    """
    Attributes:
        num_points: Curve points excluding the head
        headpt: First curve index used for alignment
        tailpt: Second curve index used for alignment
        downscale: log2 of the downscaling factor applied before fitting
    """
    num_points: int = 9
    headpt: int = 4
    tailpt: int = 7
    downscale: int = 3

    def __post_init__(self):
        _integer(self.num_points, "num_points", min_val=1)
        _integer(self.headpt, "headpt", min_val=0)
        _integer(self.tailpt, "tailpt", min_val=0)
        _integer(self.downscale, "downscale", min_val=0)
        if not self.headpt < self.tailpt <= self.num_points:
            raise ConfigValidationError(
                f"Need headpt < tailpt <= num_points, got headpt={self.headpt}, "
                f"tailpt={self.tailpt}, num_points={self.num_points}"
            )

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "CurveConfig":
        return cls(
            num_points=_require(config, "worm_curve_n_pts"),
            headpt=_require(config, "worm_curve_head_idx"),
            tailpt=_require(config, "worm_curve_tail_idx"),
            downscale=_require(config, "worm_curve_downscale"),
        )


@dataclass(frozen=True)
class DifficultyConfig:
    nr_weight: float = 1.0

    def __post_init__(self):
        _number(self.nr_weight, "nr_weight", min_val=0)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DifficultyConfig":
        return cls(nr_weight=_require(config, "nr_weight"))


_COMPONENTS = (HeadConfig, GutConfig, HsnConfig, NerveRingConfig, CurveConfig, DifficultyConfig)


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate every component section of a parameter set.

    Raises:
        ConfigValidationError: Listing every invalid section
    """
    errors: List[str] = []
    for component in _COMPONENTS:
        try:
            component.from_config(config)
        except PreconditionViolation as e:
            errors.append(f"{component.__name__}: {e}")
    if errors:
        raise ConfigValidationError("Invalid configuration:\n  " + "\n  ".join(errors))
