"""
Error taxonomy for the feature detectors.

Three kinds of trouble are distinguished:

- Data-quality problems (low population, worm near the frame edge, hull
  divergence) are *not* exceptions. They are attached to results as
  ``QualityFlag`` members (see ``wormfeatures.detection.head``).
- Expected absence (no dense voxels, nothing to select) is returned as
  ``None`` by the detectors and scorers.
- Caller/configuration errors raise ``PreconditionViolation`` and should
  abort a batch run immediately.
"""


class WormFeatureError(Exception):
    """Base class for all errors raised by wormfeatures."""
    pass


class PreconditionViolation(WormFeatureError, ValueError):
    """A call was made with arguments that can never be valid."""
    pass


class HullOrderError(PreconditionViolation):
    """Hull sensitivity levels are not in strictly increasing generosity."""
    pass


class CurveTooShortError(PreconditionViolation):
    """A worm curve has fewer points than the requested alignment index needs."""

    def __init__(self, n_points: int, tailpt: int, key=None):
        self.n_points = n_points
        self.tailpt = tailpt
        self.key = key
        where = f" for {key}" if key is not None else ""
        super().__init__(
            f"Worm curve{where} has {n_points} points, "
            f"need at least {tailpt + 1} (tailpt={tailpt})"
        )


class DimensionMismatchError(PreconditionViolation):
    """Point, radius or volume dimensionality do not agree."""
    pass


class ConfigValidationError(PreconditionViolation):
    """A parameter set is missing keys or has invalid values."""
    pass
