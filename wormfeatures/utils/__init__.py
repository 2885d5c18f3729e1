"""
Utility modules shared by the detectors.

Provides:
- Logging utilities
- Numpy-aware JSON and atomic writes

Configuration (``wormfeatures.utils.config``) and schemas
(``wormfeatures.utils.schemas``) are imported from their modules.
"""

from .logging import (
    get_logger,
    setup_logging,
    log_parameters,
    ProcessingTimer,
)

from .json_utils import (
    NumpyEncoder,
    sanitize_for_json,
    atomic_json_dump,
)

__all__ = [
    'get_logger',
    'setup_logging',
    'log_parameters',
    'ProcessingTimer',
    'NumpyEncoder',
    'sanitize_for_json',
    'atomic_json_dump',
]
