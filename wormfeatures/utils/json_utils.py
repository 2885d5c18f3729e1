"""JSON helpers: numpy-aware encoding, NaN sanitization and atomic writes.

Output files (head positions, landmark locations) are rewritten every time
a frame is reprocessed, so writes go through a temp file and
``os.replace()``; an interrupted run leaves either the previous file or
the new one, never a truncated file.
"""

import json
import math
import os
import tempfile
from pathlib import Path

import numpy as np


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder that understands numpy scalars and arrays.

    Usage::

        json.dump(data, f, cls=NumpyEncoder)
    """

    def default(self, obj):
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            v = float(obj)
            return None if (math.isnan(v) or math.isinf(v)) else v
        if isinstance(obj, np.ndarray):
            return sanitize_for_json(obj.tolist())
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        return super().default(obj)


def sanitize_for_json(obj):
    """Recursively replace NaN/inf with None and numpy types with builtins.

    ``json.dump`` happily writes ``NaN`` tokens for Python floats, which are
    not valid JSON, so nested structures are walked explicitly.
    """
    if isinstance(obj, dict):
        return {k: sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_for_json(v) for v in obj]
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, (float, np.floating)):
        v = float(obj)
        return None if (math.isnan(v) or math.isinf(v)) else v
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.ndarray):
        return sanitize_for_json(obj.tolist())
    return obj


def atomic_json_dump(data, filepath, cls=NumpyEncoder, sanitize=True, indent=None):
    """Write JSON atomically (temp file in the target directory + os.replace).

    Args:
        data: Python object to serialize.
        filepath: Target path (str or Path).
        cls: JSON encoder class (default: NumpyEncoder).
        sanitize: Run sanitize_for_json() first so NaN/inf become null.
        indent: Passed through to json.dump.
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    if sanitize:
        data = sanitize_for_json(data)

    fd, tmp_path = tempfile.mkstemp(dir=filepath.parent, suffix='.tmp')
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(data, f, cls=cls, indent=indent)
        os.replace(tmp_path, filepath)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
