"""
Diagnostic figures for head detection and curvature scoring.

Nothing here is called unless a ``CurveFigureSink`` is handed to a
detector or scorer; without one no figure is rendered and nothing is
written.
"""

import threading
from pathlib import Path
from typing import Union

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np

from wormfeatures.geometry.spatial_index import as_point_cloud
from wormfeatures.utils.logging import get_logger

logger = get_logger(__name__)

# pyplot keeps global state
_PLOT_LOCK = threading.Lock()


class CurveFigureSink:
    """Writes PNG diagnostics into ``path_dir`` (created on first use)."""

    def __init__(self, path_dir: Union[str, Path], dpi: int = 100):
        self.path_dir = Path(path_dir)
        self.dpi = dpi

    def _save(self, fig, name: str) -> Path:
        self.path_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_dir / name
        fig.tight_layout()
        fig.savefig(path, dpi=self.dpi, bbox_inches='tight')
        plt.close(fig)
        logger.debug("Saved figure %s", path)
        return path

    def save_worm_curves(self, t1: int, t2: int, curve1, curve2, score=None) -> Path:
        """Overlay of the curves of a time-point pair, head end marked."""
        with _PLOT_LOCK:
            fig, ax = plt.subplots(figsize=(6, 6))
            for t, curve, color in ((t1, curve1, 'tab:blue'), (t2, curve2, 'tab:orange')):
                pts = np.asarray(getattr(curve, 'points', curve))
                ax.plot(pts[:, 0], pts[:, 1], '-o', color=color, ms=3, label=f"t={t}")
                ax.plot(pts[0, 0], pts[0, 1], '*', color=color, ms=12)
            title = f"{t1} -> {t2}"
            if score is not None:
                title += f"  difficulty={float(score):.2f}"
            ax.set_title(title)
            ax.set_aspect('equal')
            ax.invert_yaxis()
            ax.legend(loc='best')
            return self._save(fig, f"curves_{t1}_{t2}.png")

    def save_head(self, t: int, centroids, result) -> Path:
        """Centroids with head, tail and crop box of one time point."""
        pts = as_point_cloud(centroids)
        with _PLOT_LOCK:
            fig, ax = plt.subplots(figsize=(6, 6))
            if len(pts):
                ax.scatter(pts[:, 0], pts[:, 1], s=4, c='0.5')
            if result.has_position:
                ax.plot(result.head_pos[0], result.head_pos[1], 'r*', ms=14, label='head')
            if result.tail_pos is not None:
                ax.plot(result.tail_pos[0], result.tail_pos[1], 'bs', ms=8, label='tail')
            (x0, x1), (y0, y1) = result.crop_x, result.crop_y
            ax.plot([x0, x1, x1, x0, x0], [y0, y0, y1, y1, y0], 'g--', lw=1)
            flags = ", ".join(sorted(f.value for f in result.quality_flags)) or "clean"
            ax.set_title(f"t={t}  {flags}")
            ax.set_aspect('equal')
            ax.invert_yaxis()
            return self._save(fig, f"head_{t}.png")
