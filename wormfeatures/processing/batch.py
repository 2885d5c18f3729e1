"""
Time-series batch runners.

Each runner applies one detector or scorer over many frames. A frame with
a data problem never stops the batch:

- flagged head results are kept (and stored) but logged,
- detectors that find nothing contribute ``None`` and are logged,
- pairs that cannot be scored are left out of the result and logged.

A ``PreconditionViolation`` (bad configuration, mismatched dimensions,
curves shorter than ``tailpt``) affects every frame alike, so it is not
caught and aborts the run.

Usage:
    from wormfeatures.processing.batch import run_head_detection

    heads = run_head_detection(centroids_by_t, imsize=(512, 512),
                               store=HeadPositionStore(out / "head_pos.json"))
"""

from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from wormfeatures.curvature.cache import CurveCache
from wormfeatures.curvature.difficulty import DifficultyScore, hsn_nr_difficulty, wormcurve_difficulty
from wormfeatures.curvature.worm_curve import fit_worm_curve
from wormfeatures.detection.head import HeadResult, QualityFlag, find_head
from wormfeatures.detection.landmarks import (
    Location,
    find_gut_granules_with_config,
    find_hsn,
    find_nerve_ring_with_config,
)
from wormfeatures.detection.region import create_policy
from wormfeatures.utils.config import (
    DEFAULT_CONFIG,
    CurveConfig,
    DifficultyConfig,
    GutConfig,
    HeadConfig,
    HsnConfig,
    NerveRingConfig,
)
from wormfeatures.utils.logging import ProcessingTimer, get_logger

logger = get_logger(__name__)

Pair = Tuple[int, int]


def _progress(items: Iterable, progress: bool, desc: str, total: Optional[int] = None) -> Iterable:
    if progress:
        return tqdm(items, desc=desc, total=total)
    return items


def _flush(store, pending: dict) -> None:
    if store is not None and pending:
        store.write_many(pending)
    pending.clear()


@contextmanager
def _flushing(store, pending: dict):
    # Frames finished before an abort are still written
    try:
        yield
    finally:
        _flush(store, pending)


def run_head_detection(
    centroids_by_t: Mapping[int, Any],
    imsize: Sequence[int],
    config: Optional[HeadConfig] = None,
    store=None,
    figure_sink=None,
    progress: bool = False,
    flush_every: int = 50,
) -> Dict[int, HeadResult]:
    """
    Head detection for every time point.

    Args:
        centroids_by_t: Time point -> ``(N, 2|3)`` centroids
        imsize: Image size shared by all time points
        config: Head parameters (defaults if None)
        store: Optional HeadPositionStore; every result is written
        figure_sink: Optional object with ``save_head``
        progress: Show a tqdm progress bar
        flush_every: Results buffered before each store write

    Returns:
        Time point -> HeadResult, flagged results included
    """
    if config is None:
        config = HeadConfig()
    results: Dict[int, HeadResult] = {}
    pending: Dict[int, HeadResult] = {}
    n_flagged = 0

    with ProcessingTimer(logger, f"Head detection ({len(centroids_by_t)} time points)"), \
            _flushing(store, pending):
        for t in _progress(sorted(centroids_by_t), progress, "Head detection"):
            centroids = centroids_by_t[t]
            result = find_head(centroids, imsize, config)
            if not result.is_clean:
                n_flagged += 1
                logger.warning("t=%d flagged: %s", t, sorted(f.value for f in result.quality_flags))
            results[t] = result
            pending[t] = result
            if len(pending) >= flush_every:
                _flush(store, pending)
            if figure_sink is not None:
                figure_sink.save_head(t, centroids, result)

    logger.info("Head detection: %d time points, %d flagged", len(results), n_flagged)
    return results


def run_gut_granules(
    volumes: Mapping[Hashable, np.ndarray],
    config: Optional[GutConfig] = None,
    sink: Optional[Callable[[Hashable, np.ndarray], None]] = None,
    progress: bool = False,
) -> Dict[Hashable, np.ndarray]:
    """
    Gut-granule masks for several volumes.

    Args:
        volumes: Name -> intensity volume
        config: Gut parameters (defaults if None)
        sink: Optional ``sink(name, mask)`` called for every mask, e.g. to
            write it next to the source image

    Returns:
        Name -> uint8 mask (1 = not a gut granule)
    """
    if config is None:
        config = GutConfig.from_config(DEFAULT_CONFIG)
    masks = {}
    for name in _progress(list(volumes), progress, "Gut granules"):
        mask = find_gut_granules_with_config(volumes[name], config)
        masks[name] = mask
        if sink is not None:
            sink(name, mask)
    return masks


def _run_landmark(
    name: str,
    detect: Callable[[np.ndarray], Optional[Location]],
    volumes_by_frame: Mapping[int, np.ndarray],
    store,
    progress: bool,
    flush_every: int = 50,
) -> Dict[int, Optional[Location]]:
    locations: Dict[int, Optional[Location]] = {}
    pending: Dict[int, Optional[Location]] = {}
    with ProcessingTimer(logger, f"{name} detection ({len(volumes_by_frame)} frames)"), \
            _flushing(store, pending):
        for frame in _progress(sorted(volumes_by_frame), progress, name):
            location = detect(volumes_by_frame[frame])
            if location is None:
                logger.warning("%s not found in frame %d", name, frame)
            locations[frame] = location
            pending[frame] = location
            if len(pending) >= flush_every:
                _flush(store, pending)

    n_found = sum(loc is not None for loc in locations.values())
    logger.info("%s: found in %d of %d frames", name, n_found, len(locations))
    return locations


def run_hsn_detection(
    volumes_by_frame: Mapping[int, np.ndarray],
    config: Optional[HsnConfig] = None,
    store=None,
    progress: bool = False,
    flush_every: int = 50,
) -> Dict[int, Optional[Location]]:
    """HSN location per frame (None where nothing survives filtering)."""
    if config is None:
        config = HsnConfig.from_config(DEFAULT_CONFIG)
    policy = create_policy(config.selection, config.radius_detection)
    return _run_landmark(
        "HSN", lambda vol: find_hsn(vol, config, policy),
        volumes_by_frame, store, progress, flush_every
    )


def run_nerve_ring_detection(
    volumes_by_frame: Mapping[int, np.ndarray],
    config: Optional[NerveRingConfig] = None,
    store=None,
    progress: bool = False,
    flush_every: int = 50,
) -> Dict[int, Optional[Location]]:
    """Nerve-ring location per frame (None where nothing is above threshold)."""
    if config is None:
        config = NerveRingConfig.from_config(DEFAULT_CONFIG)
    return _run_landmark(
        "Nerve ring", lambda vol: find_nerve_ring_with_config(vol, config),
        volumes_by_frame, store, progress, flush_every
    )


def _head_usable(head: Optional[HeadResult], skip_flagged: bool) -> bool:
    if head is None or not head.has_position:
        return False
    # Position is usable but the orientation may not be
    if skip_flagged:
        return not (head.quality_flags & {QualityFlag.HEAD_MISMATCH, QualityFlag.TAIL_MISMATCH})
    return True


def score_wormcurve_pairs(
    pairs: Sequence[Pair],
    load_volume: Callable[[int, int], np.ndarray],
    head_results: Mapping[int, HeadResult],
    channel: int = 0,
    config: Optional[CurveConfig] = None,
    cache: Optional[CurveCache] = None,
    max_fixed_t: Optional[int] = None,
    figure_sink=None,
    workers: int = 1,
    skip_flagged: bool = True,
    progress: bool = False,
) -> Dict[Pair, DifficultyScore]:
    """
    Worm-curvature difficulty for many ``(t1, t2)`` pairs.

    Curves are fitted first, once per distinct ``(t, channel)``, and the
    pairs are scored afterwards from the cache, so a time point shared by
    several pairs is loaded and fitted only once.

    Args:
        pairs: ``(fixed, moving)`` time points
        load_volume: ``load_volume(t, channel)`` returning the (denoised)
            volume. Moving frames are requested as ``t2 + max_fixed_t``.
        head_results: Head results keyed the same way as ``load_volume``
        channel: Channel to score
        config: Curve parameters (defaults if None)
        cache: Curve cache, shared across calls if supplied
        max_fixed_t: Frame offset of the moving dataset
        figure_sink: Optional object with ``save_worm_curves``
        workers: Threads used for fitting and scoring
        skip_flagged: Skip pairs whose head result has a head/tail mismatch

    Returns:
        Pair -> DifficultyScore for every pair that could be scored

    Raises:
        CurveTooShortError: If any fitted curve is shorter than ``tailpt + 1``
    """
    if config is None:
        config = CurveConfig()
    if cache is None:
        cache = CurveCache()
    offset = max_fixed_t or 0

    usable: List[Pair] = []
    for t1, t2 in pairs:
        bad = [t for t in (t1, t2 + offset) if not _head_usable(head_results.get(t), skip_flagged)]
        if bad:
            logger.warning("Skipping pair %d -> %d: no usable head for t=%s", t1, t2, bad)
            continue
        usable.append((t1, t2))

    needed = sorted({t for t1, t2 in usable for t in (t1, t2 + offset)})

    def fit(t: int) -> None:
        head = head_results[t]
        cache.get_or_compute(
            (t, channel),
            lambda: fit_worm_curve(load_volume(t, channel), head.head_pos[:2],
                                   config.num_points, config.downscale),
        )

    def score(pair: Pair) -> DifficultyScore:
        t1, t2 = pair
        # Every curve is cached by now, so no volume is needed
        return wormcurve_difficulty(
            cache, None, None, t1, t2, head_results[t1], head_results[t2 + offset],
            channel=channel, config=config, max_fixed_t=max_fixed_t, figure_sink=figure_sink,
        )

    with ProcessingTimer(logger, f"Worm-curve difficulty ({len(usable)} pairs, {len(needed)} curves)"):
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                list(_progress(executor.map(fit, needed), progress, "Fitting curves", len(needed)))
                scores = list(_progress(executor.map(score, usable), progress, "Scoring", len(usable)))
        else:
            for t in _progress(needed, progress, "Fitting curves"):
                fit(t)
            scores = [score(p) for p in _progress(usable, progress, "Scoring")]

    return dict(zip(usable, scores))


def _as_locations(source) -> Mapping[int, Any]:
    if hasattr(source, 'locations'):
        return source.locations()
    return source


def score_hsn_nr_pairs(
    pairs: Sequence[Pair],
    hsn_locations,
    nr_locations,
    config: Optional[DifficultyConfig] = None,
    max_fixed_t: Optional[int] = None,
) -> Dict[Pair, DifficultyScore]:
    """
    HSN / nerve-ring difficulty for many ``(frame1, frame2)`` pairs.

    Args:
        hsn_locations, nr_locations: LandmarkStore or frame -> location mapping
        config: Weighting (defaults if None)
        max_fixed_t: Frame offset of the moving dataset

    Returns:
        Pair -> DifficultyScore; pairs with a missing landmark are left out
    """
    if config is None:
        config = DifficultyConfig()
    hsn = _as_locations(hsn_locations)
    nr = _as_locations(nr_locations)

    scores: Dict[Pair, DifficultyScore] = {}
    for frame1, frame2 in pairs:
        score = hsn_nr_difficulty(frame1, frame2, hsn, nr, config.nr_weight, max_fixed_t)
        if score is not None:
            scores[(frame1, frame2)] = score
    logger.info("HSN/NR difficulty: scored %d of %d pairs", len(scores), len(pairs))
    return scores
