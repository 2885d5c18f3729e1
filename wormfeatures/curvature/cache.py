"""
Write-once cache of worm curves keyed by ``(time, channel)``.

Curve fitting is expensive and the same endpoint is shared by many time
point pairs, so curves are computed once and reused. ``get_or_compute`` is
safe to call from several threads: the first caller for a key computes it
while later callers for the same key wait for that result instead of
computing their own. Different keys never block each other during
computation.
"""

import threading
from typing import Callable, Dict, Hashable, Iterator, Tuple, Union

from wormfeatures.curvature.worm_curve import WormCurve
from wormfeatures.utils.logging import get_logger

logger = get_logger(__name__)

CurveKey = Tuple[int, int]


class CurveCache:
    """
    Example:
        cache = CurveCache()
        curve = cache.get_or_compute((t, ch), lambda: fit_worm_curve(img, head))
    """

    def __init__(self):
        self._entries: Dict[Hashable, Union[WormCurve, threading.Event]] = {}
        self._lock = threading.Lock()

    def get_or_compute(self, key: Hashable, compute_fn: Callable[[], WormCurve]) -> WormCurve:
        """
        Return the cached curve for ``key``, computing it on first request.

        If ``compute_fn`` raises, nothing is cached and the exception
        propagates to every caller waiting on that key.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                # We will build it; an Event marks the key as in progress
                event = threading.Event()
                self._entries[key] = event
                builder = True
            elif isinstance(entry, threading.Event):
                event = entry
                builder = False
            else:
                return entry

        if not builder:
            event.wait()
            with self._lock:
                result = self._entries.get(key)
            if result is None or isinstance(result, threading.Event):
                raise RuntimeError(f"Curve computation failed for {key}")
            return result

        try:
            logger.debug("Computing worm curve for %s", key)
            curve = compute_fn()
            with self._lock:
                self._entries[key] = curve
            return curve
        except BaseException:
            with self._lock:
                del self._entries[key]
            raise
        finally:
            event.set()

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return isinstance(self._entries.get(key), WormCurve)

    def __getitem__(self, key: Hashable) -> WormCurve:
        with self._lock:
            entry = self._entries.get(key)
        if not isinstance(entry, WormCurve):
            raise KeyError(key)
        return entry

    def __len__(self) -> int:
        with self._lock:
            return sum(isinstance(v, WormCurve) for v in self._entries.values())

    def __iter__(self) -> Iterator[Hashable]:
        with self._lock:
            keys = [k for k, v in self._entries.items() if isinstance(v, WormCurve)]
        return iter(keys)
