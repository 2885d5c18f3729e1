"""
JSON-backed stores for per-frame detector output.

Each store owns one JSON file holding a single object keyed by time point
or frame. Writing a key that already exists replaces its record, so
re-running a frame never duplicates it, and every write rewrites the file
atomically. Records are validated with the pydantic schemas on the way in
and on the way out.
"""

import threading
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

from wormfeatures.detection.head import HeadResult
from wormfeatures.utils.json_utils import atomic_json_dump
from wormfeatures.utils.logging import get_logger
from wormfeatures.utils.schemas import (
    HeadPositionFile,
    HeadRecord,
    LandmarkFile,
    LandmarkRecord,
    validate_head_position_file,
    validate_landmark_file,
)

logger = get_logger(__name__)

Location = Tuple[float, ...]


class HeadPositionStore:
    """
    Head positions by time point.

    Example:
        store = HeadPositionStore(out_dir / "head_pos.json")
        store.write(t, find_head(centroids, imsize))
        result = store.read(t)
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> HeadPositionFile:
        if not self.path.exists():
            return HeadPositionFile()
        return validate_head_position_file(self.path)

    def write(self, t: int, result: HeadResult) -> None:
        self.write_many({t: result})

    def write_many(self, results: Mapping[int, HeadResult]) -> None:
        """Insert or replace several time points with one file rewrite."""
        with self._lock:
            data = self._load()
            for t, result in results.items():
                data.records[str(int(t))] = HeadRecord.model_validate(result.to_dict())
            atomic_json_dump(data.model_dump(), self.path, indent=2)
        logger.debug("Wrote %d head position(s) to %s", len(results), self.path)

    def read(self, t: int) -> Optional[HeadResult]:
        with self._lock:
            record = self._load().records.get(str(int(t)))
        return None if record is None else HeadResult.from_dict(record.model_dump())

    def read_all(self) -> Dict[int, HeadResult]:
        with self._lock:
            records = self._load().records
        return {
            int(t): HeadResult.from_dict(r.model_dump())
            for t, r in sorted(records.items(), key=lambda kv: int(kv[0]))
        }

    def __contains__(self, t: int) -> bool:
        with self._lock:
            return str(int(t)) in self._load().records


class LandmarkStore:
    """
    Locations of one landmark type (e.g. ``"hsn"``, ``"nerve_ring"``) by frame.

    A frame where the detector found nothing is stored with a null
    position, so it is distinguishable from a frame never processed.
    """

    def __init__(self, path: Union[str, Path], landmark: str, channel: Optional[int] = None):
        self.path = Path(path)
        self.landmark = landmark
        self.channel = channel
        self._lock = threading.Lock()

    def _load(self) -> LandmarkFile:
        if not self.path.exists():
            return LandmarkFile(landmark=self.landmark)
        data = validate_landmark_file(self.path)
        if data.landmark != self.landmark:
            raise ValueError(
                f"{self.path} holds '{data.landmark}' records, not '{self.landmark}'"
            )
        return data

    def write(self, frame: int, position: Optional[Sequence[float]],
              source: Optional[str] = None) -> None:
        self.write_many({frame: position}, source=source)

    def write_many(self, positions: Mapping[int, Optional[Sequence[float]]],
                   source: Optional[str] = None) -> None:
        with self._lock:
            data = self._load()
            for frame, position in positions.items():
                record = LandmarkRecord(
                    frame=int(frame),
                    channel=self.channel,
                    position=None if position is None else [float(v) for v in position],
                    source=source,
                )
                data.records[str(record.frame)] = record
            atomic_json_dump(data.model_dump(), self.path, indent=2)
        logger.debug("Wrote %d %s location(s) to %s", len(positions), self.landmark, self.path)

    def read(self, frame: int) -> Optional[Location]:
        """Stored location for ``frame``; None if not found or not processed."""
        with self._lock:
            record = self._load().records.get(str(int(frame)))
        if record is None or record.position is None:
            return None
        return tuple(record.position)

    def records(self) -> Dict[int, LandmarkRecord]:
        with self._lock:
            data = self._load()
        return {int(k): v for k, v in data.records.items()}

    def locations(self) -> Dict[int, Optional[Location]]:
        """Frame -> location for every processed frame (None when not found)."""
        return {
            frame: None if r.position is None else tuple(r.position)
            for frame, r in sorted(self.records().items())
        }

    def frames(self) -> Iterable[int]:
        return sorted(self.records())
