"""
Schema validation for the files written by the feature detectors.

Uses Pydantic for validation with clear error messages.

Usage:
    from wormfeatures.utils.schemas import validate_head_position_file

    heads = validate_head_position_file("/path/to/head_pos.json")
    record = heads.records["12"]
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Coordinates are stored with NaN written as null
MaybeFloat = Optional[float]

QualityFlagName = Literal["head_mismatch", "tail_mismatch", "low_population", "near_edge"]


# =============================================================================
# Head positions
# =============================================================================

class HeadRecord(BaseModel):
    """One time point of head detection output."""
    model_config = ConfigDict(extra="forbid")

    head_pos: List[MaybeFloat] = Field(..., min_length=2, max_length=3)
    quality_flags: List[QualityFlagName] = Field(default_factory=list)
    crop_x: List[int] = Field(..., min_length=2, max_length=2)
    crop_y: List[int] = Field(..., min_length=2, max_length=2)
    crop_z: Optional[List[int]] = Field(None, min_length=2, max_length=2)
    theta: MaybeFloat = None
    centroid: List[MaybeFloat] = Field(default_factory=list, max_length=3)
    tail_pos: Optional[List[MaybeFloat]] = Field(None, min_length=2, max_length=3)

    @field_validator('quality_flags')
    @classmethod
    def unique_flags(cls, v: List[str]) -> List[str]:
        return sorted(set(v))


class HeadPositionFile(BaseModel):
    """Head positions keyed by time point (as a string, JSON object keys)."""
    model_config = ConfigDict(extra="allow")

    version: int = 1
    records: Dict[str, HeadRecord] = Field(default_factory=dict)

    @field_validator('records')
    @classmethod
    def integer_keys(cls, v: Dict[str, HeadRecord]) -> Dict[str, HeadRecord]:
        for key in v:
            int(key)
        return v


# =============================================================================
# Landmarks (HSN, nerve ring)
# =============================================================================

class LandmarkRecord(BaseModel):
    """One frame of landmark output; ``position`` is None when not found."""
    model_config = ConfigDict(extra="forbid")

    frame: int = Field(..., ge=0)
    channel: Optional[int] = None
    position: Optional[List[float]] = Field(None, min_length=2, max_length=3)
    source: Optional[str] = None


class LandmarkFile(BaseModel):
    """All records of one landmark type, keyed by frame."""
    model_config = ConfigDict(extra="allow")

    version: int = 1
    landmark: str
    records: Dict[str, LandmarkRecord] = Field(default_factory=dict)

    @field_validator('records')
    @classmethod
    def keys_match_frames(cls, v: Dict[str, LandmarkRecord]) -> Dict[str, LandmarkRecord]:
        for key, record in v.items():
            if int(key) != record.frame:
                raise ValueError(f"Record key {key} does not match frame {record.frame}")
        return v


# =============================================================================
# Validation Functions
# =============================================================================

def validate_json_file(
    file_path: Union[str, Path],
    schema: Type[BaseModel],
    raise_on_error: bool = True
) -> Optional[BaseModel]:
    """
    Validate a JSON file against a schema.

    Args:
        file_path: Path to JSON file
        schema: Pydantic model class to validate against
        raise_on_error: If True, raise exception on validation error

    Returns:
        Validated model instance, or None if validation fails and raise_on_error=False
    """
    file_path = Path(file_path)

    if not file_path.exists():
        if raise_on_error:
            raise FileNotFoundError(f"File not found: {file_path}")
        return None

    try:
        with open(file_path, 'r') as f:
            data = json.load(f)
        return schema.model_validate(data)

    except json.JSONDecodeError as e:
        if raise_on_error:
            raise ValueError(f"Invalid JSON in {file_path}: {e}") from e
        return None

    except ValueError as e:
        # pydantic.ValidationError is a ValueError
        if raise_on_error:
            raise ValueError(f"Validation failed for {file_path}: {e}") from e
        return None


def validate_head_position_file(
    file_path: Union[str, Path],
    raise_on_error: bool = True
) -> Optional[HeadPositionFile]:
    """Validate a head-position file."""
    return validate_json_file(file_path, HeadPositionFile, raise_on_error)


def validate_landmark_file(
    file_path: Union[str, Path],
    raise_on_error: bool = True
) -> Optional[LandmarkFile]:
    """Validate an HSN or nerve-ring landmark file."""
    return validate_json_file(file_path, LandmarkFile, raise_on_error)
