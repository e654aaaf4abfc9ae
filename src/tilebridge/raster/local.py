# src/tilebridge/raster/local.py

"""
This module implements local (cell-by-cell) operations on tiles.

Arithmetic is evaluated in float64 and cast back to the tile's dtype. Cells
that are nodata in any input stay nodata, and non-finite results (division by
zero) become nodata.
"""

import logging
import operator
from enum import Enum
from typing import Union, Optional, Dict, Callable

import numpy as np

from tilebridge.exceptions import LayerValidationError
from .tile import MultibandTile, default_nodata

log = logging.getLogger(__name__)

__all__ = [
    "LocalOperation",
    "BoundaryType",
    "local_scalar",
    "local_tiles",
    "reclassify_tile"
]

Number = Union[int, float]

class LocalOperation(Enum):
    ADD = "add"
    SUBTRACT = "subtract"
    MULTIPLY = "multiply"
    DIVIDE = "divide"

    @property
    def func(self) -> Callable[[np.ndarray, np.ndarray], np.ndarray]:
        return _FUNCS[self]

_FUNCS = {
    LocalOperation.ADD: operator.add,
    LocalOperation.SUBTRACT: operator.sub,
    LocalOperation.MULTIPLY: operator.mul,
    LocalOperation.DIVIDE: operator.truediv
}

class BoundaryType(Enum):
    """
    How reclassification breaks bound the values they catch.

    Modes:
        GREATER_THAN: A value maps to the largest break strictly below it.
        GREATER_THAN_OR_EQUAL_TO: A value maps to the largest break at or below it.
        LESS_THAN: A value maps to the smallest break strictly above it.
        LESS_THAN_OR_EQUAL_TO: A value maps to the smallest break at or above it.
        EXACT: A value maps only to an equal break.
    """
    GREATER_THAN = "GreaterThan"
    GREATER_THAN_OR_EQUAL_TO = "GreaterThanOrEqualTo"
    LESS_THAN = "LessThan"
    LESS_THAN_OR_EQUAL_TO = "LessThanOrEqualTo"
    EXACT = "Exact"

    @classmethod
    def from_name(cls, name: Union[str, 'BoundaryType']) -> 'BoundaryType':
        if isinstance(name, BoundaryType):
            return name
        key = name.strip().lower()
        for boundary in cls:
            if boundary.value.lower() == key or boundary.name.lower() == key:
                return boundary
        raise ValueError(f"Invalid boundary type '{name}'. Must be one of: {[b.value for b in cls]}")

def _finish(values: np.ndarray, invalid: np.ndarray, like: MultibandTile) -> MultibandTile:
    """Cast float64 results back to the tile's dtype, writing nodata where invalid."""
    dtype = like.dtype
    invalid = invalid | ~np.isfinite(values)

    if dtype.kind != "f":
        info = np.iinfo(dtype)
        values = np.clip(np.trunc(np.nan_to_num(values, nan=0.0, posinf=0.0, neginf=0.0)), info.min, info.max)

    out = values.astype(dtype)
    out[invalid] = like.fill_value
    return like.with_data(out)

def local_scalar(tile: MultibandTile, op: LocalOperation, value: Number, reverse: bool = False) -> MultibandTile:
    """
    Combine every band of a tile with a scalar.

    Args:
        tile: Input tile.
        op: Arithmetic operation.
        value: Scalar operand.
        reverse: Put the scalar on the left (value - cell, value / cell).
    """
    cells = tile.data.astype(np.float64)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        values = op.func(value, cells) if reverse else op.func(cells, value)
    return _finish(values, tile.nodata_mask(), tile)

def local_tiles(left: MultibandTile, right: MultibandTile, op: LocalOperation) -> MultibandTile:
    """
    Combine two tiles band by band. The result keeps the left tile's cell type.

    Raises:
        LayerValidationError: If band counts or dimensions differ.
    """
    if left.band_count != right.band_count:
        raise LayerValidationError(
            f"Cannot {op.value} tiles with {left.band_count} and {right.band_count} bands"
        )
    if left.dimensions != right.dimensions:
        raise LayerValidationError(
            f"Cannot {op.value} tiles of dimensions {left.dimensions} and {right.dimensions}"
        )

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        values = op.func(left.data.astype(np.float64), right.data.astype(np.float64))
    return _finish(values, left.nodata_mask() | right.nodata_mask(), left)

def reclassify_tile(
    tile: MultibandTile,
    value_map: Dict[Number, Number],
    boundary_type: Union[str, BoundaryType] = BoundaryType.LESS_THAN_OR_EQUAL_TO,
    replace_nodata_with: Optional[Number] = None
) -> MultibandTile:
    """
    Map cell values through class breaks.

    Cells no break catches become nodata. The result is int32 when every class
    value is an integer and float64 otherwise.

    Args:
        tile: Input tile.
        value_map: Break value to class value.
        boundary_type: How breaks bound the values they catch.
        replace_nodata_with: Class value for nodata cells. They stay nodata when None.
    """
    if not value_map:
        raise ValueError("value_map must hold at least one break")

    boundary = BoundaryType.from_name(boundary_type)
    breaks = np.array(sorted(value_map), dtype=np.float64)
    classes = np.array([value_map[b] for b in sorted(value_map)], dtype=np.float64)

    integral = all(isinstance(v, (int, np.integer)) for v in value_map.values())
    if replace_nodata_with is not None:
        integral = integral and isinstance(replace_nodata_with, (int, np.integer))
    dtype = np.dtype("int32") if integral else np.dtype("float64")
    nodata = default_nodata(dtype)

    cells = tile.data.astype(np.float64)
    missing = tile.nodata_mask()

    if boundary is BoundaryType.EXACT:
        idx = np.searchsorted(breaks, cells, side="left")
        idx_c = np.clip(idx, 0, len(breaks) - 1)
        caught = (idx < len(breaks)) & (breaks[idx_c] == cells)
    elif boundary is BoundaryType.LESS_THAN_OR_EQUAL_TO:
        idx = np.searchsorted(breaks, cells, side="left")
        caught = idx < len(breaks)
    elif boundary is BoundaryType.LESS_THAN:
        idx = np.searchsorted(breaks, cells, side="right")
        caught = idx < len(breaks)
    elif boundary is BoundaryType.GREATER_THAN_OR_EQUAL_TO:
        idx = np.searchsorted(breaks, cells, side="right") - 1
        caught = idx >= 0
    else:
        idx = np.searchsorted(breaks, cells, side="left") - 1
        caught = idx >= 0

    idx = np.clip(idx, 0, len(breaks) - 1)
    out = np.full(cells.shape, nodata, dtype=dtype)
    hit = caught & ~missing
    out[hit] = classes[idx[hit]].astype(dtype)

    if replace_nodata_with is not None:
        out[missing] = replace_nodata_with

    return MultibandTile(out, nodata)
