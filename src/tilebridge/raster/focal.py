# src/tilebridge/raster/focal.py

"""
This module implements focal (moving window) operations over tiled layers.

Each tile is first buffered with the edges of its eight neighbours so that a
window centred near a tile edge sees the same cells it would see on the full
raster. The buffered band is then filtered with scipy.ndimage and cropped back
to the tile.
"""

import math
import logging
from enum import Enum
from dataclasses import dataclass
from typing import Optional, Tuple, List

import numpy as np
import scipy.ndimage as ndimage
import dask.bag as db

from tilebridge.collection import group_by_key
from tilebridge.keys import TileKey, SpatialKey
from .metadata import TileLayerMetadata
from .tile import MultibandTile

log = logging.getLogger(__name__)

__all__ = [
    "FocalOperation",
    "NeighborhoodType",
    "Neighborhood",
    "build_neighborhood",
    "apply_focal",
    "focal_records"
]

class FocalOperation(Enum):
    """Focal operations, valued by the names accepted from the host."""
    SUM = "Sum"
    MIN = "Min"
    MAX = "Max"
    MEAN = "Mean"
    MEDIAN = "Median"
    MODE = "Mode"
    STANDARD_DEVIATION = "StandardDeviation"
    SLOPE = "Slope"
    ASPECT = "Aspect"

    @classmethod
    def from_name(cls, name: str) -> 'FocalOperation':
        key = name.strip().lower()
        for op in cls:
            if op.value.lower() == key or op.name.lower() == key:
                return op
        raise ValueError(f"Invalid focal operation '{name}'. Must be one of: {[o.value for o in cls]}")

class NeighborhoodType(Enum):
    """Neighbourhood shapes, valued by the names accepted from the host."""
    SQUARE = "Square"
    CIRCLE = "Circle"
    NESW = "Nesw"
    WEDGE = "Wedge"
    ANNULUS = "Annulus"

    @classmethod
    def from_name(cls, name: str) -> 'NeighborhoodType':
        key = name.strip().lower()
        for shape in cls:
            if shape.value.lower() == key or shape.name.lower() == key:
                return shape
        raise ValueError(f"Invalid neighborhood '{name}'. Must be one of: {[n.value for n in cls]}")

@dataclass(frozen=True)
class Neighborhood:
    """
    A window footprint centred on the cell being computed.

    Args:
        shape: Neighbourhood shape.
        extent: Cells between the centre and the window edge.
        footprint: Boolean (2*extent+1, 2*extent+1) array of included cells.
    """
    shape: NeighborhoodType
    extent: int
    footprint: np.ndarray

def _offsets(extent: int) -> Tuple[np.ndarray, np.ndarray]:
    dy, dx = np.mgrid[-extent:extent + 1, -extent:extent + 1]
    return dx, dy

def build_neighborhood(
    shape: NeighborhoodType,
    param1: float = 0.0,
    param2: float = 0.0,
    param3: float = 0.0
) -> Neighborhood:
    """
    Build a neighbourhood footprint from positional host parameters.

    Parameter meaning per shape:
        Square(extent=param1), Circle(radius=param1), Nesw(extent=param1),
        Wedge(radius=param1, start_angle=param2, end_angle=param3),
        Annulus(inner_radius=param1, outer_radius=param2).
    Angles are degrees counter-clockwise from east.
    """
    if shape is NeighborhoodType.ANNULUS:
        inner, outer = float(param1), float(param2)
        if outer <= 0 or inner > outer:
            raise ValueError(f"Annulus requires 0 <= inner <= outer and outer > 0, got ({inner}, {outer})")
        extent = int(math.ceil(outer))
        dx, dy = _offsets(extent)
        dist2 = dx ** 2 + dy ** 2
        return Neighborhood(shape, extent, (dist2 >= inner ** 2) & (dist2 <= outer ** 2))

    size = float(param1)
    if size < 1:
        raise ValueError(f"{shape.value} neighborhood requires a size >= 1, got {param1}")

    extent = int(math.ceil(size))
    dx, dy = _offsets(extent)

    if shape is NeighborhoodType.SQUARE:
        footprint = np.ones(dx.shape, dtype=bool)
    elif shape is NeighborhoodType.CIRCLE:
        footprint = dx ** 2 + dy ** 2 <= size ** 2
    elif shape is NeighborhoodType.NESW:
        footprint = np.abs(dx) + np.abs(dy) <= size
    else:
        start, end = float(param2) % 360.0, float(param3) % 360.0
        # Rows grow southward, so north is negative dy
        angles = np.degrees(np.arctan2(-dy, dx)) % 360.0
        if start <= end:
            in_wedge = (angles >= start) & (angles <= end)
        else:
            in_wedge = (angles >= start) | (angles <= end)
        footprint = (dx ** 2 + dy ** 2 <= size ** 2) & in_wedge
        footprint[extent, extent] = True

    return Neighborhood(shape, extent, footprint)

def _window_counts(valid: np.ndarray, footprint: np.ndarray) -> np.ndarray:
    return ndimage.correlate(valid.astype(np.float64), footprint.astype(np.float64), mode="constant", cval=0.0)

def _nan_mode(values: np.ndarray) -> float:
    values = values[~np.isnan(values)]
    if values.size == 0:
        return np.nan
    uniques, counts = np.unique(values, return_counts=True)
    return float(uniques[np.argmax(counts)])

def _horn_gradients(cells: np.ndarray, cell_width: float, cell_height: float) -> Tuple[np.ndarray, np.ndarray]:
    # Horn (1981) 3x3 finite differences; dz_dy is positive southward
    kx = np.array([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]], dtype=np.float64)
    ky = np.array([[-1, -2, -1], [0, 0, 0], [1, 2, 1]], dtype=np.float64)
    dz_dx = ndimage.correlate(cells, kx, mode="nearest") / (8.0 * cell_width)
    dz_dy = ndimage.correlate(cells, ky, mode="nearest") / (8.0 * cell_height)
    return dz_dx, dz_dy

def apply_focal(
    cells: np.ndarray,
    operation: FocalOperation,
    neighborhood: Neighborhood,
    cell_size: Tuple[float, float] = (1.0, 1.0),
    z_factor: float = 1.0
) -> np.ndarray:
    """
    Apply a focal operation to a 2D float array where NaN marks nodata.

    Nodata neighbours are ignored. Cells that are nodata themselves, or whose
    window holds no valid cell, come out as NaN.

    Returns:
        np.ndarray: float64 array of the same shape.
    """
    cells = cells.astype(np.float64, copy=False)
    valid = ~np.isnan(cells)
    footprint = neighborhood.footprint
    zeroed = np.where(valid, cells, 0.0)

    if operation in (FocalOperation.SLOPE, FocalOperation.ASPECT):
        filled = np.where(valid, cells, np.nanmean(cells) if valid.any() else 0.0)
        dz_dx, dz_dy = _horn_gradients(filled, *cell_size)

        if operation is FocalOperation.SLOPE:
            result = np.degrees(np.arctan(z_factor * np.hypot(dz_dx, dz_dy)))
        else:
            # Degrees clockwise from north, facing downslope; -1 for flat cells
            result = np.degrees(np.arctan2(-dz_dx, dz_dy)) % 360.0
            result = np.where((dz_dx == 0) & (dz_dy == 0), -1.0, result)
        return np.where(valid, result, np.nan)

    counts = _window_counts(valid, footprint)

    if operation is FocalOperation.SUM:
        result = ndimage.correlate(zeroed, footprint.astype(np.float64), mode="constant", cval=0.0)
    elif operation is FocalOperation.MEAN:
        sums = ndimage.correlate(zeroed, footprint.astype(np.float64), mode="constant", cval=0.0)
        with np.errstate(invalid="ignore", divide="ignore"):
            result = sums / counts
    elif operation is FocalOperation.STANDARD_DEVIATION:
        weights = footprint.astype(np.float64)
        sums = ndimage.correlate(zeroed, weights, mode="constant", cval=0.0)
        squares = ndimage.correlate(zeroed ** 2, weights, mode="constant", cval=0.0)
        with np.errstate(invalid="ignore", divide="ignore"):
            mean = sums / counts
            result = np.sqrt(np.maximum(squares / counts - mean ** 2, 0.0))
    elif operation is FocalOperation.MIN:
        result = ndimage.minimum_filter(np.where(valid, cells, np.inf), footprint=footprint, mode="constant", cval=np.inf)
    elif operation is FocalOperation.MAX:
        result = ndimage.maximum_filter(np.where(valid, cells, -np.inf), footprint=footprint, mode="constant", cval=-np.inf)
    elif operation is FocalOperation.MEDIAN:
        result = ndimage.generic_filter(cells, np.nanmedian, footprint=footprint, mode="constant", cval=np.nan)
    else:
        result = ndimage.generic_filter(cells, _nan_mode, footprint=footprint, mode="constant", cval=np.nan)

    return np.where(valid & (counts > 0), result, np.nan)

def _neighbour_offers(record: Tuple[TileKey, MultibandTile]) -> List[Tuple[TileKey, Tuple[int, int, np.ndarray, Optional[float]]]]:
    key, tile = record
    sk = key.spatial_key
    band = tile.band(0)
    nodata = tile.nodata
    offers = []
    for dr in (-1, 0, 1):
        for dc in (-1, 0, 1):
            target = SpatialKey(sk.col - dc, sk.row - dr)
            if target.col < 0 or target.row < 0:
                continue
            offers.append((key.with_spatial(target), (dc, dr, band, nodata)))
    return offers

def buffer_tile(
    offers: List[Tuple[int, int, np.ndarray, Optional[float]]],
    rows: int,
    cols: int,
    margin: int
) -> Optional[np.ndarray]:
    """
    Assemble a centre tile and its neighbours' edges into one buffered float array.

    Returns None when the centre tile itself is missing from the offers.
    """
    if not any(dc == 0 and dr == 0 for dc, dr, _, _ in offers):
        return None

    buffered = np.full((rows + 2 * margin, cols + 2 * margin), np.nan, dtype=np.float64)
    for dc, dr, band, nodata in offers:
        values = MultibandTile(band, nodata)
        cells = np.where(values.nodata_mask()[0], np.nan, band.astype(np.float64))

        top, left = margin + dr * rows, margin + dc * cols
        r0, r1 = max(top, 0), min(top + rows, buffered.shape[0])
        c0, c1 = max(left, 0), min(left + cols, buffered.shape[1])
        if r0 >= r1 or c0 >= c1:
            continue
        buffered[r0:r1, c0:c1] = cells[r0 - top:r1 - top, c0 - left:c1 - left]
    return buffered

def focal_records(
    records: db.Bag,
    metadata: TileLayerMetadata,
    operation: str,
    neighborhood: str,
    param1: float = 0.0,
    param2: float = 0.0,
    param3: float = 0.0
) -> Tuple[db.Bag, TileLayerMetadata]:
    """
    Run a focal operation over band 0 of every tile.

    Slope and Aspect always use a 3x3 square window; for Slope, param1 is the
    z-factor (0 means 1.0).

    Returns:
        (records, metadata) of single-band float64 tiles on the same layout.
    """
    op = FocalOperation.from_name(operation)
    z_factor = 1.0

    if op in (FocalOperation.SLOPE, FocalOperation.ASPECT):
        window = build_neighborhood(NeighborhoodType.SQUARE, 1)
        if op is FocalOperation.SLOPE and param1:
            z_factor = float(param1)
    else:
        window = build_neighborhood(NeighborhoodType.from_name(neighborhood), param1, param2, param3)

    rows, cols = metadata.tile_rows, metadata.tile_cols
    margin = min(window.extent, rows, cols)
    cell_size = metadata.layout.cell_size

    log.info(f"Focal {op.value} over {window.shape.value} neighborhood (extent={window.extent})")

    def compute(group):
        key, offers = group
        buffered = buffer_tile(offers, rows, cols, margin)
        if buffered is None:
            return key, None
        result = apply_focal(buffered, op, window, cell_size, z_factor)
        return key, MultibandTile(result[margin:margin + rows, margin:margin + cols], float("nan"))

    focal = group_by_key(records.map(_neighbour_offers).flatten()).map(compute)
    focal = focal.filter(lambda record: record[1] is not None)
    return focal, metadata.copy(cell_type="float64")
