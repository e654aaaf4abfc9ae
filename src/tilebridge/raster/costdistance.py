# src/tilebridge/raster/costdistance.py

"""
This module computes accumulated cost distance from source geometries over a friction layer.

Band 0 of the layer is the friction surface: the cost of crossing one unit of
map distance through a cell. Travel between neighbouring cells costs the
distance between their centres times the mean friction of the two cells,
which is what skimage.graph.MCP_Geometric accumulates.
"""

import logging
from collections import defaultdict
from typing import Dict, Tuple, List

import numpy as np
from rasterio.features import rasterize as rio_rasterize
from rasterio.transform import from_bounds
from shapely.geometry.base import BaseGeometry
from skimage.graph import MCP_Geometric

from tilebridge.keys import TileKey, SpatialKey
from .layout import Extent, LayoutDefinition
from .metadata import TileLayerMetadata
from .stitch import stitch_tiles
from .tile import MultibandTile

log = logging.getLogger(__name__)

__all__ = [
    "friction_surface",
    "source_cells",
    "accumulate_cost",
    "cost_distance_tiles"
]

def friction_surface(tile: MultibandTile) -> np.ndarray:
    """Band 0 as float64 friction; nodata and negative cells become impassable (inf)."""
    friction = tile.band(0).astype(np.float64)
    impassable = tile.nodata_mask()[0] | (friction < 0)
    friction[impassable] = np.inf
    return friction

def source_cells(geometries: List[BaseGeometry], extent: Extent, shape: Tuple[int, int]) -> np.ndarray:
    """
    Cells touched by the source geometries, as an (N, 2) array of (row, col).

    Geometries falling outside the extent contribute no cells.
    """
    if not geometries:
        return np.empty((0, 2), dtype=np.intp)

    touched = rio_rasterize(
        [(geom, 1) for geom in geometries],
        out_shape=shape,
        transform=from_bounds(*extent.bounds, shape[1], shape[0]),
        fill=0,
        all_touched=True,
        dtype="uint8"
    )
    return np.argwhere(touched == 1)

def accumulate_cost(
    friction: np.ndarray,
    starts: np.ndarray,
    cell_size: Tuple[float, float],
    max_distance: float
) -> np.ndarray:
    """
    Accumulated cost from the nearest start cell.

    Args:
        friction: 2D friction grid (inf marks impassable cells).
        starts: (N, 2) array of (row, col) start cells.
        cell_size: (cell_width, cell_height) in map units.
        max_distance: Costs above this value are left as NaN.

    Returns:
        float64 grid; unreachable cells and cells beyond max_distance are NaN.
    """
    result = np.full(friction.shape, np.nan, dtype=np.float64)

    starts = [tuple(cell) for cell in starts if np.isfinite(friction[tuple(cell)])]
    if not starts:
        log.warning("No passable source cell inside the layer, cost distance is empty")
        return result

    cell_width, cell_height = cell_size
    mcp = MCP_Geometric(friction, sampling=(cell_height, cell_width))
    costs, _ = mcp.find_costs(starts)

    reached = np.isfinite(costs) & (costs <= max_distance)
    result[reached] = costs[reached]
    return result

def _slice_of(key: TileKey) -> TileKey:
    # Non-spatial part of a key; every spatial key shares one slice
    return key.with_spatial(SpatialKey(0, 0))

def cost_distance_tiles(
    records: List[Tuple[TileKey, MultibandTile]],
    metadata: TileLayerMetadata,
    geometries: List[BaseGeometry],
    max_distance: float
) -> List[Tuple[TileKey, MultibandTile]]:
    """
    Cost distance over collected records.

    Records are processed per time slice (one slice for spatial layers): the
    slice's band-0 tiles are stitched into one friction grid, costs are
    accumulated from the geometries' cells and the result is cut back into
    the original keys.

    Returns:
        Single-band float64 (key, tile) records on the same layout.
    """
    layout: LayoutDefinition = metadata.layout
    rows, cols = metadata.tile_rows, metadata.tile_cols

    slices: Dict[TileKey, List[Tuple[TileKey, MultibandTile]]] = defaultdict(list)
    for key, tile in records:
        slices[_slice_of(key)].append((key, MultibandTile(tile.band(0)[np.newaxis], tile.nodata)))

    results = []
    for slice_key, slice_records in slices.items():
        mosaic, extent = stitch_tiles(slice_records, layout)
        friction = friction_surface(mosaic)
        starts = source_cells(geometries, extent, friction.shape)
        log.debug(f"Slice {slice_key}: {len(starts)} source cells over a {friction.shape} grid")

        costs = accumulate_cost(friction, starts, layout.cell_size, max_distance)

        min_col = min(k.spatial_key.col for k, _ in slice_records)
        min_row = min(k.spatial_key.row for k, _ in slice_records)
        for key, _ in slice_records:
            r0 = (key.spatial_key.row - min_row) * rows
            c0 = (key.spatial_key.col - min_col) * cols
            results.append((key, MultibandTile(costs[r0:r0 + rows, c0:c0 + cols].copy(), float("nan"))))

    return results
