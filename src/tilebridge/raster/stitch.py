# src/tilebridge/raster/stitch.py

"""
This module mosaics the tiles of a layer into a single in-memory raster.
"""

import logging
from typing import Optional, Tuple, List

import numpy as np
import psutil

from tilebridge.config import get_config
from tilebridge.exceptions import EmptyLayerError, LayerValidationError
from tilebridge.keys import TileKey, SpatialKey
from .layout import Extent, LayoutDefinition
from .tile import MultibandTile

log = logging.getLogger(__name__)

__all__ = [
    "check_memory_safety",
    "stitch_tiles"
]

def check_memory_safety(shape: Tuple[int, ...], dtype: np.dtype, safety_factor: Optional[float] = None) -> Tuple[bool, str]:
    """
    Estimates if allocating an array is safe for available system RAM.

    Args:
        shape: Shape of the array to allocate.
        dtype: Cell dtype.
        safety_factor: Multiplier for working overhead. Defaults to the configured factor.

    Returns:
        Tuple[bool, str]:
            - bool: True if safe to allocate.
            - str: A human-readable message explaining the memory math.
    """
    if safety_factor is None:
        safety_factor = get_config().memory_safety_factor

    raw_bytes = int(np.prod(shape, dtype=np.int64)) * np.dtype(dtype).itemsize
    estimated = raw_bytes * safety_factor
    available = psutil.virtual_memory().available

    req_gb = estimated / (1024**3)
    avail_gb = available / (1024**3)

    if estimated > available:
        return False, (
            f"Insufficient Memory: stitched raster requires ~{req_gb:.2f} GB RAM "
            f"(Raw: {raw_bytes/(1024**3):.2f} GB * Factor: {safety_factor}), "
            f"but only {avail_gb:.2f} GB is available."
        )
    return True, f"Memory Check Passed: Requires ~{req_gb:.2f} GB (Available: {avail_gb:.2f} GB)."

def stitch_tiles(
    records: List[Tuple[TileKey, MultibandTile]],
    layout: LayoutDefinition
) -> Tuple[MultibandTile, Extent]:
    """
    Place every tile at its key's offset in one raster.

    Cells of the covered key range that no tile provides are nodata.

    Args:
        records: Collected (key, tile) pairs of a spatial layer.
        layout: Layout the keys refer to.

    Returns:
        (tile, extent): The mosaic and the map extent it covers.

    Raises:
        EmptyLayerError: If there are no records.
        LayerValidationError: If tiles disagree on band count or dtype.
        MemoryError: If the mosaic would not fit in available memory.
    """
    if not records:
        raise EmptyLayerError("Can not stitch an empty layer")

    first = records[0][1]
    band_count, dtype, nodata = first.band_count, first.dtype, first.nodata
    tile_rows, tile_cols = layout.tile_layout.tile_rows, layout.tile_layout.tile_cols

    cols = [key.spatial_key.col for key, _ in records]
    rows = [key.spatial_key.row for key, _ in records]
    min_col, max_col, min_row, max_row = min(cols), max(cols), min(rows), max(rows)

    shape = (
        band_count,
        (max_row - min_row + 1) * tile_rows,
        (max_col - min_col + 1) * tile_cols
    )

    is_safe, msg = check_memory_safety(shape, dtype)
    if not is_safe:
        raise MemoryError(msg)
    log.debug(msg)

    mosaic = MultibandTile.empty(band_count, shape[1], shape[2], dtype, nodata)
    for key, tile in records:
        if tile.band_count != band_count or tile.dtype != dtype:
            raise LayerValidationError(
                f"Tile at {key} is {tile.band_count}x{tile.dtype}, expected {band_count}x{dtype}"
            )
        r0 = (key.spatial_key.row - min_row) * tile_rows
        c0 = (key.spatial_key.col - min_col) * tile_cols
        mosaic.data[:, r0:r0 + tile_rows, c0:c0 + tile_cols] = tile.data

    extent = layout.key_to_extent(SpatialKey(min_col, min_row)).combine(
        layout.key_to_extent(SpatialKey(max_col, max_row))
    )
    log.info(f"Stitched {len(records)} tiles into a {shape[2]}x{shape[1]} raster")
    return mosaic, extent
