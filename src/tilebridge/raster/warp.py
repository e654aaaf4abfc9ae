# src/tilebridge/raster/warp.py

"""
This module moves tiles from one layout (and CRS) onto another.

Reprojection and retiling share the same two steps: every source tile is
offered to each target key whose extent it overlaps, then each target tile is
warped together from the pieces it received with rasterio.
"""

import logging
from typing import Union, Optional, Tuple, List

import numpy as np
import dask.bag as db
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.transform import Affine
from rasterio.warp import calculate_default_transform, reproject as rio_reproject

from tilebridge.collection import group_by_key
from tilebridge.keys import TileKey, SpatialKey
from .layout import LayoutDefinition, FloatingLayoutScheme, ZoomedLayoutScheme
from .metadata import TileLayerMetadata
from .tile import MultibandTile

log = logging.getLogger(__name__)

__all__ = [
    "split_to_layout",
    "merge_pieces",
    "warp_records",
    "target_cell_size",
    "layout_from_scheme"
]

Piece = Tuple[np.ndarray, Affine, Optional[Union[float, int]]]

def split_to_layout(
    key: TileKey,
    tile: MultibandTile,
    src_layout: LayoutDefinition,
    src_crs: CRS,
    dst_layout: LayoutDefinition,
    dst_crs: CRS
) -> List[Tuple[TileKey, Piece]]:
    """
    Offer one source tile to every target key it overlaps.

    Args:
        key: Source key (its non-spatial part is carried to the target keys).
        tile: Source tile.
        src_layout: Layout the source key refers to.
        src_crs: CRS of the source layout.
        dst_layout: Target layout.
        dst_crs: CRS of the target layout.

    Returns:
        List of (target_key, (cells, transform, nodata)) pieces.
    """
    tile_extent = src_layout.key_to_extent(key).reproject(src_crs, dst_crs)
    key_range = dst_layout.key_range(tile_extent)
    if key_range is None:
        return []

    piece = (tile.data, src_layout.tile_transform(key), tile.nodata)
    min_key, max_key = key_range
    pieces = []
    for row in range(min_key.row, max_key.row + 1):
        for col in range(min_key.col, max_key.col + 1):
            target = key.with_spatial(SpatialKey(col, row))
            pieces.append((target, piece))
    return pieces

def merge_pieces(
    key: TileKey,
    pieces: List[Piece],
    src_crs: CRS,
    dst_layout: LayoutDefinition,
    dst_crs: CRS,
    resampling: Resampling
) -> Optional[MultibandTile]:
    """
    Warp every piece offered to a target key into one tile.

    Pieces are warped as float64 with NaN marking cells outside the piece or
    without data, so coverage does not depend on the cell type having a
    nodata value. Pieces are composited in order; a cell keeps the first
    valid value it receives. Tiles that end up without any valid cell are
    dropped (None).
    """
    cells, _, nodata = pieces[0]
    band_count, dtype = cells.shape[0], cells.dtype
    rows = dst_layout.tile_layout.tile_rows
    cols = dst_layout.tile_layout.tile_cols

    result = MultibandTile.empty(band_count, rows, cols, dtype, nodata)
    dst_transform = dst_layout.tile_transform(key)
    filled = np.zeros(result.data.shape, dtype=bool)

    for src_cells, src_transform, src_nodata in pieces:
        missing = MultibandTile(src_cells, src_nodata).nodata_mask()
        source = np.where(missing, np.nan, src_cells.astype(np.float64))

        warped = np.full((band_count, rows, cols), np.nan, dtype=np.float64)
        rio_reproject(
            source=source,
            destination=warped,
            src_transform=src_transform,
            src_crs=src_crs,
            src_nodata=np.nan,
            dst_transform=dst_transform,
            dst_crs=dst_crs,
            dst_nodata=np.nan,
            resampling=resampling
        )

        valid = ~np.isnan(warped) & ~filled
        if dtype.kind != "f":
            info = np.iinfo(dtype)
            warped = np.clip(np.rint(warped), info.min, info.max)
        result.data[valid] = warped[valid].astype(dtype)
        filled |= valid

    if not filled.any():
        return None
    return result

def warp_records(
    records: db.Bag,
    metadata: TileLayerMetadata,
    dst_layout: LayoutDefinition,
    dst_crs: CRS,
    resampling: Resampling
) -> Tuple[db.Bag, TileLayerMetadata]:
    """
    Move every record of a layer onto a target layout.

    Returns:
        (records, metadata) for the new layout. The new extent is the source
        extent expressed in the target CRS and the bounds are the keys covering it.
    """
    src_layout, src_crs = metadata.layout, metadata.crs

    def split(record):
        return split_to_layout(record[0], record[1], src_layout, src_crs, dst_layout, dst_crs)

    def merge(group):
        return group[0], merge_pieces(group[0], group[1], src_crs, dst_layout, dst_crs, resampling)

    warped = group_by_key(records.map(split).flatten()).map(merge)
    warped = warped.filter(lambda record: record[1] is not None)

    new_extent = metadata.extent.reproject(src_crs, dst_crs)
    clipped = new_extent.intersection(dst_layout.extent) or new_extent

    bounds = None
    key_range = dst_layout.key_range(clipped)
    if metadata.bounds is not None and key_range is not None:
        bounds = metadata.bounds.with_spatial_bounds(*key_range)

    new_metadata = metadata.copy(layout=dst_layout, extent=clipped, crs=dst_crs, bounds=bounds)
    return warped, new_metadata

def target_cell_size(metadata: TileLayerMetadata, dst_crs: CRS) -> Tuple[float, float]:
    """Cell size a layer has once reprojected, preserving its pixel density."""
    extent = metadata.extent
    width = max(1, round(extent.width / metadata.layout.cell_width))
    height = max(1, round(extent.height / metadata.layout.cell_height))

    if metadata.crs == dst_crs:
        return metadata.layout.cell_width, metadata.layout.cell_height

    dst_transform, _, _ = calculate_default_transform(
        metadata.crs,
        dst_crs,
        width,
        height,
        *extent.bounds
    )
    return abs(dst_transform.a), abs(dst_transform.e)

def layout_from_scheme(
    scheme: Union[FloatingLayoutScheme, ZoomedLayoutScheme],
    metadata: TileLayerMetadata,
    dst_crs: CRS
) -> Tuple[Optional[int], LayoutDefinition]:
    """
    Pick the target layout of a layer under a layout scheme.

    Returns:
        (zoom, layout). zoom is None for floating layouts, which are not pyramid levels.
    """
    cell_width, cell_height = target_cell_size(metadata, dst_crs)

    if isinstance(scheme, ZoomedLayoutScheme):
        zoom, layout = scheme.level_for(cell_width)
        log.debug(f"Zoomed scheme matched cell width {cell_width:.6f} to zoom {zoom}")
        return zoom, layout

    extent = metadata.extent.reproject(metadata.crs, dst_crs)
    layout = scheme.layout_for(extent, cell_width, cell_height)
    log.debug(f"Floating scheme layout: {layout.tile_layout}")
    return None, layout
