# src/tilebridge/raster/rasterize.py

"""
This module burns geometries into cell grids, either to build a new tile or
to mask the tiles of an existing layer.
"""

import logging
from typing import Union, Optional, Tuple, List

import numpy as np
import dask.bag as db
from rasterio.features import rasterize as rio_rasterize, geometry_mask
from shapely.geometry.base import BaseGeometry

from tilebridge.keys import TileKey, SpatialKey
from .layout import Extent, LayoutDefinition
from .metadata import TileLayerMetadata
from .tile import MultibandTile, default_nodata

log = logging.getLogger(__name__)

__all__ = [
    "rasterize_geometries",
    "mask_tile",
    "mask_records"
]

def rasterize_geometries(
    geometries: List[BaseGeometry],
    extent: Extent,
    cols: int,
    rows: int,
    fill_value: Union[int, float],
    dtype: str = "int32"
) -> MultibandTile:
    """
    Burn geometries into a single-band tile covering an extent.

    Cells touched by a geometry receive fill_value; every other cell is the
    default nodata of the dtype.

    Args:
        geometries: Shapely geometries in the extent's CRS.
        extent: Area the tile covers.
        cols: Cell columns of the tile.
        rows: Cell rows of the tile.
        fill_value: Value burned into covered cells.
        dtype: Cell dtype of the result.
    """
    if cols < 1 or rows < 1:
        raise ValueError(f"cols and rows must be >= 1, got ({cols}, {rows})")

    layout = LayoutDefinition.single_tile(extent, cols, rows)
    nodata = default_nodata(dtype)

    shapes = [(geom, fill_value) for geom in geometries if not geom.is_empty]
    if not shapes:
        log.warning("No geometry to rasterize, returning an empty tile")
        return MultibandTile.empty(1, rows, cols, dtype, nodata)

    burned = rio_rasterize(
        shapes,
        out_shape=(rows, cols),
        transform=layout.tile_transform(SpatialKey(0, 0)),
        fill=nodata,
        dtype=dtype
    )
    return MultibandTile(burned, nodata)

def mask_tile(
    tile: MultibandTile,
    geometries: List[BaseGeometry],
    layout: LayoutDefinition,
    key: TileKey
) -> Optional[MultibandTile]:
    """
    Set every cell outside the geometries to nodata, in every band.

    Returns:
        The masked tile, or None when no geometry overlaps the tile interior.
    """
    tile_polygon = layout.key_to_extent(key).to_polygon()
    touching = [
        geom for geom in geometries
        if geom.intersects(tile_polygon) and not geom.touches(tile_polygon)
    ]
    if not touching:
        return None

    inside = geometry_mask(
        touching,
        out_shape=(tile.rows, tile.cols),
        transform=layout.tile_transform(key),
        invert=True
    )
    masked = np.where(inside[np.newaxis, :, :], tile.data, np.asarray(tile.fill_value, dtype=tile.dtype))
    return tile.with_data(masked.astype(tile.dtype, copy=False))

def mask_records(
    records: db.Bag,
    metadata: TileLayerMetadata,
    geometries: List[BaseGeometry]
) -> Tuple[db.Bag, TileLayerMetadata]:
    """
    Mask every tile of a layer by polygons expressed in the layer CRS.

    Tiles that intersect no polygon are dropped.
    """
    layout = metadata.layout
    log.info(f"Masking layer by {len(geometries)} polygon(s)")

    def apply(record):
        key, tile = record
        return key, mask_tile(tile, geometries, layout, key)

    masked = records.map(apply).filter(lambda record: record[1] is not None)
    return masked, metadata
