# src/tilebridge/raster/pyramid.py

"""
This module builds pyramid levels of a layer on the power-of-two zoomed layout.
"""

import logging
from typing import Tuple, List

import dask.bag as db
from rasterio.enums import Resampling

from tilebridge.exceptions import EmptyLayerError
from .layout import ZoomedLayoutScheme
from .metadata import TileLayerMetadata
from .warp import warp_records

log = logging.getLogger(__name__)

__all__ = [
    "pyramid_levels"
]

Level = Tuple[int, db.Bag, TileLayerMetadata]

def pyramid_levels(
    records: db.Bag,
    metadata: TileLayerMetadata,
    start_zoom: int,
    end_zoom: int,
    resampling: Resampling
) -> List[Level]:
    """
    Build every zoom level between two zooms, inclusive.

    The layer is placed on the zoomed layout at the higher of the two zooms,
    then each lower level is resampled from the level above it (each parent
    tile aggregates its 2x2 children).

    Args:
        records: Layer records.
        metadata: Layer metadata. Its CRS must have a zoomed layout scheme.
        start_zoom: One end of the zoom range.
        end_zoom: Other end of the zoom range (either order is accepted).
        resampling: Kernel used to aggregate children into parents.

    Returns:
        List of (zoom, records, metadata), one per level, in ascending zoom order.

    Raises:
        EmptyLayerError: If the layer bounds are empty.
    """
    if metadata.is_empty():
        raise EmptyLayerError("Can not pyramid an empty layer")

    low, high = sorted((int(start_zoom), int(end_zoom)))
    scheme = ZoomedLayoutScheme(metadata.crs, metadata.tile_rows)

    top_layout = scheme.level_for_zoom(high)
    if metadata.layout != top_layout:
        log.debug(f"Placing layer on zoom {high} before pyramiding")
        records, metadata = warp_records(records, metadata, top_layout, metadata.crs, resampling)

    levels = [(high, records, metadata)]
    for zoom in range(high - 1, low - 1, -1):
        records, metadata = warp_records(records, metadata, scheme.level_for_zoom(zoom), metadata.crs, resampling)
        levels.append((zoom, records, metadata))

    log.info(f"Built pyramid of {len(levels)} levels (zoom {low} to {high})")
    return levels[::-1]
