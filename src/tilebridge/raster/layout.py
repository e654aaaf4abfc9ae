# src/tilebridge/raster/layout.py

"""
This module describes how a layer's extent is cut into a grid of tiles.

It provides the extent and tile-layout structures, the mapping between tile
keys and map coordinates, the conversion of host-side mappings into these
structures, and the two layout schemes used when reprojecting or pyramiding.
"""

import math
import logging
from dataclasses import dataclass
from typing import Union, Optional, Tuple, Dict, Any, Mapping

from rasterio.crs import CRS
from rasterio.transform import Affine, from_bounds
from rasterio.warp import transform_bounds
from shapely.geometry import box, Polygon

from tilebridge.exceptions import LayoutConversionError, CRSResolutionError
from tilebridge.keys import SpatialKey
from .crs import resolve_crs

log = logging.getLogger(__name__)

__all__ = [
    "Extent",
    "TileLayout",
    "LayoutDefinition",
    "FloatingLayoutScheme",
    "ZoomedLayoutScheme",
    "extent_from_dict",
    "tile_layout_from_dict",
    "layout_scheme_from_name"
]

# Tolerance (in tile fractions) applied when an extent edge falls on a tile edge
EDGE_EPSILON = 1e-9

MAX_ZOOM = 30

@dataclass(frozen=True)
class Extent:
    """Axis-aligned bounding box in CRS units."""
    xmin: float
    ymin: float
    xmax: float
    ymax: float

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """Returns (left, bottom, right, top)."""
        return self.xmin, self.ymin, self.xmax, self.ymax

    def to_polygon(self) -> Polygon:
        return box(self.xmin, self.ymin, self.xmax, self.ymax)

    def intersects(self, other: 'Extent') -> bool:
        return not (
            other.xmin >= self.xmax or other.xmax <= self.xmin or
            other.ymin >= self.ymax or other.ymax <= self.ymin
        )

    def intersection(self, other: 'Extent') -> Optional['Extent']:
        if not self.intersects(other):
            return None
        return Extent(
            max(self.xmin, other.xmin), max(self.ymin, other.ymin),
            min(self.xmax, other.xmax), min(self.ymax, other.ymax)
        )

    def combine(self, other: 'Extent') -> 'Extent':
        return Extent(
            min(self.xmin, other.xmin), min(self.ymin, other.ymin),
            max(self.xmax, other.xmax), max(self.ymax, other.ymax)
        )

    def reproject(self, src_crs: CRS, dst_crs: CRS) -> 'Extent':
        if src_crs == dst_crs:
            return self
        return Extent(*transform_bounds(src_crs, dst_crs, *self.bounds, densify_pts=21))

    def to_dict(self) -> Dict[str, float]:
        return {"xmin": self.xmin, "ymin": self.ymin, "xmax": self.xmax, "ymax": self.ymax}

@dataclass(frozen=True)
class TileLayout:
    """
    Grid of tiles and the cell grid inside each tile.

    Args:
        layout_cols: Number of tile columns.
        layout_rows: Number of tile rows.
        tile_cols: Number of cell columns per tile.
        tile_rows: Number of cell rows per tile.
    """
    layout_cols: int
    layout_rows: int
    tile_cols: int
    tile_rows: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "layoutCols": self.layout_cols,
            "layoutRows": self.layout_rows,
            "tileCols": self.tile_cols,
            "tileRows": self.tile_rows
        }

@dataclass(frozen=True)
class LayoutDefinition:
    """
    An extent divided by a tile layout.

    This is the map-key transform: it maps tile keys to map extents and back.
    """
    extent: Extent
    tile_layout: TileLayout

    @classmethod
    def single_tile(cls, extent: Extent, cols: int, rows: int) -> 'LayoutDefinition':
        """Layout holding the whole extent in one tile of cols x rows cells."""
        return cls(extent, TileLayout(1, 1, cols, rows))

    @property
    def tile_width(self) -> float:
        return self.extent.width / self.tile_layout.layout_cols

    @property
    def tile_height(self) -> float:
        return self.extent.height / self.tile_layout.layout_rows

    @property
    def cell_width(self) -> float:
        return self.tile_width / self.tile_layout.tile_cols

    @property
    def cell_height(self) -> float:
        return self.tile_height / self.tile_layout.tile_rows

    @property
    def cell_size(self) -> Tuple[float, float]:
        """Returns (cell_width, cell_height)."""
        return self.cell_width, self.cell_height

    def key_to_extent(self, key) -> Extent:
        """Map extent covered by the tile at a key (any key with a spatial component)."""
        sk = key.spatial_key
        xmin = self.extent.xmin + sk.col * self.tile_width
        ymax = self.extent.ymax - sk.row * self.tile_height
        return Extent(xmin, ymax - self.tile_height, xmin + self.tile_width, ymax)

    def tile_transform(self, key) -> Affine:
        """Affine transform of the cell grid of the tile at a key."""
        return from_bounds(
            *self.key_to_extent(key).bounds,
            self.tile_layout.tile_cols,
            self.tile_layout.tile_rows
        )

    def point_to_key(self, x: float, y: float) -> SpatialKey:
        col = math.floor((x - self.extent.xmin) / self.tile_width)
        row = math.floor((self.extent.ymax - y) / self.tile_height)
        return SpatialKey(col, row)

    def key_range(
        self,
        extent: Extent,
        clamp: bool = True
    ) -> Optional[Tuple[SpatialKey, SpatialKey]]:
        """
        Keys of the tiles covering an extent.

        Edges that fall exactly on a tile boundary do not pull in the adjacent tile.

        Args:
            extent: Region to cover, in layout CRS units.
            clamp: Restrict the result to the keys that exist in the layout.

        Returns:
            (min_key, max_key) inclusive, or None if nothing is covered.
        """
        col_min = math.floor((extent.xmin - self.extent.xmin) / self.tile_width + EDGE_EPSILON)
        col_max = math.ceil((extent.xmax - self.extent.xmin) / self.tile_width - EDGE_EPSILON) - 1
        row_min = math.floor((self.extent.ymax - extent.ymax) / self.tile_height + EDGE_EPSILON)
        row_max = math.ceil((self.extent.ymax - extent.ymin) / self.tile_height - EDGE_EPSILON) - 1

        if clamp:
            col_min = max(col_min, 0)
            row_min = max(row_min, 0)
            col_max = min(col_max, self.tile_layout.layout_cols - 1)
            row_max = min(row_max, self.tile_layout.layout_rows - 1)

        if col_min > col_max or row_min > row_max:
            return None
        return SpatialKey(col_min, row_min), SpatialKey(col_max, row_max)

    def to_dict(self) -> Dict[str, Any]:
        return {"extent": self.extent.to_dict(), "tileLayout": self.tile_layout.to_dict()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'LayoutDefinition':
        try:
            return cls(extent_from_dict(data["extent"]), tile_layout_from_dict(data["tileLayout"]))
        except KeyError as e:
            raise LayoutConversionError(f"Layout definition is missing {e}") from e

def _lookup(mapping: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in mapping:
            return mapping[name]
    raise LayoutConversionError(f"Missing required key '{names[0]}' in {dict(mapping)}")

def extent_from_dict(mapping: Union[Mapping[str, float], Extent]) -> Extent:
    """
    Convert a host mapping with xmin, ymin, xmax and ymax entries into an Extent.

    Raises:
        LayoutConversionError: If an entry is missing, not numeric, or the box is degenerate.
    """
    if isinstance(mapping, Extent):
        return mapping
    if not isinstance(mapping, Mapping):
        raise LayoutConversionError(f"Extent must be a mapping, got {type(mapping).__name__}")

    try:
        values = [float(_lookup(mapping, name)) for name in ("xmin", "ymin", "xmax", "ymax")]
    except (TypeError, ValueError) as e:
        raise LayoutConversionError(f"Extent values must be numeric: {e}") from e

    extent = Extent(*values)
    if not all(math.isfinite(v) for v in values) or extent.width <= 0 or extent.height <= 0:
        raise LayoutConversionError(f"Degenerate extent: {extent}")
    return extent

def tile_layout_from_dict(mapping: Union[Mapping[str, int], TileLayout]) -> TileLayout:
    """
    Convert a host mapping with layoutCols, layoutRows, tileCols and tileRows into a TileLayout.

    snake_case keys are accepted as well.

    Raises:
        LayoutConversionError: If an entry is missing, not a positive integer.
    """
    if isinstance(mapping, TileLayout):
        return mapping
    if not isinstance(mapping, Mapping):
        raise LayoutConversionError(f"Tile layout must be a mapping, got {type(mapping).__name__}")

    values = []
    for camel, snake in (
        ("layoutCols", "layout_cols"),
        ("layoutRows", "layout_rows"),
        ("tileCols", "tile_cols"),
        ("tileRows", "tile_rows")
    ):
        raw = _lookup(mapping, camel, snake)
        try:
            value = int(raw)
        except (TypeError, ValueError) as e:
            raise LayoutConversionError(f"'{camel}' must be an integer, got {raw!r}") from e
        if value != raw or value < 1:
            raise LayoutConversionError(f"'{camel}' must be a positive integer, got {raw!r}")
        values.append(value)

    return TileLayout(*values)

class FloatingLayoutScheme:
    """
    Layout scheme that keeps a layer's native cell size.

    Tiles are anchored at the upper-left corner of the layer extent and the
    layout grows right and down until the whole extent is covered.
    """

    def __init__(self, tile_size: int = 256):
        if tile_size < 1:
            raise ValueError(f"tile_size must be >= 1, got {tile_size}")
        self.tile_size = tile_size

    def layout_for(self, extent: Extent, cell_width: float, cell_height: float) -> LayoutDefinition:
        layout_cols = max(1, math.ceil(round(extent.width / cell_width / self.tile_size, 9)))
        layout_rows = max(1, math.ceil(round(extent.height / cell_height / self.tile_size, 9)))

        snapped = Extent(
            extent.xmin,
            extent.ymax - layout_rows * self.tile_size * cell_height,
            extent.xmin + layout_cols * self.tile_size * cell_width,
            extent.ymax
        )
        return LayoutDefinition(snapped, TileLayout(layout_cols, layout_rows, self.tile_size, self.tile_size))

    def __repr__(self) -> str:
        return f"<FloatingLayoutScheme tile_size={self.tile_size}>"

class ZoomedLayoutScheme:
    """
    Power-of-two pyramid levels over the world extent of a CRS.

    Zoom z has 2**z tile columns. Web Mercator has as many rows as columns;
    geographic coordinates use half as many rows (at least one).

    Args:
        crs: Target CRS (EPSG:3857 or EPSG:4326).
        tile_size: Cells per tile side.
        resolution_threshold: Fraction by which a level's cell size may exceed
                              the requested resolution and still be chosen.
    """

    WORLD_EXTENTS = {
        3857: Extent(-20037508.342789244, -20037508.342789244, 20037508.342789244, 20037508.342789244),
        4326: Extent(-180.0, -90.0, 180.0, 90.0)
    }

    def __init__(self, crs: Union[str, CRS], tile_size: int = 256, resolution_threshold: float = 0.1):
        self.crs = resolve_crs(crs)
        epsg = self.crs.to_epsg()
        if epsg not in self.WORLD_EXTENTS:
            raise CRSResolutionError(
                f"ZoomedLayoutScheme has no world extent for {self.crs}. "
                f"Supported: {[f'EPSG:{c}' for c in self.WORLD_EXTENTS]}"
            )
        if tile_size < 1:
            raise ValueError(f"tile_size must be >= 1, got {tile_size}")

        self.epsg = epsg
        self.world_extent = self.WORLD_EXTENTS[epsg]
        self.tile_size = tile_size
        self.resolution_threshold = resolution_threshold

    def level_for_zoom(self, zoom: int) -> LayoutDefinition:
        if not (0 <= zoom <= MAX_ZOOM):
            raise ValueError(f"Zoom level must be within 0-{MAX_ZOOM}, got {zoom}")

        layout_cols = 2 ** zoom
        layout_rows = layout_cols if self.epsg == 3857 else max(1, 2 ** (zoom - 1))
        return LayoutDefinition(
            self.world_extent,
            TileLayout(layout_cols, layout_rows, self.tile_size, self.tile_size)
        )

    def zoom_for_resolution(self, resolution: float) -> int:
        """Smallest zoom whose cell width is at most resolution * (1 + threshold)."""
        limit = resolution * (1.0 + self.resolution_threshold)
        for zoom in range(MAX_ZOOM + 1):
            if self.level_for_zoom(zoom).cell_width <= limit:
                return zoom
        return MAX_ZOOM

    def level_for(self, cell_width: float) -> Tuple[int, LayoutDefinition]:
        zoom = self.zoom_for_resolution(cell_width)
        return zoom, self.level_for_zoom(zoom)

    def __repr__(self) -> str:
        return f"<ZoomedLayoutScheme crs=EPSG:{self.epsg} tile_size={self.tile_size}>"

FLOAT = "float"
ZOOM = "zoom"

def layout_scheme_from_name(
    scheme: str,
    crs: CRS,
    tile_size: int,
    resolution_threshold: float
) -> Union[FloatingLayoutScheme, ZoomedLayoutScheme]:
    """Build the layout scheme named by the host ('float' or 'zoom')."""
    name = scheme.strip().lower()
    if name in (FLOAT, "floating"):
        return FloatingLayoutScheme(tile_size)
    if name in (ZOOM, "zoomed"):
        return ZoomedLayoutScheme(crs, tile_size, resolution_threshold)
    raise ValueError(f"Unknown layout scheme '{scheme}'. Must be one of: ['{FLOAT}', '{ZOOM}']")
