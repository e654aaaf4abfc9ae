# src/tilebridge/raster/layer.py

"""
This module defines the tiled raster layer exposed to host callers.

TiledRasterLayer is one adapter for both key shapes. Every operation only
relies on a key's spatial component (key.spatial_key) and on replacing it
(key.with_spatial), so spatial and spatiotemporal layers share all the code
below. Inputs arrive as simple host values (dicts, strings, numbers, WKT) and
are converted here before the work is handed to the raster modules; outputs
leave as bytes plus a schema string.
"""

import numbers
import logging
from typing import Union, Optional, Iterable, Tuple, List, Mapping, Any, Dict

import dask.bag as db
from rasterio.crs import CRS

from tilebridge.collection import from_records, inner_join, collect
from tilebridge.config import get_config
from tilebridge.exceptions import WireFormatError
from tilebridge.keys import LayerType, TileKey, SpatialKey, SpaceTimeKey
from tilebridge.vector import Vector, polygonal
from .codec import (
    record_schema,
    layer_type_of_schema,
    schema_to_string,
    schema_from_string,
    encode_tile,
    decode_tile,
    decode_records
)
from .costdistance import cost_distance_tiles
from .crs import resolve_crs
from .focal import focal_records
from .layout import LayoutDefinition, extent_from_dict, tile_layout_from_dict, layout_scheme_from_name
from .local import LocalOperation, BoundaryType, local_scalar, local_tiles, reclassify_tile
from .metadata import TileLayerMetadata
from .pyramid import pyramid_levels
from .rasterize import rasterize_geometries, mask_records
from .resample import ResampleMethod, resolve_resample_method
from .stitch import stitch_tiles
from .tile import MultibandTile
from .warp import warp_records, layout_from_scheme

log = logging.getLogger(__name__)

__all__ = [
    "TiledRasterLayer"
]

Number = Union[int, float]
Record = Tuple[TileKey, MultibandTile]

class TiledRasterLayer:
    """
    A distributed layer of multi-band tiles on a common layout.

    Attributes:
        layer_type (LayerType): Key shape of the records.
        records (dask.bag.Bag): Lazily evaluated (key, MultibandTile) records.
        metadata (TileLayerMetadata): Layout, extent, CRS, cell type and key bounds.
        zoom_level (int | None): Pyramid zoom of the layout, if it is a zoomed level.
    """

    def __init__(
        self,
        layer_type: LayerType,
        records: db.Bag,
        metadata: TileLayerMetadata,
        zoom_level: Optional[int] = None
    ):
        if not isinstance(layer_type, LayerType):
            raise TypeError(f"Expected LayerType, got {type(layer_type).__name__}")
        if not isinstance(records, db.Bag):
            raise TypeError(f"Records must be a dask.bag.Bag, got {type(records).__name__}")
        if not isinstance(metadata, TileLayerMetadata):
            raise TypeError(f"Expected TileLayerMetadata, got {type(metadata).__name__}")

        self.layer_type = layer_type
        self.records = records
        self.metadata = metadata
        self.zoom_level = zoom_level

    # --- Construction ---

    @classmethod
    def from_items(
        cls,
        items: Iterable[Record],
        layout: LayoutDefinition,
        crs: Union[str, CRS],
        layer_type: Optional[LayerType] = None,
        zoom_level: Optional[int] = None,
        cell_type: Optional[str] = None,
        npartitions: Optional[int] = None
    ) -> 'TiledRasterLayer':
        """
        Build a layer from in-memory (key, tile) pairs, collecting its metadata.

        Args:
            items: (key, MultibandTile) pairs sharing one key type.
            layout: Layout the keys refer to.
            crs: Layout CRS.
            layer_type: Key shape. Inferred from the keys when omitted; required for no items.
            zoom_level: Zoom of the layout when it is a pyramid level.
            cell_type: Cell type to record. Inferred from the first tile when omitted.
            npartitions: Partition count of the bag.

        Raises:
            TypeError: If keys mix SpatialKey and SpaceTimeKey, or disagree with layer_type.
        """
        items = list(items)
        for key, _ in items:
            key_type = LayerType.of(key)
            if layer_type is None:
                layer_type = key_type
            elif key_type is not layer_type:
                raise TypeError(f"Expected {layer_type.value} keys, got {type(key).__name__}")

        if layer_type is None:
            raise ValueError("layer_type is required to build a layer without items")

        metadata = TileLayerMetadata.collect(items, layout, crs, cell_type)
        return cls(layer_type, from_records(items, npartitions), metadata, zoom_level)

    @classmethod
    def from_wire(
        cls,
        payloads: Union[Iterable[bytes], db.Bag],
        schema: str,
        metadata: Union[str, TileLayerMetadata],
        zoom_level: Optional[int] = None
    ) -> 'TiledRasterLayer':
        """
        Rebuild a layer from wire payloads, their schema string and metadata JSON.

        In-memory payloads are decoded eagerly; a bag of payloads is decoded lazily.

        Raises:
            WireFormatError: If the schema has no key fields or a payload does not match it.
            LayerValidationError: If the metadata JSON is invalid.
        """
        parsed = schema_from_string(schema)
        layer_type = layer_type_of_schema(parsed)
        if layer_type is None:
            raise WireFormatError("Wire schema has no key fields; it describes a stitched raster, not a layer")

        if not isinstance(metadata, TileLayerMetadata):
            metadata = TileLayerMetadata.from_json(metadata, layer_type)

        if isinstance(payloads, db.Bag):
            records = payloads.map(decode_tile, parsed)
        else:
            records = from_records(decode_records(payloads, schema))
        return cls(layer_type, records, metadata, zoom_level)

    @classmethod
    def rasterize(
        cls,
        wkts: Union[str, List[str]],
        extent: Mapping[str, float],
        crs: Union[str, CRS],
        cols: int,
        rows: int,
        fill_value: Number,
        instant: Optional[int] = None
    ) -> 'TiledRasterLayer':
        """
        Burn geometries into a one-tile layer.

        Args:
            wkts: WKT geometries in the target CRS.
            extent: Host extent mapping (xmin, ymin, xmax, ymax).
            crs: CRS string of the extent.
            cols: Cell columns of the tile.
            rows: Cell rows of the tile.
            fill_value: Value burned into covered cells; other cells are nodata.
            instant: Time instant. A spacetime layer keyed at it is built when given.
        """
        extent = extent_from_dict(extent)
        crs = resolve_crs(crs)
        vector = Vector.from_wkt(wkts, crs)

        tile = rasterize_geometries(vector.geometries, extent, cols, rows, fill_value)
        key = SpatialKey(0, 0) if instant is None else SpaceTimeKey(0, 0, int(instant))

        log.info(f"Rasterized {len(vector)} geometries into a {cols}x{rows} tile")
        return cls.from_items([(key, tile)], LayoutDefinition.single_tile(extent, cols, rows), crs)

    def with_records(self, records: db.Bag) -> 'TiledRasterLayer':
        """Wrap new records under this layer's metadata and zoom level."""
        return TiledRasterLayer(self.layer_type, records, self.metadata, self.zoom_level)

    def _derive(
        self,
        records: db.Bag,
        metadata: TileLayerMetadata,
        zoom_level: Optional[int]
    ) -> 'TiledRasterLayer':
        return TiledRasterLayer(self.layer_type, records, metadata, zoom_level)

    # --- Inspection ---

    @property
    def layer_metadata(self) -> str:
        """The layer metadata as pretty-printed JSON."""
        return self.metadata.to_json()

    def get_zoom(self) -> Optional[int]:
        return self.zoom_level

    def to_items(self) -> List[Record]:
        """Collect every record on the driver, ordered by key."""
        return sorted(collect(self.records), key=lambda record: _sort_key(record[0]))

    def count(self) -> int:
        return int(self.records.count().compute(scheduler=get_config().scheduler))

    def collect_keys(self) -> List[TileKey]:
        return sorted(collect(self.records.pluck(0)), key=_sort_key)

    def __repr__(self) -> str:
        return (
            f"<TiledRasterLayer type={self.layer_type.value} cell_type={self.metadata.cell_type} "
            f"layout={self.metadata.layout.tile_layout} zoom={self.zoom_level}>"
        )

    # --- Layout changes ---

    def reproject(
        self,
        extent: Mapping[str, float],
        layout: Mapping[str, int],
        crs: Union[str, CRS],
        resample_method: Union[str, ResampleMethod] = ResampleMethod.NEAREST_NEIGHBOR
    ) -> 'TiledRasterLayer':
        """
        Reproject onto an explicit layout.

        Args:
            extent: Host extent mapping of the target layout.
            layout: Host tile-layout mapping (layoutCols, layoutRows, tileCols, tileRows).
            crs: Target CRS string.
            resample_method: Resample method name.

        Returns:
            The reprojected layer. It has no zoom level.
        """
        dst_layout = LayoutDefinition(extent_from_dict(extent), tile_layout_from_dict(layout))
        dst_crs = resolve_crs(crs)
        method = resolve_resample_method(resample_method)

        log.info(f"Reprojecting to {dst_crs} on {dst_layout.tile_layout} ({method.value})")
        records, metadata = warp_records(self.records, self.metadata, dst_layout, dst_crs, method.resampling)
        return self._derive(records, metadata, None)

    def reproject_to_scheme(
        self,
        scheme: str,
        tile_size: int,
        resolution_threshold: float,
        crs: Union[str, CRS],
        resample_method: Union[str, ResampleMethod] = ResampleMethod.NEAREST_NEIGHBOR
    ) -> 'TiledRasterLayer':
        """
        Reproject onto the layout chosen by a named layout scheme.

        Args:
            scheme: 'float' (keep native resolution) or 'zoom' (power-of-two levels).
            tile_size: Cells per tile side.
            resolution_threshold: Tolerance used by the zoomed scheme to pick a level.
            crs: Target CRS string.
            resample_method: Resample method name.

        Returns:
            The reprojected layer, carrying the matched zoom for 'zoom' and none for 'float'.
        """
        dst_crs = resolve_crs(crs)
        method = resolve_resample_method(resample_method)
        layout_scheme = layout_scheme_from_name(scheme, dst_crs, tile_size, resolution_threshold)

        zoom, dst_layout = layout_from_scheme(layout_scheme, self.metadata, dst_crs)
        log.info(f"Reprojecting to {dst_crs} with {layout_scheme} (zoom={zoom})")
        records, metadata = warp_records(self.records, self.metadata, dst_layout, dst_crs, method.resampling)
        return self._derive(records, metadata, zoom)

    def tile_to_layout(
        self,
        layout: Union[LayoutDefinition, Mapping[str, Any], Tuple[Mapping[str, float], Mapping[str, int]]],
        resample_method: Union[str, ResampleMethod] = ResampleMethod.NEAREST_NEIGHBOR
    ) -> 'TiledRasterLayer':
        """
        Retile onto another layout in the same CRS.

        Args:
            layout: A LayoutDefinition, a mapping with 'extent' and 'tileLayout'
                    entries, or an (extent, tile_layout) pair of host mappings.
            resample_method: Resample method name.

        Returns:
            The retiled layer. It has no zoom level.
        """
        if isinstance(layout, LayoutDefinition):
            dst_layout = layout
        elif isinstance(layout, Mapping):
            dst_layout = LayoutDefinition.from_dict(layout)
        else:
            extent, tile_layout = layout
            dst_layout = LayoutDefinition(extent_from_dict(extent), tile_layout_from_dict(tile_layout))

        method = resolve_resample_method(resample_method)
        log.info(f"Retiling to {dst_layout.tile_layout} ({method.value})")
        records, metadata = warp_records(
            self.records, self.metadata, dst_layout, self.metadata.crs, method.resampling
        )
        return self._derive(records, metadata, None)

    def pyramid(
        self,
        start_zoom: int,
        end_zoom: int,
        resample_method: Union[str, ResampleMethod] = ResampleMethod.NEAREST_NEIGHBOR
    ) -> List['TiledRasterLayer']:
        """
        Build the pyramid levels between two zooms (inclusive, either order).

        Returns:
            One layer per zoom level, in ascending zoom order.

        Raises:
            EmptyLayerError: If the layer bounds are empty.
        """
        method = resolve_resample_method(resample_method)
        levels = pyramid_levels(self.records, self.metadata, start_zoom, end_zoom, method.resampling)
        return [self._derive(records, metadata, zoom) for zoom, records, metadata in levels]

    # --- Neighbourhood and geometry operations ---

    def focal(
        self,
        operation: str,
        neighborhood: Optional[str] = None,
        param1: float = 0.0,
        param2: float = 0.0,
        param3: float = 0.0
    ) -> 'TiledRasterLayer':
        """
        Apply a focal operation to band 0.

        Args:
            operation: Sum, Min, Max, Mean, Median, Mode, StandardDeviation, Slope or Aspect.
            neighborhood: Square, Circle, Nesw, Wedge or Annulus. Ignored by Slope and Aspect.
            param1: First neighborhood parameter, or the z-factor for Slope.
            param2: Second neighborhood parameter.
            param3: Third neighborhood parameter.

        Returns:
            A single-band float64 layer. It has no zoom level.
        """
        records, metadata = focal_records(
            self.records, self.metadata, operation, neighborhood or "Square", param1, param2, param3
        )
        return self._derive(records, metadata, None)

    def mask(self, wkts: Union[str, List[str]]) -> 'TiledRasterLayer':
        """
        Mask the layer by polygons given as WKT in the layer CRS.

        Non-polygonal geometries are ignored. Tiles that no polygon intersects
        are dropped, and cells outside the polygons become nodata in every band.
        """
        vector = polygonal(Vector.from_wkt(wkts, self.metadata.crs))
        records, metadata = mask_records(self.records, self.metadata, vector.geometries)
        return self._derive(records, metadata, None)

    def cost_distance(self, wkts: Union[str, List[str]], max_distance: float) -> 'TiledRasterLayer':
        """
        Accumulated cost distance from source polygons, using band 0 as friction.

        The layer is collected on the driver and stitched per time slice.

        Args:
            wkts: Source polygons as WKT in the layer CRS. Non-polygonal
                  geometries are ignored.
            max_distance: Costs beyond this value are left as NaN.

        Returns:
            A single-band float64 layer. It has no zoom level.
        """
        vector = polygonal(Vector.from_wkt(wkts, self.metadata.crs))
        log.info(f"Cost distance from {len(vector)} source polygons (max_distance={max_distance})")

        results = cost_distance_tiles(collect(self.records), self.metadata, vector.geometries, float(max_distance))
        return self._derive(from_records(results), self.metadata.copy(cell_type="float64"), None)

    # --- Local operations ---

    def _local(self, other: Union[Number, 'TiledRasterLayer'], op: LocalOperation, reverse: bool = False) -> 'TiledRasterLayer':
        if isinstance(other, TiledRasterLayer):
            if other.layer_type is not self.layer_type:
                raise TypeError(
                    f"Cannot combine a {self.layer_type.value} layer with a {other.layer_type.value} layer"
                )
            joined = inner_join(self.records, other.records)
            records = joined.map(lambda kv: (kv[0], local_tiles(kv[1][0], kv[1][1], op)))
            return self._derive(records, self._joined_metadata(other), self.zoom_level)
        elif isinstance(other, numbers.Real) and not isinstance(other, bool):
            value = other
            records = self.records.map(lambda kv: (kv[0], local_scalar(kv[1], op, value, reverse)))
        else:
            raise TypeError(f"Unsupported operand for local {op.value}: {type(other).__name__}")

        return self.with_records(records)

    def _joined_metadata(self, other: 'TiledRasterLayer') -> TileLayerMetadata:
        # Only keys present in both layers survive the join
        bounds = None
        if self.metadata.bounds is not None:
            bounds = self.metadata.bounds.intersection(other.metadata.bounds)
        extent = self.metadata.extent.intersection(other.metadata.extent) or self.metadata.extent
        return self.metadata.copy(bounds=bounds, extent=extent)

    def local_add(self, other: Union[Number, 'TiledRasterLayer']) -> 'TiledRasterLayer':
        return self._local(other, LocalOperation.ADD)

    def local_subtract(self, other: Union[Number, 'TiledRasterLayer']) -> 'TiledRasterLayer':
        return self._local(other, LocalOperation.SUBTRACT)

    def reverse_local_subtract(self, value: Number) -> 'TiledRasterLayer':
        """Subtract every cell from a scalar (value - cell)."""
        return self._local(_scalar(value), LocalOperation.SUBTRACT, reverse=True)

    def local_multiply(self, other: Union[Number, 'TiledRasterLayer']) -> 'TiledRasterLayer':
        return self._local(other, LocalOperation.MULTIPLY)

    def local_divide(self, other: Union[Number, 'TiledRasterLayer']) -> 'TiledRasterLayer':
        return self._local(other, LocalOperation.DIVIDE)

    def reverse_local_divide(self, value: Number) -> 'TiledRasterLayer':
        """Divide a scalar by every cell (value / cell)."""
        return self._local(_scalar(value), LocalOperation.DIVIDE, reverse=True)

    def __add__(self, other):
        return self.local_add(other)

    def __radd__(self, other):
        return self.local_add(other)

    def __sub__(self, other):
        return self.local_subtract(other)

    def __rsub__(self, other):
        return self.reverse_local_subtract(other)

    def __mul__(self, other):
        return self.local_multiply(other)

    def __rmul__(self, other):
        return self.local_multiply(other)

    def __truediv__(self, other):
        return self.local_divide(other)

    def __rtruediv__(self, other):
        return self.reverse_local_divide(other)

    def reclassify(
        self,
        value_map: Dict[Number, Number],
        boundary_type: Union[str, BoundaryType] = BoundaryType.LESS_THAN_OR_EQUAL_TO,
        replace_nodata_with: Optional[Number] = None
    ) -> 'TiledRasterLayer':
        """
        Map cell values through class breaks.

        Returns:
            A layer of int32 classes (float64 if any class value is not an integer)
            on the same layout, keeping the zoom level.
        """
        boundary = BoundaryType.from_name(boundary_type)
        sample = reclassify_tile(MultibandTile.empty(1, 1, 1), value_map, boundary, replace_nodata_with)

        records = self.records.map(
            lambda kv: (kv[0], reclassify_tile(kv[1], value_map, boundary, replace_nodata_with))
        )
        return self._derive(records, self.metadata.copy(cell_type=sample.cell_type), self.zoom_level)

    # --- Output ---

    def _wire_schema(self, layer_type: Optional[LayerType]):
        return record_schema(layer_type, self.metadata.cell_type, get_config().wire_compression)

    def to_wire(self) -> Tuple[db.Bag, str]:
        """
        Encode every record for transport.

        Returns:
            (payloads, schema): A bag of record batch bytes and the schema string.
        """
        schema = self._wire_schema(self.layer_type)
        payloads = self.records.map(lambda kv: encode_tile(kv[1], schema, kv[0]))
        return payloads, schema_to_string(schema)

    def lookup(self, col: int, row: int) -> Tuple[List[bytes], str]:
        """
        Encoded tiles at a grid coordinate.

        Spacetime layers return every instant at the coordinate, ordered by time.

        Returns:
            (payloads, schema): Possibly empty list of record batch bytes and the schema string.
        """
        target = SpatialKey(int(col), int(row))
        matches = collect(self.records.filter(lambda kv: kv[0].spatial_key == target))
        matches.sort(key=lambda record: _sort_key(record[0]))

        schema = self._wire_schema(self.layer_type)
        log.debug(f"Lookup at {target} matched {len(matches)} tiles")
        return [encode_tile(tile, schema, key) for key, tile in matches], schema_to_string(schema)

    def stitch(self) -> Tuple[bytes, str]:
        """
        Mosaic every tile of a spatial layer into one raster.

        Returns:
            (payload, schema): Record batch bytes of the raster and its keyless schema string.

        Raises:
            TypeError: If the layer is spatiotemporal.
            EmptyLayerError: If the layer holds no tiles.
            MemoryError: If the raster would not fit in available memory.
        """
        if self.layer_type is not LayerType.SPATIAL:
            raise TypeError("Only spatial layers can be stitched")

        mosaic, _ = stitch_tiles(collect(self.records), self.metadata.layout)
        schema = self._wire_schema(None)
        return encode_tile(mosaic, schema), schema_to_string(schema)

def _scalar(value: Any) -> Number:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise TypeError(f"Expected a scalar, got {type(value).__name__}")
    return value

def _sort_key(key: TileKey) -> tuple:
    if isinstance(key, SpaceTimeKey):
        return key.instant, key.row, key.col
    return key.row, key.col
