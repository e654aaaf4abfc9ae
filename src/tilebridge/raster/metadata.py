# src/tilebridge/raster/metadata.py

"""
This module defines layer metadata and its JSON representation.
"""

import json
import logging
from dataclasses import dataclass, replace
from typing import Union, Optional, Iterable, Tuple, Any

import numpy as np
from rasterio.crs import CRS

from tilebridge.exceptions import LayerValidationError
from tilebridge.keys import LayerType, KeyBounds, TileKey
from .crs import resolve_crs, crs_to_string
from .layout import Extent, LayoutDefinition, extent_from_dict
from .tile import MultibandTile, parse_cell_type

log = logging.getLogger(__name__)

__all__ = [
    "TileLayerMetadata"
]

@dataclass(frozen=True)
class TileLayerMetadata:
    """
    Describes how the tiles of a layer compose into one logical raster.

    Args:
        cell_type: Cell type name shared by every tile ('float64', 'int32ud-9999').
        layout: Layout definition the tile keys refer to.
        extent: Extent actually covered by data, in the layout CRS.
        crs: Coordinate reference system of the layout.
        bounds: Inclusive key bounds, or None for an empty layer.
    """
    cell_type: str
    layout: LayoutDefinition
    extent: Extent
    crs: CRS
    bounds: Optional[KeyBounds]

    @property
    def dtype(self) -> np.dtype:
        return parse_cell_type(self.cell_type)[0]

    @property
    def nodata(self) -> Optional[Union[float, int]]:
        return parse_cell_type(self.cell_type)[1]

    @property
    def tile_rows(self) -> int:
        return self.layout.tile_layout.tile_rows

    @property
    def tile_cols(self) -> int:
        return self.layout.tile_layout.tile_cols

    def is_empty(self) -> bool:
        return self.bounds is None

    def copy(self, **changes) -> 'TileLayerMetadata':
        """Returns an updated copy; metadata is never modified in place."""
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "cellType": self.cell_type,
            "layoutDefinition": self.layout.to_dict(),
            "extent": self.extent.to_dict(),
            "crs": crs_to_string(self.crs),
            "bounds": self.bounds.to_dict() if self.bounds is not None else None
        }

    def to_json(self) -> str:
        """Pretty-printed JSON rendering of the metadata."""
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: dict, layer_type: LayerType) -> 'TileLayerMetadata':
        try:
            cell_type = data["cellType"]
            parse_cell_type(cell_type)
            return cls(
                cell_type=cell_type,
                layout=LayoutDefinition.from_dict(data["layoutDefinition"]),
                extent=extent_from_dict(data["extent"]),
                crs=resolve_crs(data["crs"]),
                bounds=KeyBounds.from_dict(data.get("bounds"), layer_type)
            )
        except KeyError as e:
            raise LayerValidationError(f"Layer metadata is missing {e}") from e

    @classmethod
    def from_json(cls, text: str, layer_type: LayerType) -> 'TileLayerMetadata':
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise LayerValidationError(f"Layer metadata is not valid JSON: {e}") from e
        return cls.from_dict(data, layer_type)

    @classmethod
    def collect(
        cls,
        records: Iterable[Tuple[TileKey, MultibandTile]],
        layout: LayoutDefinition,
        crs: Union[str, CRS],
        cell_type: Optional[str] = None
    ) -> 'TileLayerMetadata':
        """
        Derive metadata from keyed tiles placed on a layout.

        Args:
            records: (key, tile) pairs.
            layout: Layout the keys refer to.
            crs: Layout CRS.
            cell_type: Cell type to record. Inferred from the first tile when omitted.
        """
        extent = None
        bounds = None

        for key, tile in records:
            key_extent = layout.key_to_extent(key)
            extent = key_extent if extent is None else extent.combine(key_extent)
            bounds = KeyBounds(key, key).combine(bounds)
            if cell_type is None:
                cell_type = tile.cell_type

        if cell_type is None:
            cell_type = "float64"

        return cls(
            cell_type=cell_type,
            layout=layout,
            extent=extent if extent is not None else layout.extent,
            crs=resolve_crs(crs),
            bounds=bounds
        )

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, TileLayerMetadata):
            return NotImplemented
        return self.to_dict() == other.to_dict()

