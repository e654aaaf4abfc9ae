# src/tilebridge/raster/__init__.py
#
# Copyright (c) The tilebridge project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The raster subpackage provides the tiled raster layer and everything it is
built from: tiles and cell types, layouts and layout schemes, layer metadata,
resampling, reprojection, pyramiding, focal and local operations, masking,
rasterization, cost distance, stitching and the wire codec.
"""
# Core data structures
from .tile import (
    MultibandTile,
    cell_type_name,
    parse_cell_type
)

from .layer import (
    TiledRasterLayer
)

# Layouts and metadata
from .layout import (
    Extent,
    TileLayout,
    LayoutDefinition,
    FloatingLayoutScheme,
    ZoomedLayoutScheme,
    extent_from_dict,
    tile_layout_from_dict
)

from .metadata import (
    TileLayerMetadata
)

from .crs import (
    resolve_crs,
    crs_to_string
)

from .resample import (
    ResampleMethod,
    resolve_resample_method
)

# Operations
from .focal import (
    FocalOperation,
    NeighborhoodType,
    build_neighborhood
)

from .local import (
    LocalOperation,
    BoundaryType
)

# Wire format
from .codec import (
    record_schema,
    schema_to_string,
    schema_from_string,
    encode_records,
    decode_records
)

__all__ = [
    # Core data structures
    "MultibandTile",
    "cell_type_name",
    "parse_cell_type",
    "TiledRasterLayer",

    # Layouts and metadata
    "Extent",
    "TileLayout",
    "LayoutDefinition",
    "FloatingLayoutScheme",
    "ZoomedLayoutScheme",
    "extent_from_dict",
    "tile_layout_from_dict",
    "TileLayerMetadata",
    "resolve_crs",
    "crs_to_string",
    "ResampleMethod",
    "resolve_resample_method",

    # Operations
    "FocalOperation",
    "NeighborhoodType",
    "build_neighborhood",
    "LocalOperation",
    "BoundaryType",

    # Wire format
    "record_schema",
    "schema_to_string",
    "schema_from_string",
    "encode_records",
    "decode_records"
]
