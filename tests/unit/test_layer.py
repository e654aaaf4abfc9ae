# tests/unit/test_layer.py

import json

import numpy as np
import pytest
import dask.bag as db

from tilebridge.collection import collect
from tilebridge.exceptions import (
    CRSResolutionError,
    LayoutConversionError,
    EmptyLayerError,
    WireFormatError
)
from tilebridge.keys import LayerType, SpatialKey, SpaceTimeKey
from tilebridge.raster.codec import decode_tile, schema_from_string
from tilebridge.raster.layer import TiledRasterLayer
from tilebridge.raster.tile import MultibandTile
from helpers import stitched, assert_same_keys, assert_tiles_close, grid_values

ONE_TILE_EXTENT = {"xmin": 0.0, "ymin": 0.0, "xmax": 10.0, "ymax": 10.0}
ONE_TILE_LAYOUT = {"layoutCols": 1, "layoutRows": 1, "tileCols": 10, "tileRows": 10}

# --- Construction ---

def test_init_validates_types(spatial_layer):
    with pytest.raises(TypeError):
        TiledRasterLayer("spatial", spatial_layer.records, spatial_layer.metadata)
    with pytest.raises(TypeError):
        TiledRasterLayer(LayerType.SPATIAL, [], spatial_layer.metadata)
    with pytest.raises(TypeError):
        TiledRasterLayer(LayerType.SPATIAL, spatial_layer.records, {})

def test_from_items_rejects_mixed_keys(layout_2x2):
    tile = MultibandTile(np.zeros((5, 5)))
    with pytest.raises(TypeError):
        TiledRasterLayer.from_items(
            [(SpatialKey(0, 0), tile), (SpaceTimeKey(1, 0, 5), tile)], layout_2x2, "EPSG:3857"
        )

def test_from_items_empty_needs_layer_type(layout_2x2):
    with pytest.raises(ValueError):
        TiledRasterLayer.from_items([], layout_2x2, "EPSG:3857")

def test_basic_inspection(spatial_layer):
    assert spatial_layer.layer_type is LayerType.SPATIAL
    assert spatial_layer.count() == 4
    assert spatial_layer.collect_keys() == [SpatialKey(0, 0), SpatialKey(1, 0), SpatialKey(0, 1), SpatialKey(1, 1)]
    assert "spatial" in repr(spatial_layer)

def test_layer_metadata_json(spacetime_layer):
    data = json.loads(spacetime_layer.layer_metadata)
    assert data["cellType"] == "float64"
    assert data["layoutDefinition"]["tileLayout"]["tileCols"] == 5
    assert data["bounds"]["minKey"]["instant"] == 1000
    assert data["bounds"]["maxKey"]["instant"] == 2000
    assert spacetime_layer.layer_metadata.startswith("{\n")

# --- Zoom levels ---

def test_zoom_level_rules(layer_factory, square_wkt):
    layer = layer_factory(zoom_level=7)
    assert layer.get_zoom() == 7
    assert (layer + 1).get_zoom() == 7
    assert layer.reclassify({100: 1}).get_zoom() == 7

    assert layer.focal("Mean", "Square", 1).get_zoom() is None
    assert layer.mask([square_wkt]).get_zoom() is None
    assert layer.tile_to_layout((ONE_TILE_EXTENT, ONE_TILE_LAYOUT)).get_zoom() is None
    assert layer.reproject(ONE_TILE_EXTENT, ONE_TILE_LAYOUT, "EPSG:3857").get_zoom() is None

def test_default_zoom_is_none(spatial_layer):
    assert spatial_layer.get_zoom() is None

# --- Local operations ---

def test_scalar_operators(spatial_layer):
    grid = grid_values()
    assert np.allclose(stitched(spatial_layer + 1).data[0], grid + 1)
    assert np.allclose(stitched(2 * spatial_layer).data[0], grid * 2)
    assert np.allclose(stitched(spatial_layer - 0.5).data[0], grid - 0.5)
    assert np.allclose(stitched(100 - spatial_layer).data[0], 100 - grid)
    assert np.allclose(stitched(spatial_layer / 4).data[0], grid / 4)

def test_reverse_divide_by_zero_cell_is_nodata(spatial_layer):
    result = stitched(1 / spatial_layer).data[0]
    assert np.isnan(result[0, 0])
    assert result[0, 1] == pytest.approx(1.0)

def test_layer_operators(spatial_layer):
    doubled = stitched(spatial_layer + spatial_layer).data[0]
    assert np.allclose(doubled, grid_values() * 2)

    ratio = stitched(spatial_layer / spatial_layer).data[0]
    assert np.isnan(ratio[0, 0])
    assert np.allclose(ratio[0, 1:], 1.0)

def test_layer_operator_joins_common_keys(layout_2x2, spatial_layer):
    partial = TiledRasterLayer.from_items(
        [(SpatialKey(1, 1), MultibandTile(np.full((5, 5), 3.0), float("nan")))], layout_2x2, "EPSG:3857"
    )
    result = spatial_layer.local_multiply(partial)
    items = result.to_items()

    assert [key for key, _ in items] == [SpatialKey(1, 1)]
    assert np.allclose(items[0][1].data[0], grid_values()[5:, 5:] * 3)

def test_spacetime_layers_join_per_instant(spacetime_layer):
    items = dict((spacetime_layer - spacetime_layer).to_items())
    assert len(items) == 8
    assert all(np.allclose(tile.data, 0.0) for tile in items.values())

def test_local_operand_errors(spatial_layer, spacetime_layer):
    with pytest.raises(TypeError):
        spatial_layer + spacetime_layer
    with pytest.raises(TypeError):
        spatial_layer * "2"
    with pytest.raises(TypeError):
        spatial_layer.local_add(True)
    with pytest.raises(TypeError):
        spatial_layer.reverse_local_subtract(spatial_layer)

def test_integer_layer_keeps_dtype(layer_factory):
    layer = layer_factory(dtype="int32", nodata=-2147483648)
    result = layer.local_divide(3)
    tile = result.to_items()[0][1]
    assert tile.dtype == np.dtype("int32")
    assert tile.data[0, 0, 4] == 1

def test_reclassify(spatial_layer):
    result = spatial_layer.reclassify({9: 1, 50: 2, 99: 3}, "LessThanOrEqualTo")
    classes = stitched(result).data[0]

    assert classes[0, 9] == 1
    assert classes[1, 0] == 2
    assert classes[5, 0] == 2
    assert classes[5, 1] == 3
    assert result.metadata.cell_type == result.to_items()[0][1].cell_type

def test_reclassify_float_classes(spatial_layer):
    result = spatial_layer.reclassify({50: 0.5}, "LessThan")
    assert result.metadata.dtype == np.dtype("float64")

# --- Output ---

def test_wire_round_trip(spacetime_layer):
    payloads, schema = spacetime_layer.to_wire()
    assert isinstance(payloads, db.Bag)

    eager = TiledRasterLayer.from_wire(collect(payloads), schema, spacetime_layer.layer_metadata)
    assert eager.layer_type is LayerType.SPACETIME
    assert eager.metadata == spacetime_layer.metadata
    for (k1, t1), (k2, t2) in zip(eager.to_items(), spacetime_layer.to_items()):
        assert k1 == k2
        assert_tiles_close(t1, t2)

    lazy = TiledRasterLayer.from_wire(payloads, schema, spacetime_layer.metadata, zoom_level=4)
    assert lazy.get_zoom() == 4
    assert_same_keys(lazy, spacetime_layer)

def test_from_wire_rejects_keyless_schema(spatial_layer):
    payload, schema = spatial_layer.stitch()
    with pytest.raises(WireFormatError):
        TiledRasterLayer.from_wire([payload], schema, spatial_layer.layer_metadata)

def test_lookup_spacetime(spacetime_layer):
    payloads, schema = spacetime_layer.lookup(1, 0)
    parsed = schema_from_string(schema)
    decoded = [decode_tile(p, parsed) for p in payloads]

    assert [key for key, _ in decoded] == [SpaceTimeKey(1, 0, 1000), SpaceTimeKey(1, 0, 2000)]
    assert decoded[0][1].data[0, 0, 0] == 1005.0

def test_lookup_missing_coordinate(spatial_layer):
    payloads, schema = spatial_layer.lookup(5, 5)
    assert payloads == []
    assert "cellType" in schema

def test_stitch(spatial_layer):
    payload, schema = spatial_layer.stitch()
    key, tile = decode_tile(payload, schema_from_string(schema))

    assert key is None
    assert [f["name"] for f in json.loads(schema)["fields"]] == ["rows", "cols", "bands"]
    assert np.allclose(tile.data[0], grid_values())

def test_stitch_errors(spacetime_layer, layout_2x2):
    with pytest.raises(TypeError):
        spacetime_layer.stitch()

    empty = TiledRasterLayer.from_items([], layout_2x2, "EPSG:3857", layer_type=LayerType.SPATIAL)
    with pytest.raises(EmptyLayerError):
        empty.stitch()

# --- Layout changes ---

def test_tile_to_layout_forms(spatial_layer):
    as_pair = spatial_layer.tile_to_layout((ONE_TILE_EXTENT, ONE_TILE_LAYOUT))
    as_mapping = spatial_layer.tile_to_layout({"extent": ONE_TILE_EXTENT, "tileLayout": ONE_TILE_LAYOUT})

    for layer in (as_pair, as_mapping):
        assert layer.collect_keys() == [SpatialKey(0, 0)]
        assert np.allclose(layer.to_items()[0][1].data[0], grid_values())

def test_tile_to_layout_invalid(spatial_layer):
    with pytest.raises(LayoutConversionError):
        spatial_layer.tile_to_layout({"extent": ONE_TILE_EXTENT})
    with pytest.raises(LayoutConversionError):
        spatial_layer.tile_to_layout((ONE_TILE_EXTENT, {"layoutCols": 0, "layoutRows": 1, "tileCols": 2, "tileRows": 2}))

def test_reproject_same_crs(spacetime_layer):
    result = spacetime_layer.reproject(ONE_TILE_EXTENT, ONE_TILE_LAYOUT, "EPSG:3857", "Bilinear")
    assert result.collect_keys() == [SpaceTimeKey(0, 0, 1000), SpaceTimeKey(0, 0, 2000)]
    assert result.metadata.layout.tile_layout.tile_cols == 10

def test_reproject_to_geographic(spatial_layer):
    extent = {"xmin": 0.0, "ymin": 0.0, "xmax": 0.0001, "ymax": 0.0001}
    result = spatial_layer.reproject(extent, {"layoutCols": 1, "layoutRows": 1, "tileCols": 4, "tileRows": 4}, "EPSG:4326")

    assert result.metadata.crs.to_epsg() == 4326
    assert result.count() == 1

def test_reproject_invalid_crs(spatial_layer):
    with pytest.raises(CRSResolutionError):
        spatial_layer.reproject(ONE_TILE_EXTENT, ONE_TILE_LAYOUT, "EPSG:not-a-code")

def test_reproject_to_float_scheme(spatial_layer):
    result = spatial_layer.reproject_to_scheme("float", 4, 0.1, "EPSG:3857")

    assert result.get_zoom() is None
    assert result.metadata.layout.tile_layout.layout_cols == 3
    assert np.allclose(stitched(result).data[0, :10, :10], grid_values())

def test_reproject_to_zoom_scheme(spatial_layer):
    result = spatial_layer.reproject_to_scheme("zoom", 5, 0.1, "EPSG:3857")
    assert isinstance(result.get_zoom(), int)
    assert result.metadata.layout.tile_layout.layout_cols == 2 ** result.get_zoom()

def test_reproject_to_unknown_scheme(spatial_layer):
    with pytest.raises(ValueError):
        spatial_layer.reproject_to_scheme("hexagonal", 4, 0.1, "EPSG:3857")

def test_tile_to_layout_raw_cell_type(layer_factory):
    layer = layer_factory(dtype="int32", nodata=None)
    assert layer.metadata.cell_type == "int32raw"

    retiled = layer.tile_to_layout((ONE_TILE_EXTENT, ONE_TILE_LAYOUT))
    items = retiled.to_items()

    assert [key for key, _ in items] == [SpatialKey(0, 0)]
    assert items[0][1].dtype == np.dtype("int32")
    assert items[0][1].data[0].tolist() == grid_values().astype("int32").tolist()

def test_reproject_raw_cell_type(layer_factory):
    layer = layer_factory(dtype="uint8", nodata=None)
    result = layer.reproject(ONE_TILE_EXTENT, ONE_TILE_LAYOUT, "EPSG:3857")

    tile = result.to_items()[0][1]
    assert result.metadata.cell_type == "uint8raw"
    assert tile.data[0].tolist() == grid_values().astype("uint8").tolist()

def test_layer_join_narrows_bounds(layout_2x2, spatial_layer):
    partial = TiledRasterLayer.from_items(
        [(SpatialKey(1, 1), MultibandTile(np.full((5, 5), 3.0), float("nan")))], layout_2x2, "EPSG:3857"
    )
    result = spatial_layer + partial
    bounds = json.loads(result.layer_metadata)["bounds"]

    assert bounds == {"minKey": {"col": 1, "row": 1}, "maxKey": {"col": 1, "row": 1}}
    assert result.metadata.extent.bounds == (5.0, 0.0, 10.0, 5.0)
    assert (spatial_layer + 1).metadata.bounds == spatial_layer.metadata.bounds
