# tests/unit/test_tile.py

import pytest
import numpy as np

from tilebridge.exceptions import LayerValidationError
from tilebridge.raster.tile import MultibandTile, cell_type_name, parse_cell_type, default_nodata

# --- Construction ---

def test_2d_data_promoted_to_single_band():
    tile = MultibandTile(np.zeros((4, 6), dtype="float32"))
    assert tile.band_count == 1
    assert tile.data.shape == (1, 4, 6)
    assert tile.dimensions == (6, 4)

def test_invalid_input_type():
    with pytest.raises(TypeError):
        MultibandTile([[1, 2], [3, 4]])

def test_invalid_dimensions():
    with pytest.raises(LayerValidationError):
        MultibandTile(np.zeros(5))

def test_unsupported_dtype():
    with pytest.raises(LayerValidationError):
        MultibandTile(np.zeros((2, 2), dtype="int64"))

def test_from_bands_shape_mismatch():
    with pytest.raises(LayerValidationError):
        MultibandTile.from_bands([np.zeros((2, 2)), np.zeros((3, 3))])

def test_band_index_out_of_range():
    tile = MultibandTile(np.zeros((2, 3, 3)))
    assert tile.band(1).shape == (3, 3)
    with pytest.raises(IndexError):
        tile.band(2)

# --- Cell types ---

@pytest.mark.parametrize("dtype, nodata, name", [
    ("float64", float("nan"), "float64"),
    ("int32", None, "int32raw"),
    ("int32", -2147483648, "int32"),
    ("uint8", 0, "uint8"),
    ("int16", -1, "int16ud-1"),
    ("float32", -9999, "float32ud-9999.0"),
])
def test_cell_type_names(dtype, nodata, name):
    assert cell_type_name(dtype, nodata) == name

def test_parse_cell_type():
    dtype, nodata = parse_cell_type("float32ud-9999.0")
    assert dtype == np.dtype("float32")
    assert nodata == -9999.0

    dtype, nodata = parse_cell_type("int16raw")
    assert dtype == np.dtype("int16") and nodata is None

    dtype, nodata = parse_cell_type("float64")
    assert np.isnan(nodata)

def test_parse_unknown_cell_type():
    with pytest.raises(LayerValidationError):
        parse_cell_type("complex128")

def test_default_nodata():
    assert np.isnan(default_nodata("float32"))
    assert default_nodata("uint16") == 0
    assert default_nodata("int8") == -128

# --- Nodata handling ---

def test_nodata_mask_float_with_value():
    data = np.array([[1.0, -9999.0], [np.nan, 4.0]])
    tile = MultibandTile(data, -9999.0)
    assert tile.nodata_mask()[0].tolist() == [[False, True], [True, False]]
    assert not tile.is_empty()

def test_raw_int_tile_has_no_nodata_cells():
    tile = MultibandTile(np.zeros((3, 3), dtype="int32"), None)
    assert not tile.nodata_mask().any()
    assert tile.fill_value == 0
    assert tile.cell_type == "int32raw"

def test_convert_carries_nodata():
    tile = MultibandTile(np.array([[1.7, np.nan]]), float("nan"))
    converted = tile.convert("int16", -1)
    assert converted.data.tolist() == [[[1, -1]]]
    assert converted.cell_type == "int16ud-1"

def test_equality_is_nan_aware():
    a = MultibandTile(np.array([[1.0, np.nan]]), float("nan"))
    b = MultibandTile(np.array([[1.0, np.nan]]), float("nan"))
    assert a == b
    assert a != MultibandTile(np.array([[2.0, np.nan]]), float("nan"))
