# tests/unit/test_focal.py

import pytest
import numpy as np

from tilebridge.raster.focal import (
    FocalOperation,
    NeighborhoodType,
    build_neighborhood,
    apply_focal
)
from tilebridge.raster.tile import MultibandTile

from helpers import stitched, assert_tiles_close, grid_values

# --- Neighborhoods ---

@pytest.mark.parametrize("shape, params, cells", [
    (NeighborhoodType.SQUARE, (1,), 9),
    (NeighborhoodType.SQUARE, (2,), 25),
    (NeighborhoodType.NESW, (1,), 5),
    (NeighborhoodType.CIRCLE, (1,), 5),
    (NeighborhoodType.ANNULUS, (1, 2), 12),
    (NeighborhoodType.WEDGE, (1, 0, 90), 3),
])
def test_footprint_sizes(shape, params, cells):
    assert int(build_neighborhood(shape, *params).footprint.sum()) == cells

def test_annulus_excludes_centre():
    footprint = build_neighborhood(NeighborhoodType.ANNULUS, 1, 2).footprint
    assert not footprint[2, 2]

def test_wedge_points_north_east():
    footprint = build_neighborhood(NeighborhoodType.WEDGE, 1, 0, 90).footprint
    assert footprint[1, 2] and footprint[0, 1]
    assert not footprint[1, 0] and not footprint[2, 1]

def test_neighborhood_requires_size():
    with pytest.raises(ValueError):
        build_neighborhood(NeighborhoodType.SQUARE, 0)

def test_unknown_names():
    with pytest.raises(ValueError):
        FocalOperation.from_name("Variance")
    with pytest.raises(ValueError):
        NeighborhoodType.from_name("Hexagon")

# --- Cell computations ---

def test_sum_counts_window_cells():
    result = apply_focal(np.ones((4, 4)), FocalOperation.SUM, build_neighborhood(NeighborhoodType.SQUARE, 1))
    assert result[1, 1] == 9
    assert result[0, 0] == 4

def test_mean_ignores_nodata_neighbours():
    cells = np.array([[1.0, np.nan, 3.0]])
    result = apply_focal(cells, FocalOperation.MEAN, build_neighborhood(NeighborhoodType.SQUARE, 1))
    assert result[0, 0] == 1.0
    assert np.isnan(result[0, 1])
    assert result[0, 2] == 3.0

def test_min_max_median_mode():
    cells = np.array([[1.0, 2.0, 2.0], [5.0, 3.0, 9.0], [2.0, 8.0, 7.0]])
    square = build_neighborhood(NeighborhoodType.SQUARE, 1)
    assert apply_focal(cells, FocalOperation.MIN, square)[1, 1] == 1.0
    assert apply_focal(cells, FocalOperation.MAX, square)[1, 1] == 9.0
    assert apply_focal(cells, FocalOperation.MEDIAN, square)[1, 1] == 3.0
    assert apply_focal(cells, FocalOperation.MODE, square)[1, 1] == 2.0

def test_standard_deviation_of_constant_is_zero():
    result = apply_focal(np.full((3, 3), 5.0), FocalOperation.STANDARD_DEVIATION, build_neighborhood(NeighborhoodType.SQUARE, 1))
    assert np.allclose(result, 0.0)

def test_slope_and_aspect_of_eastward_ramp():
    ramp = np.tile(np.arange(5, dtype="float64"), (5, 1))
    square = build_neighborhood(NeighborhoodType.SQUARE, 1)

    slope = apply_focal(ramp, FocalOperation.SLOPE, square)
    assert slope[2, 2] == pytest.approx(45.0)

    aspect = apply_focal(ramp, FocalOperation.ASPECT, square)
    assert aspect[2, 2] == pytest.approx(270.0)

def test_aspect_of_northward_ramp_faces_south():
    ramp = -np.tile(np.arange(5, dtype="float64")[:, np.newaxis], (1, 5))
    aspect = apply_focal(ramp, FocalOperation.ASPECT, build_neighborhood(NeighborhoodType.SQUARE, 1))
    assert aspect[2, 2] == pytest.approx(180.0)

def test_flat_aspect_is_minus_one():
    aspect = apply_focal(np.zeros((3, 3)), FocalOperation.ASPECT, build_neighborhood(NeighborhoodType.SQUARE, 1))
    assert aspect[1, 1] == -1.0

# --- Layers ---

def test_focal_is_seamless_across_tiles(spatial_layer):
    result = spatial_layer.focal("Sum", "Square", 1)

    expected = apply_focal(grid_values(), FocalOperation.SUM, build_neighborhood(NeighborhoodType.SQUARE, 1))
    assert_tiles_close(stitched(result), MultibandTile(expected, float("nan")))

def test_focal_output_layer(layer_factory):
    layer = layer_factory(bands=2, dtype="int16", nodata=-1, zoom_level=3)
    result = layer.focal("Mean", "Circle", 1)

    assert result.get_zoom() is None
    assert result.metadata.cell_type == "float64"
    assert result.count() == 4
    assert all(tile.band_count == 1 for _, tile in result.to_items())

def test_slope_uses_z_factor(spatial_layer):
    flat = stitched(spatial_layer.focal("Slope", None, 0)).band(0)
    steep = stitched(spatial_layer.focal("Slope", None, 3)).band(0)
    assert np.all(steep[1:-1, 1:-1] > flat[1:-1, 1:-1])
