# tests/conftest.py

import pytest
import numpy as np

from tilebridge.config import get_config, set_config
from tilebridge.keys import LayerType, SpatialKey, SpaceTimeKey
from tilebridge.raster.layer import TiledRasterLayer
from tilebridge.raster.layout import Extent, TileLayout, LayoutDefinition
from tilebridge.raster.tile import MultibandTile
from helpers import grid_values

@pytest.fixture(autouse=True)
def sync_config():
    """Runs every test on the synchronous dask scheduler with small bags."""
    previous = set_config(get_config().evolve(npartitions=2, scheduler="sync", wire_compression="none"))
    yield
    set_config(previous)

@pytest.fixture
def layout_2x2():
    """A 10x10 map-unit extent cut into 2x2 tiles of 5x5 cells (cell size 1)."""
    return LayoutDefinition(Extent(0.0, 0.0, 10.0, 10.0), TileLayout(2, 2, 5, 5))

@pytest.fixture
def layer_factory(layout_2x2):
    """
    Factory: Builds a 2x2-tile layer whose cells hold 10 * row + col.

    Band b holds the grid plus 100 * b. Spacetime layers repeat the tiles at
    every instant, shifted by the instant value.
    """
    def _create(
        layer_type=LayerType.SPATIAL,
        bands=1,
        dtype="float64",
        nodata=float("nan"),
        instants=(0,),
        crs="EPSG:3857",
        values=None,
        zoom_level=None
    ):
        grid = grid_values() if values is None else np.asarray(values, dtype="float64")
        items = []
        for instant in (instants if layer_type is LayerType.SPACETIME else (0,)):
            for row in range(2):
                for col in range(2):
                    block = grid[row * 5:(row + 1) * 5, col * 5:(col + 1) * 5] + instant
                    data = np.stack([block + 100 * b for b in range(bands)]).astype(dtype)
                    if layer_type is LayerType.SPACETIME:
                        key = SpaceTimeKey(col, row, instant)
                    else:
                        key = SpatialKey(col, row)
                    items.append((key, MultibandTile(data, nodata)))
        return TiledRasterLayer.from_items(items, layout_2x2, crs, zoom_level=zoom_level)

    return _create

@pytest.fixture
def spatial_layer(layer_factory):
    return layer_factory()

@pytest.fixture
def spacetime_layer(layer_factory):
    return layer_factory(layer_type=LayerType.SPACETIME, instants=(1000, 2000))

@pytest.fixture
def square_wkt():
    """Covers the top-left tile of layout_2x2 exactly."""
    return "POLYGON ((0 5, 5 5, 5 10, 0 10, 0 5))"
