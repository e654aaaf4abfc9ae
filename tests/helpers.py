# tests/helpers.py

import numpy as np

from tilebridge.raster.layer import TiledRasterLayer
from tilebridge.raster.stitch import stitch_tiles
from tilebridge.raster.tile import MultibandTile

def stitched(layer: TiledRasterLayer) -> MultibandTile:
    """Mosaic of a spatial layer, for comparing cell values."""
    mosaic, _ = stitch_tiles(layer.to_items(), layer.metadata.layout)
    return mosaic

def assert_same_keys(l1: TiledRasterLayer, l2: TiledRasterLayer):
    """Strictly verify two layers hold the same keys."""
    k1, k2 = l1.collect_keys(), l2.collect_keys()
    assert k1 == k2, f"Key mismatch: {k1} != {k2}"

def assert_tiles_close(current: MultibandTile, reference: MultibandTile, atol: float = 1e-9):
    """Check cell values match, treating NaN as equal."""
    assert current.data.shape == reference.data.shape, \
        f"Shape mismatch: {current.data.shape} != {reference.data.shape}"
    assert np.allclose(current.data, reference.data, atol=atol, equal_nan=True), \
        "Cell values drifted"

def grid_values(rows: int = 10, cols: int = 10) -> np.ndarray:
    """Global cell values of the test layers: 10 * row + col."""
    r, c = np.mgrid[0:rows, 0:cols]
    return (10.0 * r + c).astype("float64")
