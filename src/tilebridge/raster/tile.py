# src/tilebridge/raster/tile.py

"""
This module defines the in-memory multi-band tile and its cell types.
"""

import re
import logging
from typing import Union, Optional, Tuple, List

import numpy as np

from tilebridge.exceptions import LayerValidationError

log = logging.getLogger(__name__)

__all__ = [
    "MultibandTile",
    "cell_type_name",
    "parse_cell_type",
    "default_nodata",
    "SUPPORTED_DTYPES"
]

SUPPORTED_DTYPES = ("int8", "uint8", "int16", "uint16", "int32", "float32", "float64")

_CELL_TYPE_PATTERN = re.compile(r"^(int8|uint8|int16|uint16|int32|float32|float64)(raw|ud(.+))?$")

def default_nodata(dtype: Union[str, np.dtype]) -> Union[float, int]:
    """
    Returns the conventional nodata value of a cell type.

    NaN for floats, the type minimum for signed integers and 0 for unsigned integers.
    """
    dtype = np.dtype(dtype)
    if dtype.kind == "f":
        return float("nan")
    if dtype.kind == "u":
        return 0
    return int(np.iinfo(dtype).min)

def _same_value(a: Optional[float], b: Optional[float]) -> bool:
    if a is None or b is None:
        return a is None and b is None
    if np.isnan(a) or np.isnan(b):
        return bool(np.isnan(a) and np.isnan(b))
    return a == b

def cell_type_name(dtype: Union[str, np.dtype], nodata: Optional[Union[float, int]]) -> str:
    """
    Formats a dtype and nodata pair as a cell type name.

    Examples: 'float64' (NaN nodata), 'int32raw' (no nodata), 'float32ud-9999.0'.
    """
    name = np.dtype(dtype).name
    if name not in SUPPORTED_DTYPES:
        raise LayerValidationError(f"Unsupported cell dtype '{name}'. Must be one of: {list(SUPPORTED_DTYPES)}")

    if nodata is None:
        return f"{name}raw"
    if _same_value(float(nodata), float(default_nodata(name))):
        return name
    if np.dtype(name).kind == "f":
        return f"{name}ud{float(nodata)}"
    return f"{name}ud{int(nodata)}"

def parse_cell_type(name: str) -> Tuple[np.dtype, Optional[Union[float, int]]]:
    """
    Parses a cell type name into a (dtype, nodata) pair.

    Raises:
        LayerValidationError: If the name is not a recognised cell type.
    """
    match = _CELL_TYPE_PATTERN.match(name.strip())
    if not match:
        raise LayerValidationError(f"Unknown cell type '{name}'")

    dtype = np.dtype(match.group(1))
    suffix = match.group(2)

    if suffix is None:
        return dtype, default_nodata(dtype)
    if suffix == "raw":
        return dtype, None

    raw_value = match.group(3)
    try:
        nodata = float(raw_value) if dtype.kind == "f" else int(float(raw_value))
    except ValueError as e:
        raise LayerValidationError(f"Invalid nodata value '{raw_value}' in cell type '{name}'") from e
    return dtype, nodata

class MultibandTile:
    """
    An ordered sequence of co-registered single-band grids.

    Bands are stored together as one (Bands, Rows, Cols) array so every band
    shares the same dimensions and cell type.

    Attributes:
        data (np.ndarray): The cell array in (Bands, Rows, Cols) format.
        nodata (float | int | None): The value representing missing cells.
    """

    def __init__(self, data: np.ndarray, nodata: Optional[Union[float, int]] = None):
        """
        Initialize a MultibandTile.

        Args:
            data: Cell array. 2D arrays (Rows, Cols) are promoted to a single band.
            nodata: Value indicating missing cells.

        Raises:
            LayerValidationError: If dimensions or dtype are not supported.
        """
        if not isinstance(data, np.ndarray):
            raise TypeError(f"Data must be numpy.ndarray, got {type(data)}")

        if data.ndim == 2:
            data = data[np.newaxis, :, :]

        if data.ndim != 3:
            raise LayerValidationError(f"Tile data must be 2D or 3D, got shape {data.shape}")

        if data.dtype.name not in SUPPORTED_DTYPES:
            raise LayerValidationError(
                f"Unsupported cell dtype '{data.dtype.name}'. Must be one of: {list(SUPPORTED_DTYPES)}"
            )

        self._data = data
        self.nodata = nodata

    @classmethod
    def from_bands(cls, bands: List[np.ndarray], nodata: Optional[Union[float, int]] = None) -> 'MultibandTile':
        """Stacks single-band arrays of equal shape into one tile."""
        if not bands:
            raise LayerValidationError("Cannot build a tile from an empty band list")

        shapes = {b.shape for b in bands}
        if len(shapes) != 1:
            raise LayerValidationError(f"Band shape mismatch: {sorted(shapes)}")
        return cls(np.stack(bands), nodata)

    @classmethod
    def empty(
        cls,
        band_count: int,
        rows: int,
        cols: int,
        dtype: Union[str, np.dtype] = "float64",
        nodata: Optional[Union[float, int]] = None
    ) -> 'MultibandTile':
        """Creates a tile where every cell is nodata (or zero when there is no nodata)."""
        fill = nodata if nodata is not None else 0
        return cls(np.full((band_count, rows, cols), fill, dtype=dtype), nodata)

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def band_count(self) -> int:
        return self._data.shape[0]

    @property
    def rows(self) -> int:
        return self._data.shape[1]

    @property
    def cols(self) -> int:
        return self._data.shape[2]

    @property
    def dimensions(self) -> Tuple[int, int]:
        """Returns (Cols, Rows)."""
        return self.cols, self.rows

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    @property
    def cell_type(self) -> str:
        return cell_type_name(self.dtype, self.nodata)

    @property
    def fill_value(self) -> Union[float, int]:
        """Value written into cells that hold no data."""
        if self.nodata is not None:
            return self.nodata
        return float("nan") if self.dtype.kind == "f" else 0

    def band(self, index: int) -> np.ndarray:
        """Returns the 2D array of a band by 0-based index."""
        if not (0 <= index < self.band_count):
            raise IndexError(f"Band index {index} out of range (0-{self.band_count - 1})")
        return self._data[index]

    def bands(self) -> List[np.ndarray]:
        return [self._data[i] for i in range(self.band_count)]

    def nodata_mask(self) -> np.ndarray:
        """Boolean array, True where a cell holds no data."""
        if self.dtype.kind == "f":
            mask = np.isnan(self._data)
            if self.nodata is not None and not np.isnan(self.nodata):
                mask |= self._data == self.nodata
            return mask
        if self.nodata is None:
            return np.zeros(self._data.shape, dtype=bool)
        return self._data == self.nodata

    def is_empty(self) -> bool:
        """True if every cell of every band is nodata."""
        return bool(self.nodata_mask().all())

    def with_data(self, data: np.ndarray) -> 'MultibandTile':
        """Returns a new tile with the same nodata around new cell values."""
        return MultibandTile(data, self.nodata)

    def convert(self, dtype: Union[str, np.dtype], nodata: Optional[Union[float, int]] = None) -> 'MultibandTile':
        """Casts cells to a new dtype, carrying nodata cells across."""
        mask = self.nodata_mask()
        target = MultibandTile.empty(self.band_count, self.rows, self.cols, dtype, nodata)
        data = target.data
        valid = ~mask
        data[valid] = self._data[valid].astype(dtype, copy=False)
        return MultibandTile(data, nodata)

    def copy(self) -> 'MultibandTile':
        return MultibandTile(self._data.copy(), self.nodata)

    def __repr__(self) -> str:
        return f"<MultibandTile bands={self.band_count} shape=({self.rows}, {self.cols}) cell_type={self.cell_type}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MultibandTile):
            return NotImplemented

        if self._data.shape != other.data.shape or self.dtype != other.dtype:
            return False
        if not _same_value(self.nodata, other.nodata):
            return False
        return bool(np.array_equal(self._data, other.data, equal_nan=self.dtype.kind == "f"))

    def __array__(self, dtype=None, copy=None) -> np.ndarray:
        return self._data if dtype is None else self._data.astype(dtype)
