# src/tilebridge/vector/layer.py

"""
This module defines the vector container used for WKT geometry inputs.
"""

import logging
from typing import Union, Iterable, Optional

import geopandas as gpd
from rasterio.crs import CRS

log = logging.getLogger(__name__)

__all__ = [
    "Vector"
]

class Vector:
    def __init__(self, data: gpd.GeoDataFrame):
        if not isinstance(data, gpd.GeoDataFrame):
            raise TypeError(f"Expected GeoDataFrame, got {type(data)}")
        self._data = data

    @classmethod
    def from_wkt(cls, wkts: Iterable[str], crs: Optional[Union[str, CRS]] = None) -> 'Vector':
        """
        Parse WKT strings into a Vector.

        Args:
            wkts: Well-known-text geometries.
            crs: CRS the coordinates are expressed in.

        Raises:
            GeometryError: If any string is not valid WKT.
        """
        from .geom import read_wkt

        if isinstance(wkts, str):
            wkts = [wkts]
        geometries = [read_wkt(text) for text in wkts]
        if crs is not None and isinstance(crs, CRS):
            crs = crs.to_wkt()
        return cls(gpd.GeoDataFrame(geometry=gpd.GeoSeries(geometries), crs=crs))

    @property
    def data(self) -> gpd.GeoDataFrame:
        return self._data

    @property
    def crs(self):
        return self._data.crs

    @property
    def geometries(self) -> list:
        return list(self._data.geometry)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self):
        return f"<Vector features={len(self._data)} crs={self.crs}>"
