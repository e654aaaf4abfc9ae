# src/tilebridge/vector/geom.py

"""
This module parses WKT geometries and selects the polygons used by masking and cost distance.
"""

import logging

import geopandas as gpd
from shapely import wkt
from shapely.errors import ShapelyError
from shapely.geometry import MultiPolygon
from shapely.geometry.base import BaseGeometry

from tilebridge.exceptions import GeometryError
from tilebridge.vector.layer import Vector

log = logging.getLogger(__name__)

__all__ = [
    "read_wkt",
    "polygonal",
    "POLYGONAL_TYPES"
]

POLYGONAL_TYPES = ("Polygon", "MultiPolygon")

def read_wkt(text: str) -> BaseGeometry:
    """
    Parse a single WKT string.

    Raises:
        GeometryError: If the text is not a string or not valid WKT.
    """
    if not isinstance(text, str):
        raise GeometryError(f"WKT must be a string, got {type(text).__name__}")
    try:
        return wkt.loads(text)
    except (ShapelyError, ValueError) as e:
        raise GeometryError(f"Could not parse WKT '{text[:60]}': {e}") from e

def _as_multipolygon(geometry: BaseGeometry) -> MultiPolygon:
    if geometry.geom_type == "Polygon":
        return MultiPolygon([geometry])
    return geometry

def polygonal(vector: Vector) -> Vector:
    """
    Keep the non-empty Polygon and MultiPolygon features, as MultiPolygons.

    Other geometry types are dropped silently.
    """
    gdf = vector.data
    keep = gdf.geom_type.isin(POLYGONAL_TYPES) & ~gdf.is_empty
    dropped = int((~keep).sum())
    if dropped:
        log.debug(f"Dropped {dropped} non-polygonal geometries")

    selected = gdf[keep].copy()
    selected["geometry"] = selected.geometry.apply(_as_multipolygon)
    return Vector(gpd.GeoDataFrame(selected, geometry="geometry", crs=gdf.crs))
