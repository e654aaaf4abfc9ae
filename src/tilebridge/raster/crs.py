# src/tilebridge/raster/crs.py

"""
This module resolves coordinate reference system inputs.
"""

import logging
from typing import Union

from rasterio.crs import CRS
from rasterio.errors import CRSError

from tilebridge.exceptions import CRSResolutionError

log = logging.getLogger(__name__)

__all__ = [
    "resolve_crs",
    "crs_to_string"
]

def resolve_crs(value: Union[str, int, CRS]) -> CRS:
    """
    Resolve a host-side CRS description into a rasterio CRS.

    Args:
        value: An existing CRS, an EPSG code, or a string ('EPSG:3857',
               a PROJ string or WKT).

    Returns:
        CRS: The resolved coordinate reference system.

    Raises:
        CRSResolutionError: If the value does not describe a valid CRS.
    """
    if isinstance(value, CRS):
        return value

    if value is None or (isinstance(value, str) and not value.strip()):
        raise CRSResolutionError("CRS must not be empty")

    try:
        if isinstance(value, int):
            return CRS.from_epsg(value)
        return CRS.from_user_input(value.strip())
    except (CRSError, TypeError, ValueError) as e:
        raise CRSResolutionError(f"Could not resolve CRS from {value!r}: {e}") from e

def crs_to_string(crs: CRS) -> str:
    """
    Render a CRS in the most portable textual form.

    Authority codes ('EPSG:4326') are preferred; PROJ strings are the fallback.
    """
    epsg = crs.to_epsg()
    if epsg is not None:
        return f"EPSG:{epsg}"
    return crs.to_proj4() or crs.to_wkt()
