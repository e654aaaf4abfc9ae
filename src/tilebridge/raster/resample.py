# src/tilebridge/raster/resample.py

"""
This module resolves resample-method names into rasterio resampling kernels.
"""

import logging
from enum import Enum
from typing import Union

from rasterio.enums import Resampling

log = logging.getLogger(__name__)

__all__ = [
    "ResampleMethod",
    "resolve_resample_method"
]

class ResampleMethod(Enum):
    """
    Resampling algorithms available to layout-changing operations.

    Values are the canonical names accepted from the host.
    """
    NEAREST_NEIGHBOR = "NearestNeighbor"
    BILINEAR = "Bilinear"
    CUBIC_CONVOLUTION = "CubicConvolution"
    CUBIC_SPLINE = "CubicSpline"
    LANCZOS = "Lanczos"
    AVERAGE = "Average"
    MODE = "Mode"
    MEDIAN = "Median"
    MAX = "Max"
    MIN = "Min"

    @property
    def resampling(self) -> Resampling:
        """The rasterio kernel implementing this method."""
        return _KERNELS[self]

_KERNELS = {
    ResampleMethod.NEAREST_NEIGHBOR: Resampling.nearest,
    ResampleMethod.BILINEAR: Resampling.bilinear,
    ResampleMethod.CUBIC_CONVOLUTION: Resampling.cubic,
    ResampleMethod.CUBIC_SPLINE: Resampling.cubic_spline,
    ResampleMethod.LANCZOS: Resampling.lanczos,
    ResampleMethod.AVERAGE: Resampling.average,
    ResampleMethod.MODE: Resampling.mode,
    ResampleMethod.MEDIAN: Resampling.med,
    ResampleMethod.MAX: Resampling.max,
    ResampleMethod.MIN: Resampling.min
}

# GDAL-style short names
_ALIASES = {
    "nearest": ResampleMethod.NEAREST_NEIGHBOR,
    "near": ResampleMethod.NEAREST_NEIGHBOR,
    "cubic": ResampleMethod.CUBIC_CONVOLUTION,
    "cubic_spline": ResampleMethod.CUBIC_SPLINE,
    "cubicspline": ResampleMethod.CUBIC_SPLINE,
    "med": ResampleMethod.MEDIAN
}

def resolve_resample_method(name: Union[str, ResampleMethod]) -> ResampleMethod:
    """
    Resolve a resample-method name (case-insensitive) into a ResampleMethod.

    Raises:
        ValueError: If the name matches no known method.
    """
    if isinstance(name, ResampleMethod):
        return name

    key = str(name).strip().lower()
    for method in ResampleMethod:
        if method.value.lower() == key or method.name.lower() == key:
            return method
    if key in _ALIASES:
        return _ALIASES[key]

    valid = [m.value for m in ResampleMethod]
    raise ValueError(f"Invalid resample method '{name}'. Must be one of: {valid}")
