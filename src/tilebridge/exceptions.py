# src/tilebridge/exceptions.py

"""
Exception hierarchy shared by every tilebridge module.

Conversion failures on host inputs (CRS strings, layout mappings, WKT) also
derive from ValueError so callers can catch them without importing this module.
"""

__all__ = [
    "TileBridgeError",
    "CRSResolutionError",
    "LayoutConversionError",
    "GeometryError",
    "LayerValidationError",
    "EmptyLayerError",
    "WireFormatError"
]

class TileBridgeError(Exception):
    """Base class for all tilebridge errors."""

class CRSResolutionError(TileBridgeError, ValueError):
    """A CRS string could not be resolved to a coordinate system."""

class LayoutConversionError(TileBridgeError, ValueError):
    """An extent or tile-layout mapping could not be converted."""

class GeometryError(TileBridgeError, ValueError):
    """A WKT string could not be parsed into a geometry."""

class LayerValidationError(TileBridgeError):
    """Layer contents or metadata violate an operation precondition."""

class EmptyLayerError(LayerValidationError):
    """The operation requires a layer with non-empty key bounds."""

class WireFormatError(TileBridgeError):
    """Serialized records do not match the schema they were sent with."""
