# src/tilebridge/keys.py

"""
This module defines the tile keys used to index layers.

A key only needs two capabilities for the layer adapter to work with it:
extracting its spatial component and replacing that component. SpatialKey and
SpaceTimeKey both provide them, so every layer operation is written once.
"""

import logging
from enum import Enum
from dataclasses import dataclass
from typing import Union, Optional, Iterable, Dict, Any

log = logging.getLogger(__name__)

__all__ = [
    "SpatialKey",
    "SpaceTimeKey",
    "TileKey",
    "LayerType",
    "KeyBounds"
]

@dataclass(frozen=True, order=True)
class SpatialKey:
    """
    Grid coordinate of a tile within a layout.

    Args:
        col: Column index, increasing eastward.
        row: Row index, increasing southward (row 0 is the top of the layout).
    """
    col: int
    row: int

    @property
    def spatial_key(self) -> 'SpatialKey':
        return self

    def with_spatial(self, spatial_key: 'SpatialKey') -> 'SpatialKey':
        return spatial_key

    def to_dict(self) -> Dict[str, int]:
        return {"col": self.col, "row": self.row}

@dataclass(frozen=True, order=True)
class SpaceTimeKey:
    """
    Grid coordinate of a tile paired with a time instant.

    Args:
        col: Column index.
        row: Row index.
        instant: Time instant in milliseconds since the epoch.
    """
    col: int
    row: int
    instant: int

    @property
    def spatial_key(self) -> SpatialKey:
        return SpatialKey(self.col, self.row)

    def with_spatial(self, spatial_key: SpatialKey) -> 'SpaceTimeKey':
        return SpaceTimeKey(spatial_key.col, spatial_key.row, self.instant)

    def to_dict(self) -> Dict[str, int]:
        return {"col": self.col, "row": self.row, "instant": self.instant}

TileKey = Union[SpatialKey, SpaceTimeKey]

class LayerType(Enum):
    """
    Key shape of a layer.

    Modes:
        SPATIAL: Tiles keyed by SpatialKey.
        SPACETIME: Tiles keyed by SpaceTimeKey.
    """
    SPATIAL = "spatial"
    SPACETIME = "spacetime"

    @property
    def key_class(self) -> type:
        return SpatialKey if self is LayerType.SPATIAL else SpaceTimeKey

    @classmethod
    def of(cls, key: TileKey) -> 'LayerType':
        """Infers the layer type from a key instance."""
        if isinstance(key, SpaceTimeKey):
            return cls.SPACETIME
        if isinstance(key, SpatialKey):
            return cls.SPATIAL
        raise TypeError(f"Expected SpatialKey or SpaceTimeKey, got {type(key).__name__}")

    def key_from_dict(self, data: Dict[str, Any]) -> TileKey:
        try:
            if self is LayerType.SPATIAL:
                return SpatialKey(int(data["col"]), int(data["row"]))
            return SpaceTimeKey(int(data["col"]), int(data["row"]), int(data["instant"]))
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid {self.value} key mapping {data}: {e}") from e

@dataclass(frozen=True)
class KeyBounds:
    """
    Inclusive bounds over the keys of a layer.

    Empty bounds are represented by None wherever a KeyBounds is optional.
    """
    min_key: TileKey
    max_key: TileKey

    @classmethod
    def from_keys(cls, keys: Iterable[TileKey]) -> Optional['KeyBounds']:
        """Computes the bounds of a key set, or None if it is empty."""
        bounds = None
        for key in keys:
            single = cls(key, key)
            bounds = single if bounds is None else bounds.combine(single)
        return bounds

    def combine(self, other: Optional['KeyBounds']) -> 'KeyBounds':
        if other is None:
            return self

        layer_type = LayerType.of(self.min_key)
        if layer_type is not LayerType.of(other.min_key):
            raise TypeError("Cannot combine bounds of different key types")

        if layer_type is LayerType.SPATIAL:
            return KeyBounds(
                SpatialKey(min(self.min_key.col, other.min_key.col), min(self.min_key.row, other.min_key.row)),
                SpatialKey(max(self.max_key.col, other.max_key.col), max(self.max_key.row, other.max_key.row))
            )
        return KeyBounds(
            SpaceTimeKey(
                min(self.min_key.col, other.min_key.col),
                min(self.min_key.row, other.min_key.row),
                min(self.min_key.instant, other.min_key.instant)
            ),
            SpaceTimeKey(
                max(self.max_key.col, other.max_key.col),
                max(self.max_key.row, other.max_key.row),
                max(self.max_key.instant, other.max_key.instant)
            )
        )

    def intersection(self, other: Optional['KeyBounds']) -> Optional['KeyBounds']:
        """Bounds shared by both, or None when they do not overlap."""
        if other is None:
            return None

        layer_type = LayerType.of(self.min_key)
        if layer_type is not LayerType.of(other.min_key):
            raise TypeError("Cannot intersect bounds of different key types")

        lows, highs = self.min_key.to_dict(), self.max_key.to_dict()
        low = {name: max(lows[name], value) for name, value in other.min_key.to_dict().items()}
        high = {name: min(highs[name], value) for name, value in other.max_key.to_dict().items()}
        if any(low[name] > high[name] for name in low):
            return None
        return KeyBounds(layer_type.key_from_dict(low), layer_type.key_from_dict(high))

    def includes(self, key: TileKey) -> bool:
        sk = key.spatial_key
        inside = (
            self.min_key.col <= sk.col <= self.max_key.col and
            self.min_key.row <= sk.row <= self.max_key.row
        )
        if inside and isinstance(key, SpaceTimeKey) and isinstance(self.min_key, SpaceTimeKey):
            inside = self.min_key.instant <= key.instant <= self.max_key.instant
        return inside

    def with_spatial_bounds(self, min_spatial: SpatialKey, max_spatial: SpatialKey) -> 'KeyBounds':
        """Replaces the spatial part of both corners, keeping any temporal range."""
        return KeyBounds(self.min_key.with_spatial(min_spatial), self.max_key.with_spatial(max_spatial))

    def to_dict(self) -> Dict[str, Dict[str, int]]:
        return {"minKey": self.min_key.to_dict(), "maxKey": self.max_key.to_dict()}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], layer_type: LayerType) -> Optional['KeyBounds']:
        if not data:
            return None
        return cls(layer_type.key_from_dict(data["minKey"]), layer_type.key_from_dict(data["maxKey"]))
