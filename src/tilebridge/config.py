# src/tilebridge/config.py

"""
This module holds the runtime configuration shared by tiled layers.

A single process-wide BridgeConfig decides how dask bags are partitioned and
computed, how tile payloads are compressed on the wire and how cautious the
driver is before collecting a whole layer into memory.
"""

import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

log = logging.getLogger(__name__)

__all__ = [
    "BridgeConfig",
    "get_config",
    "set_config",
    "setup_logging"
]

VALID_SCHEDULERS = ("threads", "sync", "processes")
VALID_COMPRESSIONS = ("none", "gzip")

@dataclass(frozen=True)
class BridgeConfig:
    """
    Configuration object for layer execution and transport.

    Args:
        npartitions: Default number of partitions for bags built from in-memory records.
        scheduler: Dask scheduler used whenever records are collected ('threads', 'sync', 'processes').
        wire_compression: Compression applied to band payloads in the wire format ('none', 'gzip').
        memory_safety_factor: Multiplier applied to the raw size of a layer before collecting it.
    """
    npartitions: int = 4
    scheduler: str = "threads"
    wire_compression: str = "none"
    memory_safety_factor: float = 2.0

    def __post_init__(self):
        if self.npartitions < 1:
            raise ValueError(f"npartitions must be >= 1, got {self.npartitions}")
        if self.scheduler not in VALID_SCHEDULERS:
            raise ValueError(f"Invalid scheduler '{self.scheduler}'. Must be one of: {list(VALID_SCHEDULERS)}")
        if self.wire_compression not in VALID_COMPRESSIONS:
            raise ValueError(
                f"Invalid wire compression '{self.wire_compression}'. "
                f"Must be one of: {list(VALID_COMPRESSIONS)}"
            )
        if self.memory_safety_factor < 1.0:
            raise ValueError(f"memory_safety_factor must be >= 1.0, got {self.memory_safety_factor}")

    @classmethod
    def from_env(cls, base: Optional['BridgeConfig'] = None) -> 'BridgeConfig':
        """
        Builds a configuration from TILEBRIDGE_* environment variables.

        Unset variables keep the value from `base` (or the defaults).
        """
        base = base or cls()
        return cls(
            npartitions=int(os.getenv("TILEBRIDGE_NPARTITIONS", base.npartitions)),
            scheduler=os.getenv("TILEBRIDGE_SCHEDULER", base.scheduler),
            wire_compression=os.getenv("TILEBRIDGE_WIRE_COMPRESSION", base.wire_compression),
            memory_safety_factor=float(
                os.getenv("TILEBRIDGE_MEMORY_SAFETY_FACTOR", base.memory_safety_factor)
            )
        )

    def evolve(self, **changes) -> 'BridgeConfig':
        """Returns a copy with the given fields replaced."""
        return replace(self, **changes)

_current_config = BridgeConfig.from_env()

def get_config() -> BridgeConfig:
    """Returns the process-wide configuration."""
    return _current_config

def set_config(config: BridgeConfig) -> BridgeConfig:
    """
    Replaces the process-wide configuration.

    Returns:
        BridgeConfig: The previous configuration, so callers can restore it.
    """
    global _current_config
    if not isinstance(config, BridgeConfig):
        raise TypeError(f"Expected BridgeConfig, got {type(config).__name__}")

    previous = _current_config
    _current_config = config
    log.debug(f"Configuration updated: {config}")
    return previous

def setup_logging(level: int = logging.INFO) -> None:
    """
    Configures the standard logging format and level.

    Args:
        level (int): The logging threshold level.
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
