# src/tilebridge/vector/__init__.py
#
# Copyright (c) The tilebridge project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The vector subpackage parses geometry inputs given as well-known text and
keeps the polygons that masking and cost distance operate on.
"""

# Data structure
from .layer import (
    Vector
)

# Parsing and selection
from .geom import (
    read_wkt,
    polygonal
)

__all__ = [
    # Data structure
    "Vector",

    # Parsing and selection
    "read_wkt",
    "polygonal"
]
