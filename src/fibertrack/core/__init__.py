"""
Core Geometry Module

Main components:
- ImageSpace: voxel, scaled and world coordinate conversions with rounding
- Grid: immutable image grid snapshot attached to streamline files
- Image: voxel data with its image space, imported by element kind
"""

from .space import (
    ImageSpace,
    PointType,
    RoundingType,
    ORIENTATION_CODES,
    zero_vector,
    norm,
    dot,
    step,
    spherical_to_cartesian,
)
from .grid import Grid
from .image import ElementKind, Image

__all__ = [
    # Space
    "ImageSpace",
    "PointType",
    "RoundingType",
    "ORIENTATION_CODES",
    "zero_vector",
    "norm",
    "dot",
    "step",
    "spherical_to_cartesian",
    # Grid
    "Grid",
    # Image
    "ElementKind",
    "Image",
]
