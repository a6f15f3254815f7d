"""
Streamline filters for the tracking pipeline

Each filter either accepts a streamline or vetoes it by returning False.
Filters keep nothing from one call to the next beyond their threshold.
"""

import logging

from ..core.space import ImageSpace
from .data_source import DataManipulator
from .streamline import Streamline

logger = logging.getLogger(__name__)


class LabelCountFilter(DataManipulator):
    """Reject streamlines that visited fewer than a minimum number of distinct regions"""

    def __init__(self, min_count: int):
        if min_count < 0:
            raise ValueError(f"Minimum label count must be non-negative, got {min_count}")
        self.min_count = int(min_count)

    def process(self, data: Streamline) -> bool:
        return len(data.labels) >= self.min_count


class LengthFilter(DataManipulator):
    """
    Reject streamlines shorter than a minimum length

    Length is the sum of point-to-point distances in world units, so the
    image space is needed to measure voxel or scaled streamlines.
    """

    def __init__(self, min_length: float, space: ImageSpace):
        if min_length < 0:
            raise ValueError(f"Minimum length must be non-negative, got {min_length}")
        if space is None:
            raise ValueError("An image space is needed to measure streamline lengths")
        self.min_length = float(min_length)
        self.space = space

    def process(self, data: Streamline) -> bool:
        return data.length(self.space) >= self.min_length
