"""
Median streamline of a bundle

The median is built separately on each side of the seed. Streamlines are
aligned at their seed points, and the k-th point of the median on one side
is the coordinate-wise median of the k-th points of every streamline that
reaches that far. Each side is cut at a quantile of the lengths on that
side, so a few unusually long streamlines do not extend the median.
"""

from pathlib import Path
from typing import List, Optional, Sequence, Union
import logging

import numpy as np

from ..core.space import ImageSpace, PointType
from ..io.files import StreamlineFileSink, StreamlineFileSource
from .data_source import DataSink, DataSource
from .streamline import Streamline

logger = logging.getLogger(__name__)


def _median_side(sides: List[np.ndarray], quantile: float) -> np.ndarray:
    lengths = np.array([len(side) for side in sides])
    extent = int(np.quantile(lengths, quantile, method='lower'))

    points = []
    for k in range(extent):
        reaching = [side[k] for side in sides if len(side) > k]
        points.append(np.median(np.array(reaching), axis=0))
    return np.array(points).reshape(-1, 3)


def median_streamline(
    streamlines: Sequence[Streamline],
    space: Optional[ImageSpace] = None,
    quantile: float = 0.99
) -> Optional[Streamline]:
    """
    Compute the median of a set of streamlines

    Args:
        streamlines: Streamlines with meaningful seed indices
        space: Image space; with one the median is built in voxel coordinates,
            without one in the coordinates of the first streamline
        quantile: Quantile of the per-side lengths that limits the median's extent

    Returns:
        Median streamline, or None for an empty set
    """
    if not 0 <= quantile <= 1:
        raise ValueError(f"Quantile must lie in [0, 1], got {quantile}")

    streamlines = [s for s in streamlines if len(s) > 0]
    if not streamlines:
        return None

    point_type = PointType.VOXEL if space is not None else streamlines[0].point_type
    lefts, rights = [], []
    for streamline in streamlines:
        points = streamline.points_in(point_type, space)
        lefts.append(points[streamline.seed::-1])
        rights.append(points[streamline.seed:])

    left = _median_side(lefts, quantile)
    right = _median_side(rights, quantile)

    # Both sides start with the same median seed point
    return Streamline.from_halves(left, right, point_type)


class MedianStreamlineDataSink(DataSink):
    """
    Writes the median of all streamlines as a one-streamline TrackVis file

    Needs the whole dataset in a single block.
    """

    requires_full_block = True

    def __init__(
        self,
        stem: Union[str, Path],
        space: ImageSpace,
        quantile: float = 0.99
    ):
        """
        Initialize sink

        Args:
            stem: Output file stem
            space: Image space of the streamlines
            quantile: Length quantile limiting the median's extent
        """
        if not 0 <= quantile <= 1:
            raise ValueError(f"Quantile must lie in [0, 1], got {quantile}")
        self.stem = stem
        self.space = space
        self.quantile = quantile
        self.median: Optional[Streamline] = None

    def setup(self, count: int, items: Sequence[Streamline]):
        self.median = median_streamline(items, self.space, self.quantile)

    def put(self, data: Streamline):
        pass

    def finish(self):
        pass

    def done(self):
        sink = StreamlineFileSink(self.stem, self.space, write_labels=False)
        if self.median is not None:
            sink.put(self.median)
        sink.done()
        logger.info(
            f"Median streamline ({len(self.median) if self.median is not None else 0} points) "
            f"written to {sink.adapter.path}"
        )


class MedianStreamlineSource(DataSource):
    """Reads a streamline file and produces only its median streamline"""

    def __init__(
        self,
        stem: Union[str, Path],
        quantile: float = 0.99,
        space: Optional[ImageSpace] = None
    ):
        self.stem = stem
        self.quantile = quantile
        self.space = space
        self.read = False

    def more(self) -> bool:
        return not self.read

    def get(self) -> Streamline:
        source = StreamlineFileSource(self.stem, read_labels=False, point_type=PointType.VOXEL, space=self.space)
        streamlines = []
        while source.more():
            streamlines.append(source.get())
        grid = source.grid
        source.done()

        self.read = True
        space = self.space or (grid.to_space() if grid is not None else None)
        median = median_streamline(streamlines, space, self.quantile)
        return median if median is not None else Streamline()

    def done(self):
        pass
