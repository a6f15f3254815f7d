"""
Pipeline sinks for tracking results

- VisitationMapDataSink: per-voxel count of streamlines passing through
- ProfileDataSink: per-streamline results of a user callback
"""

from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Union
import logging

import nibabel as nib
import numpy as np

from ..core.space import ImageSpace, PointType, RoundingType
from .data_source import DataSink
from .streamline import Streamline

logger = logging.getLogger(__name__)


class VisitationMapDataSink(DataSink):
    """
    Accumulates a streamline density map

    Each voxel is counted at most once per streamline, however many of the
    streamline's points fall inside it.
    """

    def __init__(self, space: ImageSpace, path: Optional[Union[str, Path]] = None):
        """
        Initialize sink

        Args:
            space: Image space of the map
            path: NIfTI file the map is written to in done() (None = keep in memory)
        """
        self.space = space
        self.path = path
        self.counts = np.zeros(space.dim, dtype=np.int32)
        self.n_streamlines = 0

    def setup(self, count: int, items: Sequence[Streamline]):
        pass

    def put(self, data: Streamline):
        if len(data) == 0:
            return

        voxels = self.space.to_voxel(
            data.points_in(PointType.VOXEL, self.space),
            PointType.VOXEL,
            RoundingType.CONVENTIONAL
        ).astype(np.int64).reshape(-1, 3)

        inside = np.all((voxels >= 0) & (voxels < np.asarray(self.space.dim)), axis=1)
        unique = np.unique(voxels[inside], axis=0)
        if len(unique) > 0:
            self.counts[tuple(unique.T)] += 1
        self.n_streamlines += 1

    def finish(self):
        pass

    def done(self):
        logger.info(
            f"Visitation map: {self.n_streamlines} streamlines, "
            f"{int(np.count_nonzero(self.counts))} voxels visited"
        )
        if self.path is not None:
            self.write_to_nifti(self.path)

    def write_to_nifti(self, path: Union[str, Path]):
        """Save the map as a NIfTI image in the tracking space"""
        image = nib.Nifti1Image(self.counts, self.space.transform)
        image.header.set_zooms(tuple(float(z) for z in self.space.pixdim))
        nib.save(image, str(path))
        logger.info(f"Saved visitation map to: {path}")


class ProfileDataSink(DataSink):
    """
    Calls a function on every streamline and keeps the results

    Attributes:
        results: Callback results, in pipeline order
    """

    def __init__(self, function: Callable[[Streamline], Any]):
        if not callable(function):
            raise ValueError("Profile function must be callable")
        self.function = function
        self.results: List[Any] = []

    def setup(self, count: int, items: Sequence[Streamline]):
        pass

    def put(self, data: Streamline):
        self.results.append(self.function(data))

    def finish(self):
        pass

    def done(self):
        logger.debug(f"Profiled {len(self.results)} streamlines")

    def matrix(self) -> np.ndarray:
        """
        Results stacked as rows

        Returns:
            Array (n_streamlines, k), for callbacks returning k values each
        """
        if not self.results:
            return np.zeros((0, 0))
        return np.vstack([np.atleast_1d(np.asarray(result, dtype=np.float64)) for result in self.results])
