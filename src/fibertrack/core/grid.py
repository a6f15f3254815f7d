"""
Grid descriptor attached to streamline files

A read-only snapshot of an ImageSpace, so that voxel coordinates stored in
a streamline file can be interpreted without the original image.
"""

from typing import Optional, Sequence

import numpy as np

from .space import ImageSpace


class Grid:
    """Immutable spatial extent: dimensions, voxel sizes, transform, orientation"""

    __slots__ = ('_dim', '_pixdim', '_transform', '_orientation')

    def __init__(
        self,
        dim: Sequence[int],
        pixdim: Sequence[float],
        transform: np.ndarray,
        orientation: Optional[str] = None
    ):
        # Validates dimensions and invertibility
        space = ImageSpace(dim, pixdim, transform)

        pixdim = np.array(space.pixdim, dtype=np.float64)
        transform = np.array(space.transform, dtype=np.float64)
        pixdim.flags.writeable = False
        transform.flags.writeable = False

        object.__setattr__(self, '_dim', space.dim)
        object.__setattr__(self, '_pixdim', pixdim)
        object.__setattr__(self, '_transform', transform)
        object.__setattr__(self, '_orientation', orientation or space.orientation())

    def __setattr__(self, name, value):
        raise AttributeError("Grid is immutable")

    @classmethod
    def from_space(cls, space: ImageSpace) -> "Grid":
        """Snapshot an image space"""
        return cls(space.dim, space.pixdim, space.transform, space.orientation())

    @property
    def dim(self):
        return self._dim

    @property
    def pixdim(self) -> np.ndarray:
        return self._pixdim

    @property
    def transform(self) -> np.ndarray:
        return self._transform

    @property
    def orientation(self) -> str:
        return self._orientation

    def to_space(self) -> ImageSpace:
        """Create a fresh (mutable) ImageSpace from this grid"""
        return ImageSpace(self._dim, self._pixdim.copy(), self._transform.copy())

    def __eq__(self, other) -> bool:
        if not isinstance(other, Grid):
            return NotImplemented
        return (
            self._dim == other._dim and
            np.allclose(self._pixdim, other._pixdim) and
            np.allclose(self._transform, other._transform, atol=1e-5)
        )

    def __hash__(self):
        return hash((self._dim, tuple(np.round(self._pixdim, 5))))

    def __repr__(self) -> str:
        return (
            f"Grid(dim={self._dim}, pixdim={self._pixdim.tolist()}, "
            f"orientation='{self._orientation}')"
        )
