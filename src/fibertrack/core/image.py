"""
Voxel images used during tracking (masks, target maps, model parameters)
"""

from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Union
import logging

import nibabel as nib
import numpy as np

from .space import ImageSpace, PointType, RoundingType

logger = logging.getLogger(__name__)


class ElementKind(Enum):
    """What each voxel holds"""
    SCALAR = "scalar"
    VECTOR = "vector"
    SERIES = "series"


def _import_scalar(data: np.ndarray) -> np.ndarray:
    """Scalar images keep their first three dimensions"""
    if data.ndim > 3:
        if any(n != 1 for n in data.shape[3:]):
            raise ValueError(f"Image of shape {data.shape} is not scalar-valued")
        data = data.reshape(data.shape[:3])
    while data.ndim < 3:
        data = data[..., np.newaxis]
    return data


def _import_vector(data: np.ndarray) -> np.ndarray:
    """Vector images are 4D with a fourth dimension of 3 (FSL-style)"""
    if data.ndim == 5 and data.shape[3] == 1:
        # NIfTI intent-vector layout (x, y, z, 1, 3)
        data = data[:, :, :, 0, :]
    if data.ndim != 4 or data.shape[3] != 3:
        raise ValueError(f"Image of shape {data.shape} does not seem to be vector-valued")
    return data


def _import_series(data: np.ndarray) -> np.ndarray:
    """Series images hold any number of values per voxel along a fourth axis"""
    if data.ndim == 3:
        data = data[..., np.newaxis]
    if data.ndim != 4:
        raise ValueError(f"Image of shape {data.shape} is not a 4D series")
    return data


_IMPORTERS = {
    ElementKind.SCALAR: _import_scalar,
    ElementKind.VECTOR: _import_vector,
    ElementKind.SERIES: _import_series
}


class Image:
    """
    Voxel data together with its image space

    Attributes:
        data: Voxel array, shape (x, y, z) for scalar images or (x, y, z, 3)
            for vector images
        space: ImageSpace describing the first three axes
        kind: ElementKind of the voxels
    """

    def __init__(
        self,
        data: np.ndarray,
        space: Optional[ImageSpace] = None,
        kind: ElementKind = ElementKind.SCALAR
    ):
        data = _IMPORTERS[kind](np.asarray(data))
        if space is None:
            space = ImageSpace(data.shape[:3])
        elif tuple(data.shape[:3]) != tuple(space.dim):
            raise ValueError(
                f"Data shape {data.shape[:3]} does not match space dimensions {space.dim}"
            )

        self.data = data
        self.space = space
        self.kind = kind

    @classmethod
    def from_nifti(
        cls,
        source: Union[str, Path, nib.Nifti1Image],
        kind: ElementKind = ElementKind.SCALAR
    ) -> "Image":
        """
        Load an image with nibabel

        Args:
            source: Path to a NIfTI file or a loaded nibabel image
            kind: Element kind to import

        Returns:
            Image
        """
        if isinstance(source, (str, Path)):
            logger.debug(f"Loading {kind.value} image from {source}")
            source = nib.load(str(source))

        data = np.asanyarray(source.dataobj)
        return cls(data, ImageSpace.from_nifti(source), kind)

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.data.shape

    def contains(self, index: np.ndarray) -> bool:
        """Whether an integer voxel index lies inside the image"""
        index = np.asarray(index)
        return bool(np.all(index >= 0) and np.all(index < np.asarray(self.data.shape[:3])))

    def at(
        self,
        point: np.ndarray,
        point_type: PointType = PointType.VOXEL,
        rounding: RoundingType = RoundingType.CONVENTIONAL,
        rng: Optional[np.random.RandomState] = None
    ):
        """
        Value at a point

        Raises:
            IndexError: If the rounded point lies outside the image
        """
        if rounding is RoundingType.NONE:
            raise ValueError("A rounding strategy is required to index an image")

        index = self.space.to_voxel(point, point_type, rounding, rng).astype(np.int64)
        if not self.contains(index):
            raise IndexError(f"Point {np.asarray(point).tolist()} is outside the image")
        return self.data[tuple(index)]

    def to_nifti(self) -> nib.Nifti1Image:
        """Wrap the data in a nibabel image"""
        return nib.Nifti1Image(self.data, self.space.transform)
