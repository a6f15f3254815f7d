"""
Image Space Geometry

Voxel/world coordinate conventions for tractography:
- Voxel: raw (possibly fractional) array indices
- Scaled: voxel indices multiplied by voxel size, ignoring rotation/shear
- World: full voxel-to-world affine applied

Also provides the small vector helpers used when stepping along a path.
"""

from enum import Enum
from types import MappingProxyType
from typing import Optional, Sequence, Union
import logging

import numpy as np
from nibabel.orientations import io_orientation

logger = logging.getLogger(__name__)


class PointType(Enum):
    """Coordinate convention of a point"""
    VOXEL = "voxel"
    SCALED = "scaled"
    WORLD = "world"


class RoundingType(Enum):
    """Strategy for mapping fractional voxel coordinates to indices"""
    NONE = "none"
    CONVENTIONAL = "conventional"
    PROBABILISTIC = "probabilistic"


# NIfTI orientation codes (NIFTI_L2R ... NIFTI_S2I) to the axis letter each
# positive index direction points towards
ORIENTATION_CODES = MappingProxyType({
    1: 'R',
    2: 'L',
    3: 'A',
    4: 'P',
    5: 'S',
    6: 'I'
})


def zero_vector() -> np.ndarray:
    """Return a zero 3-vector"""
    return np.zeros(3)


def norm(vector: np.ndarray) -> float:
    """Euclidean norm of a 3-vector"""
    vector = np.asarray(vector, dtype=np.float64)
    return float(np.sqrt(vector[0]**2 + vector[1]**2 + vector[2]**2))


def dot(first: np.ndarray, second: np.ndarray) -> float:
    """Inner product of two 3-vectors"""
    first = np.asarray(first, dtype=np.float64)
    second = np.asarray(second, dtype=np.float64)
    return float(first[0]*second[0] + first[1]*second[1] + first[2]*second[2])


def step(origin: np.ndarray, target: np.ndarray) -> np.ndarray:
    """Vector from one point to another"""
    return np.asarray(target, dtype=np.float64) - np.asarray(origin, dtype=np.float64)


def spherical_to_cartesian(
    radius: float,
    polar: float,
    azimuth: float
) -> np.ndarray:
    """
    Convert spherical coordinates to a Cartesian 3-vector

    Args:
        radius: Vector length
        polar: Angle from the z axis (radians)
        azimuth: Angle from the x axis in the xy plane (radians)

    Returns:
        Cartesian vector (3,)
    """
    return np.array([
        radius * np.sin(polar) * np.cos(azimuth),
        radius * np.sin(polar) * np.sin(azimuth),
        radius * np.cos(polar)
    ])


def round_voxel(
    point: np.ndarray,
    rounding: RoundingType = RoundingType.CONVENTIONAL,
    rng: Optional[np.random.RandomState] = None
) -> np.ndarray:
    """
    Round voxel coordinates according to a rounding strategy

    Conventional rounding goes to the nearest integer (halves upwards).
    Probabilistic rounding picks the upper neighbour in each axis with
    probability equal to the fractional part, so repeated sampling near a
    boundary selects voxels without bias.

    Args:
        point: Voxel coordinates (3,) or (N, 3)
        rounding: Rounding strategy
        rng: Random state for probabilistic rounding

    Returns:
        Rounded coordinates (float array of the same shape)
    """
    point = np.asarray(point, dtype=np.float64)

    if rounding is RoundingType.NONE:
        return point.copy()
    elif rounding is RoundingType.CONVENTIONAL:
        return np.floor(point + 0.5)
    elif rounding is RoundingType.PROBABILISTIC:
        if rng is None:
            rng = np.random
        lower = np.floor(point)
        fraction = point - lower
        return lower + (rng.uniform(size=point.shape) < fraction)
    else:
        raise ValueError(f"Unknown rounding type: {rounding}")


class ImageSpace:
    """
    Geometry of a 3D image: dimensions, voxel sizes and voxel-to-world affine
    """

    def __init__(
        self,
        dim: Sequence[int],
        pixdim: Sequence[float] = (1.0, 1.0, 1.0),
        transform: Optional[np.ndarray] = None
    ):
        """
        Initialize image space

        Args:
            dim: Image dimensions (3,)
            pixdim: Voxel sizes in mm (3,)
            transform: Voxel-to-world affine (4, 4); diagonal scaling by
                pixdim when omitted
        """
        dim = np.asarray(dim, dtype=np.int64)
        pixdim = np.asarray(pixdim, dtype=np.float64)

        if dim.shape != (3,) or np.any(dim < 1):
            raise ValueError(f"Image dimensions must be 3 positive integers, got {dim}")
        if pixdim.shape != (3,) or np.any(pixdim <= 0):
            raise ValueError(f"Voxel sizes must be 3 positive numbers, got {pixdim}")

        if transform is None:
            transform = np.diag(np.append(pixdim, 1.0))
        else:
            transform = np.asarray(transform, dtype=np.float64)
            if transform.shape != (4, 4):
                raise ValueError(f"Transform must be a 4x4 matrix, got shape {transform.shape}")

        try:
            inverse = np.linalg.inv(transform)
        except np.linalg.LinAlgError:
            raise ValueError("Transform is not invertible")
        if not np.all(np.isfinite(inverse)):
            raise ValueError("Transform is not invertible")

        self.dim = tuple(int(d) for d in dim)
        self.pixdim = pixdim
        self.transform = transform
        self._inverse = inverse

    @classmethod
    def from_nifti(cls, image) -> "ImageSpace":
        """
        Create space from a nibabel image (or a path to one)

        Only the first three dimensions are used.
        """
        import nibabel as nib

        if isinstance(image, (str, bytes)) or hasattr(image, '__fspath__'):
            image = nib.load(str(image))

        shape = list(image.shape[:3]) + [1] * (3 - len(image.shape[:3]))
        zooms = list(image.header.get_zooms()[:3]) + [1.0] * (3 - len(image.shape[:3]))
        return cls(shape, zooms, image.affine)

    @property
    def inverse_transform(self) -> np.ndarray:
        """World-to-voxel affine"""
        return self._inverse

    def orientation(self) -> str:
        """Three-letter axis code, e.g. 'LAS'"""
        ornt = io_orientation(self.transform)
        letters = []
        for axis, flip in ornt:
            code = int(axis) * 2 + (1 if flip > 0 else 2)
            letters.append(ORIENTATION_CODES[code])
        return ''.join(letters)

    @staticmethod
    def _apply(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
        return points @ matrix[:3, :3].T + matrix[:3, 3]

    def to_voxel(
        self,
        point: Union[np.ndarray, Sequence[float]],
        point_type: PointType,
        rounding: RoundingType = RoundingType.CONVENTIONAL,
        rng: Optional[np.random.RandomState] = None
    ) -> np.ndarray:
        """
        Convert points to voxel coordinates

        Args:
            point: Point (3,) or points (N, 3)
            point_type: Convention of the input
            rounding: Rounding applied to the voxel coordinates
            rng: Random state for probabilistic rounding

        Returns:
            Voxel coordinates, same shape as input. Not bounds-checked.
        """
        point = np.asarray(point, dtype=np.float64)

        if point_type is PointType.VOXEL:
            voxel = point
        elif point_type is PointType.SCALED:
            voxel = point / self.pixdim
        elif point_type is PointType.WORLD:
            voxel = self._apply(self._inverse, point)
        else:
            raise ValueError(f"Unknown point type: {point_type}")

        return round_voxel(voxel, rounding, rng)

    def to_scaled(self, point, point_type: PointType) -> np.ndarray:
        """Convert points to scaled-voxel coordinates"""
        return self.to_voxel(point, point_type, RoundingType.NONE) * self.pixdim

    def to_world(self, point, point_type: PointType) -> np.ndarray:
        """Convert points to world coordinates"""
        voxel = self.to_voxel(point, point_type, RoundingType.NONE)
        return self._apply(self.transform, voxel)

    def convert(self, point, source: PointType, target: PointType) -> np.ndarray:
        """Convert points between any two conventions (no rounding)"""
        if target is PointType.VOXEL:
            return self.to_voxel(point, source, RoundingType.NONE)
        elif target is PointType.SCALED:
            return self.to_scaled(point, source)
        else:
            return self.to_world(point, source)

    def copy(self) -> "ImageSpace":
        return ImageSpace(self.dim, self.pixdim.copy(), self.transform.copy())

    def __eq__(self, other) -> bool:
        if not isinstance(other, ImageSpace):
            return NotImplemented
        return (
            self.dim == other.dim and
            np.allclose(self.pixdim, other.pixdim) and
            np.allclose(self.transform, other.transform)
        )

    def __repr__(self) -> str:
        return (
            f"ImageSpace(dim={self.dim}, pixdim={self.pixdim.tolist()}, "
            f"orientation={self.orientation()})"
        )
