"""
Streamline record type

An ordered sequence of 3D points grown from a seed, with optional per-point
scalar values, per-streamline scalar properties and the set of region labels
the path passed through.
"""

from typing import Dict, Iterable, List, Optional, Set
import logging

import numba
import numpy as np

from ..core.space import ImageSpace, PointType

logger = logging.getLogger(__name__)


@numba.jit(nopython=True, cache=True)
def _path_length(points: np.ndarray) -> float:
    """Sum of consecutive point-to-point distances"""
    total = 0.0
    for i in range(1, points.shape[0]):
        squared = 0.0
        for j in range(3):
            diff = points[i, j] - points[i - 1, j]
            squared += diff * diff
        total += np.sqrt(squared)
    return total


class Streamline:
    """
    A single tracked path

    Attributes:
        points: Point coordinates (N, 3)
        point_type: Coordinate convention of the points
        seed: Index of the seed point
        labels: Region labels visited along the path
        point_properties: Per-point scalar values, name -> (N,) array
        properties: Per-streamline scalar values, name -> float
        fixed_spacing: Whether points are equally spaced
    """

    def __init__(
        self,
        points: Optional[np.ndarray] = None,
        point_type: PointType = PointType.VOXEL,
        seed: int = 0,
        labels: Optional[Iterable[int]] = None,
        point_properties: Optional[Dict[str, np.ndarray]] = None,
        properties: Optional[Dict[str, float]] = None,
        fixed_spacing: bool = True
    ):
        if points is None:
            points = np.zeros((0, 3))
        points = np.array(points, dtype=np.float64).reshape(-1, 3)

        if len(points) > 0 and not 0 <= seed < len(points):
            raise ValueError(f"Seed index {seed} is not valid for a streamline of {len(points)} points")

        self.points = points
        self.point_type = point_type
        self.seed = int(seed)
        self.labels: Set[int] = set(int(label) for label in (labels or ()))
        self.point_properties: Dict[str, np.ndarray] = {}
        self.properties: Dict[str, float] = dict(properties or {})
        self.fixed_spacing = fixed_spacing

        for name, values in (point_properties or {}).items():
            self.set_point_property(name, values)

    @classmethod
    def from_halves(
        cls,
        backward: np.ndarray,
        forward: np.ndarray,
        point_type: PointType = PointType.VOXEL,
        **kwargs
    ) -> "Streamline":
        """
        Join two seed-first half paths into one streamline

        Args:
            backward: Points (M, 3) starting at the seed
            forward: Points (K, 3) starting at the same seed

        Returns:
            Streamline of M + K - 1 points whose seed index marks the join
        """
        backward = np.asarray(backward, dtype=np.float64).reshape(-1, 3)
        forward = np.asarray(forward, dtype=np.float64).reshape(-1, 3)

        if len(backward) == 0:
            return cls(forward, point_type, 0, **kwargs)
        if len(forward) == 0:
            return cls(backward[::-1], point_type, len(backward) - 1, **kwargs)

        points = np.vstack([backward[::-1], forward[1:]])
        return cls(points, point_type, len(backward) - 1, **kwargs)

    @property
    def n_points(self) -> int:
        return len(self.points)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def point_property_names(self) -> List[str]:
        return sorted(self.point_properties.keys())

    @property
    def property_names(self) -> List[str]:
        return sorted(self.properties.keys())

    def set_point_property(self, name: str, values: np.ndarray):
        """Attach one scalar per point"""
        values = np.asarray(values, dtype=np.float64).ravel()
        if len(values) != len(self.points):
            raise ValueError(
                f"Property '{name}' has {len(values)} values for {len(self.points)} points"
            )
        self.point_properties[name] = values

    def append(self, point: np.ndarray, **point_values: float):
        """Add a point at the end of the path, with values for any per-point properties"""
        if set(point_values) != set(self.point_properties):
            raise ValueError("Values must be given for exactly the existing per-point properties")

        self.points = np.vstack([self.points, np.asarray(point, dtype=np.float64).reshape(1, 3)])
        for name, value in point_values.items():
            self.point_properties[name] = np.append(self.point_properties[name], value)

    def add_label(self, label: int):
        self.labels.add(int(label))

    def add_labels(self, labels: Iterable[int]):
        self.labels.update(int(label) for label in labels)

    @property
    def left_points(self) -> np.ndarray:
        """Points from the seed back to the start, seed first"""
        return self.points[self.seed::-1] if len(self.points) else self.points

    @property
    def right_points(self) -> np.ndarray:
        """Points from the seed to the end, seed first"""
        return self.points[self.seed:]

    def points_in(
        self,
        point_type: PointType,
        space: Optional[ImageSpace] = None
    ) -> np.ndarray:
        """
        Points converted to another coordinate convention

        Args:
            point_type: Target convention
            space: Image space; required unless no conversion is needed

        Returns:
            Converted points (N, 3)
        """
        if point_type is self.point_type:
            return self.points.copy()
        if space is None:
            raise ValueError(
                f"An image space is needed to convert {self.point_type.value} "
                f"points to {point_type.value}"
            )
        return space.convert(self.points, self.point_type, point_type).reshape(-1, 3)

    def length(self, space: Optional[ImageSpace] = None) -> float:
        """
        Total path length in world units

        Args:
            space: Image space, required for voxel or scaled points

        Returns:
            Length (0 for fewer than two points)
        """
        if len(self.points) < 2:
            return 0.0
        points = self.points_in(PointType.WORLD, space)
        return float(_path_length(np.ascontiguousarray(points, dtype=np.float64)))

    def copy(self) -> "Streamline":
        return Streamline(
            self.points.copy(),
            self.point_type,
            self.seed,
            set(self.labels),
            {name: values.copy() for name, values in self.point_properties.items()},
            dict(self.properties),
            self.fixed_spacing
        )

    def __repr__(self) -> str:
        return (
            f"Streamline(n_points={len(self.points)}, seed={self.seed}, "
            f"point_type={self.point_type.value}, labels={sorted(self.labels)})"
        )
