"""
Fibre orientation models consumed by the tracker

A model answers one question: given a position (voxel coordinates) and
optionally the direction of the previous step, what is the next fibre
orientation? None means no usable estimate, which ends the path.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence, Union
import logging

import numpy as np

from ..core.image import ElementKind, Image
from ..core.space import PointType, RoundingType, dot, norm, spherical_to_cartesian

logger = logging.getLogger(__name__)


class DiffusionModel(ABC):
    """Capability interface for orientation sampling"""

    @abstractmethod
    def sample(
        self,
        point: np.ndarray,
        previous_direction: Optional[np.ndarray] = None
    ) -> Optional[np.ndarray]:
        """
        Sample a fibre orientation

        Args:
            point: Position in voxel coordinates (3,)
            previous_direction: Unit direction of the previous step, if any

        Returns:
            Unit vector (3,) in image-axis (scaled) space, or None
        """


class PeakModel(DiffusionModel):
    """
    Deterministic model reading one peak direction per voxel

    Uses nearest-neighbour lookup; a zero vector or a voxel outside the image
    gives no estimate.
    """

    def __init__(self, peaks: Image):
        if peaks.kind is not ElementKind.VECTOR:
            raise ValueError("Peak model needs a vector-valued image")
        self.peaks = peaks
        self.space = peaks.space

    @classmethod
    def from_nifti(cls, path: Union[str, Path]) -> "PeakModel":
        return cls(Image.from_nifti(path, ElementKind.VECTOR))

    def sample(self, point, previous_direction=None):
        try:
            vector = np.asarray(self.peaks.at(point, PointType.VOXEL, RoundingType.CONVENTIONAL), dtype=np.float64)
        except IndexError:
            return None

        length = norm(vector)
        if not np.isfinite(length) or length < 1e-8:
            return None
        return vector / length


class BedpostModel(DiffusionModel):
    """
    Multi-compartment ball-and-sticks model from MCMC samples

    Each compartment has three 4D images (volume fraction, polar angle and
    azimuth) with one volume per MCMC sample. Sampling picks a voxel by
    probabilistic rounding and a random MCMC sample, ignores compartments
    whose volume fraction is below the threshold, and returns the compartment
    direction best aligned with the previous step (or the strongest one at
    the first step).
    """

    def __init__(
        self,
        avf: Sequence[Image],
        theta: Sequence[Image],
        phi: Sequence[Image],
        avf_threshold: float = 0.05,
        rng: Optional[np.random.RandomState] = None
    ):
        """
        Initialize model

        Args:
            avf: Volume fraction sample images, one per compartment
            theta: Polar angle sample images, one per compartment
            phi: Azimuth sample images, one per compartment
            avf_threshold: Minimum volume fraction for a compartment to be used
            rng: Random state for sample and voxel selection
        """
        if not (len(avf) == len(theta) == len(phi)) or len(avf) == 0:
            raise ValueError("The same nonzero number of avf, theta and phi images is required")

        shapes = {image.shape for image in list(avf) + list(theta) + list(phi)}
        if len(shapes) != 1:
            raise ValueError(f"Sample images differ in shape: {sorted(shapes)}")

        self.avf = np.stack([image.data for image in avf])
        self.theta = np.stack([image.data for image in theta])
        self.phi = np.stack([image.data for image in phi])
        self.space = avf[0].space
        self.n_compartments = len(avf)
        self.n_samples = self.avf.shape[-1]
        self.avf_threshold = float(avf_threshold)
        self.rng = rng if rng is not None else np.random.RandomState()

        logger.info(
            f"BedpostModel: {self.n_compartments} compartments, {self.n_samples} samples, "
            f"avf threshold {self.avf_threshold}"
        )

    @classmethod
    def from_nifti(
        cls,
        avf_paths: List[Union[str, Path]],
        theta_paths: List[Union[str, Path]],
        phi_paths: List[Union[str, Path]],
        avf_threshold: float = 0.05,
        rng: Optional[np.random.RandomState] = None
    ) -> "BedpostModel":
        def load(paths):
            return [Image.from_nifti(path, ElementKind.SERIES) for path in paths]

        return cls(load(avf_paths), load(theta_paths), load(phi_paths), avf_threshold, rng)

    def set_avf_threshold(self, threshold: float):
        self.avf_threshold = float(threshold)

    def sample(self, point, previous_direction=None):
        index = self.space.to_voxel(point, PointType.VOXEL, RoundingType.PROBABILISTIC, self.rng).astype(np.int64)
        if np.any(index < 0) or np.any(index >= np.asarray(self.space.dim)):
            return None

        sample = self.rng.randint(self.n_samples)
        x, y, z = index
        fractions = self.avf[:, x, y, z, sample]

        best_direction = None
        best_score = -np.inf
        for compartment in range(self.n_compartments):
            if not fractions[compartment] >= self.avf_threshold:
                continue

            direction = spherical_to_cartesian(
                1.0,
                self.theta[compartment, x, y, z, sample],
                self.phi[compartment, x, y, z, sample]
            )
            if previous_direction is None or norm(previous_direction) == 0:
                score = fractions[compartment]
            else:
                score = abs(dot(direction, previous_direction))

            if score > best_score:
                best_score = score
                best_direction = direction

        return best_direction
