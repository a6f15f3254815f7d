"""
Streamline Tracking

Grows one streamline per call from a seed point by repeatedly sampling a
fibre orientation model and stepping a fixed distance along the sampled
direction. Two half-paths are grown in opposite directions from the seed
and joined at the seed.

Termination policies (each independently enabled):
- no orientation estimate, or too sharp a turn (inner product threshold)
- maximum number of steps
- leaving the image, or the mask when 'terminate-outside' is set
- re-entering an already visited voxel when 'loopcheck' is set
- entering a target region when 'terminate-targets' is set
With 'must-leave' set, all of these except the orientation checks are
suspended until the path first leaves the seed voxel.
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple
import logging

import numba
import numpy as np

from ..core.image import Image
from ..core.space import ImageSpace, PointType, RoundingType, dot, norm
from .models import DiffusionModel
from .streamline import Streamline

logger = logging.getLogger(__name__)

TRACKER_FLAGS = ('loopcheck', 'terminate-targets', 'terminate-outside', 'must-leave')


class TerminationReason(Enum):
    """Why a half-streamline stopped growing"""
    NO_ESTIMATE = "no_estimate"
    HIGH_CURVATURE = "high_curvature"
    MAX_STEPS = "max_steps"
    EXIT_IMAGE = "exit_image"
    EXIT_MASK = "exit_mask"
    LOOP = "loop"
    TARGET_HIT = "target_hit"


@numba.jit(nopython=True, cache=True)
def _is_inside_volume(index: np.ndarray, volume_shape: np.ndarray) -> bool:
    """
    Check if an integer voxel index is inside volume bounds

    Args:
        index: Voxel index (3,)
        volume_shape: Shape of volume (3,)

    Returns:
        True if inside volume
    """
    for i in range(3):
        if index[i] < 0 or index[i] >= volume_shape[i]:
            return False
    return True


class Tracker:
    """
    Step-by-step streamline tracker over a DiffusionModel
    """

    def __init__(
        self,
        model: DiffusionModel,
        space: ImageSpace,
        max_steps: int = 2000,
        step_length: float = 0.5,
        inner_product_threshold: float = 0.2,
        reference_vector: Optional[np.ndarray] = None,
        flags: Optional[Dict[str, bool]] = None,
        mask: Optional[Image] = None,
        targets: Optional[Image] = None,
        jitter: bool = False,
        rng: Optional[np.random.RandomState] = None
    ):
        """
        Initialize tracker

        Args:
            model: Orientation sampling capability
            space: Image space the seeds and the model are defined in
            max_steps: Maximum number of steps per half-streamline
            step_length: Step length in mm
            inner_product_threshold: Minimum inner product between successive
                unit step directions
            reference_vector: Vector used to orient the very first step
                (None or zero for no preference)
            flags: Termination flags, any of TRACKER_FLAGS
            mask: Tracking mask (nonzero inside)
            targets: Target region image (nonzero integer labels)
            jitter: Perturb each seed uniformly within its voxel
            rng: Random state used for jitter
        """
        self.model = model
        self.space = space
        self.mask = None
        self.targets = None
        self.flags = {name: False for name in TRACKER_FLAGS}
        self.jitter = jitter
        self.rng = rng if rng is not None else np.random.RandomState()

        self.set_max_steps(max_steps)
        self.set_step_length(step_length)
        self.set_inner_product_threshold(inner_product_threshold)
        self.set_reference_vector(reference_vector)
        if flags:
            self.set_flags(flags)
        if mask is not None:
            self.set_mask(mask)
        if targets is not None:
            self.set_targets(targets)

        self._volume_shape = np.array(space.dim, dtype=np.int64)
        self.last_reasons: Tuple[Optional[TerminationReason], Optional[TerminationReason]] = (None, None)
        self.stats = {
            'n_streamlines': 0,
            'termination_reasons': {}
        }

        logger.info(
            f"Tracker initialized: max_steps={self.max_steps}, step_length={self.step_length}, "
            f"threshold={self.inner_product_threshold}, "
            f"flags={[name for name, value in self.flags.items() if value]}, "
            f"mask={'yes' if self.mask is not None else 'no'}, "
            f"targets={'yes' if self.targets is not None else 'no'}, jitter={jitter}"
        )

    def set_max_steps(self, max_steps: int):
        if max_steps < 0:
            raise ValueError(f"Maximum step count must be non-negative, got {max_steps}")
        self.max_steps = int(max_steps)

    def set_step_length(self, step_length: float):
        if not step_length > 0:
            raise ValueError(f"Step length must be positive, got {step_length}")
        self.step_length = float(step_length)

    def set_inner_product_threshold(self, threshold: float):
        if not -1.0 <= threshold <= 1.0:
            raise ValueError(f"Inner product threshold must lie in [-1, 1], got {threshold}")
        self.inner_product_threshold = float(threshold)

    def set_reference_vector(self, vector: Optional[np.ndarray]):
        if vector is None:
            self.reference_vector = None
            return
        vector = np.asarray(vector, dtype=np.float64)
        if vector.shape != (3,):
            raise ValueError(f"Reference vector must have 3 elements, got shape {vector.shape}")
        self.reference_vector = None if norm(vector) == 0 else vector / norm(vector)

    def set_flags(self, flags: Dict[str, bool]):
        unknown = set(flags) - set(TRACKER_FLAGS)
        if unknown:
            raise ValueError(f"Unknown tracker flags: {sorted(unknown)}")
        self.flags.update({name: bool(value) for name, value in flags.items()})

    def _check_grid(self, image: Image, what: str):
        if tuple(image.shape[:3]) != tuple(self.space.dim):
            raise ValueError(
                f"{what} dimensions {image.shape[:3]} do not match the tracking space {self.space.dim}"
            )

    def set_mask(self, mask: Optional[Image]):
        if mask is not None:
            self._check_grid(mask, "Mask")
        self.mask = mask

    def set_targets(self, targets: Optional[Image]):
        if targets is not None:
            self._check_grid(targets, "Target image")
        self.targets = targets

    def _voxel(self, position: np.ndarray) -> np.ndarray:
        return self.space.to_voxel(position, PointType.VOXEL, RoundingType.CONVENTIONAL).astype(np.int64)

    def _track_half(
        self,
        seed: np.ndarray,
        direction: Optional[np.ndarray],
        labels: set
    ) -> Tuple[List[np.ndarray], TerminationReason, Optional[np.ndarray]]:
        """
        Grow one half-streamline

        Args:
            seed: Seed position in voxel coordinates
            direction: Direction of the (virtual) previous step, or None at
                the very start of tracking
            labels: Set collecting target labels entered

        Returns:
            points: Visited positions, seed first
            reason: Why tracking stopped
            first_direction: Direction of the first step taken, if any
        """
        position = seed.copy()
        points = [position.copy()]
        first_direction = None
        reason = TerminationReason.MAX_STEPS

        seed_voxel = self._voxel(seed)
        checks_active = not self.flags['must-leave']
        visited = set()
        previous_voxel = None

        for _ in range(self.max_steps + 1):
            voxel = self._voxel(position)
            voxel_key = tuple(voxel)

            if not checks_active and voxel_key != tuple(seed_voxel):
                checks_active = True

            if not _is_inside_volume(voxel, self._volume_shape):
                reason = TerminationReason.EXIT_IMAGE
                if len(points) > 1:
                    points.pop()
                break

            if checks_active:
                if self.mask is not None and self.flags['terminate-outside'] and self.mask.data[voxel_key] == 0:
                    reason = TerminationReason.EXIT_MASK
                    if len(points) > 1:
                        points.pop()
                    break

                if self.flags['loopcheck'] and voxel_key != previous_voxel and voxel_key in visited:
                    reason = TerminationReason.LOOP
                    break

                if self.targets is not None:
                    label = int(self.targets.data[voxel_key])
                    if label != 0:
                        labels.add(label)
                        if self.flags['terminate-targets']:
                            reason = TerminationReason.TARGET_HIT
                            break

            visited.add(voxel_key)
            previous_voxel = voxel_key

            # The final point is checked but never stepped from
            if len(points) > self.max_steps:
                reason = TerminationReason.MAX_STEPS
                break

            sample = self.model.sample(position, direction)
            if sample is None:
                reason = TerminationReason.NO_ESTIMATE
                break
            sample = np.asarray(sample, dtype=np.float64)
            length = norm(sample)
            if not np.isfinite(length) or length == 0:
                reason = TerminationReason.NO_ESTIMATE
                break
            sample = sample / length

            if direction is None:
                if self.reference_vector is not None and dot(sample, self.reference_vector) < 0:
                    sample = -sample
            else:
                inner_product = dot(sample, direction)
                if inner_product < 0:
                    sample = -sample
                    inner_product = -inner_product
                if inner_product < self.inner_product_threshold:
                    reason = TerminationReason.HIGH_CURVATURE
                    break

            if first_direction is None:
                first_direction = sample
            direction = sample

            # Directions are in mm along image axes; positions in voxels
            position = position + self.step_length * direction / self.space.pixdim
            points.append(position.copy())

        return points, reason, first_direction

    def run(self, seed: np.ndarray) -> Streamline:
        """
        Track one streamline from a seed

        Args:
            seed: Seed position in 0-based voxel coordinates (3,)

        Returns:
            Streamline in voxel coordinates; its seed index marks the join of
            the two halves and its 'target_hits' property holds the number of
            distinct target labels entered
        """
        seed = np.asarray(seed, dtype=np.float64).reshape(3)
        if self.jitter:
            seed = seed + self.rng.uniform(-0.5, 0.5, size=3)

        labels = set()
        forward, forward_reason, initial_direction = self._track_half(seed, None, labels)

        if initial_direction is None:
            # No step could be taken from the seed, so there is no axis to reverse
            backward, backward_reason = [seed.copy()], forward_reason
        else:
            backward, backward_reason, _ = self._track_half(seed, -initial_direction, labels)

        streamline = Streamline.from_halves(
            np.array(backward),
            np.array(forward),
            PointType.VOXEL,
            labels=labels,
            properties={'target_hits': float(len(labels))}
        )

        self.last_reasons = (backward_reason, forward_reason)
        self.stats['n_streamlines'] += 1
        for reason in self.last_reasons:
            counts = self.stats['termination_reasons']
            counts[reason.value] = counts.get(reason.value, 0) + 1

        logger.debug(
            f"Tracked {len(streamline)} points from seed {seed.tolist()} "
            f"({backward_reason.value}, {forward_reason.value})"
        )
        return streamline

    def get_config(self) -> dict:
        """Get tracker configuration for logging"""
        return {
            'max_steps': self.max_steps,
            'step_length': self.step_length,
            'inner_product_threshold': self.inner_product_threshold,
            'reference_vector': None if self.reference_vector is None else self.reference_vector.tolist(),
            'flags': dict(self.flags),
            'jitter': self.jitter
        }

    def get_statistics_summary(self) -> str:
        """Get formatted summary of termination statistics"""
        summary = []
        summary.append("=" * 60)
        summary.append("TRACKING STATISTICS")
        summary.append("=" * 60)
        summary.append(f"Streamlines generated: {self.stats['n_streamlines']}")
        summary.append("")
        summary.append("Termination reasons (per half-streamline):")

        for reason, count in sorted(
            self.stats['termination_reasons'].items(),
            key=lambda x: x[1],
            reverse=True
        ):
            summary.append(f"  {reason}: {count}")

        summary.append("=" * 60)

        return "\n".join(summary)
