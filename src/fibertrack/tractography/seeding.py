"""
Seeding for Tractography

- SeedGenerator: seed points from masks, or from seed files
- TractographyDataSource: turns a set of seeds and a Tracker into a lazy
  source of streamlines for the pipeline

Seed coordinates are 0-based voxel coordinates, with integer values at
voxel centres.
"""

from pathlib import Path
from typing import Dict, Optional, Tuple, Union
import logging

import numpy as np

from .data_source import DataSource
from .streamline import Streamline
from .tracker import Tracker

logger = logging.getLogger(__name__)


class SeedGenerator:
    """
    Generates seed points for tractography
    """

    def __init__(self, rng_seed: Optional[int] = None):
        """
        Initialize seed generator

        Args:
            rng_seed: Random number generator seed (None = unseeded)
        """
        self.rng_seed = rng_seed
        self.rng = np.random.RandomState(rng_seed)

    def mask_seeds(
        self,
        mask: np.ndarray,
        seeds_per_voxel: int = 1,
        n_seeds: Optional[int] = None
    ) -> Tuple[np.ndarray, Dict]:
        """
        One or more seeds at the centre of every voxel inside a mask

        Args:
            mask: Binary mask (x, y, z)
            seeds_per_voxel: Number of seeds per voxel
            n_seeds: Randomly keep only this many seeds

        Returns:
            seeds: Seed positions in voxel coordinates (N, 3)
            metadata: Dictionary with seeding information
        """
        voxel_indices = np.array(np.where(np.asarray(mask) > 0)).T
        if len(voxel_indices) == 0:
            raise ValueError("Mask is empty - no seeds can be generated")

        seeds = np.repeat(voxel_indices.astype(np.float64), seeds_per_voxel, axis=0)
        if n_seeds is not None:
            seeds = self.random_subsample(seeds, n_seeds)

        metadata = {
            'strategy': 'mask',
            'seeds_per_voxel': seeds_per_voxel,
            'n_voxels': len(voxel_indices),
            'n_seeds': len(seeds),
            'rng_seed': self.rng_seed
        }

        logger.info(f"Generated {len(seeds)} seeds from {len(voxel_indices)} voxels")

        return seeds, metadata

    def random_subsample(
        self,
        seeds: np.ndarray,
        n_samples: int
    ) -> np.ndarray:
        """
        Randomly subsample seeds, keeping their original order

        Args:
            seeds: Input seed array (N, 3)
            n_samples: Number of seeds to sample

        Returns:
            Subsampled seeds (n_samples, 3)
        """
        if n_samples >= len(seeds):
            logger.warning(
                f"Requested {n_samples} samples but only {len(seeds)} "
                "seeds available - returning all seeds"
            )
            return seeds

        indices = np.sort(self.rng.choice(len(seeds), size=n_samples, replace=False))
        return seeds[indices]

    @staticmethod
    def load_seeds_from_file(
        filepath: Union[str, Path],
        one_based: bool = True
    ) -> np.ndarray:
        """
        Load seeds from a file

        Args:
            filepath: Path to seed file (.npy, or whitespace-separated .txt)
            one_based: Whether the file uses 1-based voxel coordinates

        Returns:
            Seeds in 0-based voxel coordinates (N, 3)
        """
        filepath = Path(filepath)

        if filepath.suffix == '.npy':
            seeds = np.load(filepath)
        elif filepath.suffix == '.txt':
            seeds = np.loadtxt(filepath, ndmin=2)
        else:
            raise ValueError(f"Unsupported file format: {filepath.suffix}")

        seeds = np.asarray(seeds, dtype=np.float64).reshape(-1, 3)
        if one_based:
            seeds = seeds - 1.0

        logger.info(f"Loaded {len(seeds)} seeds from {filepath}")

        return seeds


class TractographyDataSource(DataSource):
    """
    Lazy source of streamlines: tracks each seed when asked

    Every seed is tracked `count` times in turn. Nothing is buffered; each
    get() runs the tracker afresh.
    """

    def __init__(
        self,
        tracker: Tracker,
        seeds: np.ndarray,
        count: int = 1,
        jitter: Optional[bool] = None
    ):
        """
        Initialize source

        Args:
            tracker: Configured tracker
            seeds: Seed points in 0-based voxel coordinates (N, 3)
            count: Number of streamlines per seed
            jitter: Override the tracker's jitter setting
        """
        seeds = np.asarray(seeds, dtype=np.float64)
        if seeds.ndim != 2 or seeds.shape[1] != 3:
            raise ValueError(f"Seeds must have shape (N, 3), got {seeds.shape}")
        if count < 1:
            raise ValueError(f"Streamline count per seed must be positive, got {count}")

        self.tracker = tracker
        self.seeds = seeds
        self.count = int(count)
        self.current = 0
        self.total = len(seeds) * self.count

        if jitter is not None:
            tracker.jitter = jitter

    def more(self) -> bool:
        return self.current < self.total

    def get(self) -> Streamline:
        if not self.more():
            raise IndexError("No seeds remain")
        seed = self.seeds[self.current // self.count]
        self.current += 1
        return self.tracker.run(seed)

    def seekable(self) -> bool:
        return True

    def seek(self, n: int):
        if not 0 <= n <= self.total:
            raise IndexError(f"Cannot seek to streamline {n} of {self.total}")
        self.current = int(n)

    def done(self):
        logger.debug(f"Seed source exhausted after {self.current} of {self.total} streamlines")
