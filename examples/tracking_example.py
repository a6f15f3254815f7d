"""
Tracking Example
================

Example demonstrating streamline tracking on a small synthetic dataset.

This example shows:
1. Building a peak direction image and tracking from a seed mask
2. Filtering streamlines by the target regions they reach
3. Writing TrackVis and MRtrix files, a visitation map and a median streamline
4. Reading streamlines back and profiling them
"""

import numpy as np
import nibabel as nib
from pathlib import Path

from fibertrack.core.image import ElementKind, Image
from fibertrack.core.space import ImageSpace, PointType
from fibertrack.io.files import StreamlineFileSink, StreamlineFileSource, StreamlineFormat
from fibertrack.tractography import (
    LabelCountFilter,
    LengthFilter,
    PeakModel,
    Pipeline,
    SeedGenerator,
    TractographyDataSource,
    Tracker,
)
from fibertrack.tractography.median import MedianStreamlineDataSink
from fibertrack.tractography.sinks import ProfileDataSink, VisitationMapDataSink


def make_synthetic_data(shape=(40, 40, 20)):
    """A bundle curving from -x to +y, with a target region at each end"""
    affine = np.diag([2.0, 2.0, 2.0, 1.0])
    affine[:3, 3] = [-40.0, -40.0, -20.0]
    space = ImageSpace(shape, (2.0, 2.0, 2.0), affine)

    x, y = np.meshgrid(np.arange(shape[0]), np.arange(shape[1]), indexing='ij')
    angle = np.arctan2(y - 0.0, x - 0.0)
    peaks = np.zeros(shape + (3,))
    peaks[..., 0] = -np.sin(angle)[..., np.newaxis]
    peaks[..., 1] = np.cos(angle)[..., np.newaxis]

    radius = np.hypot(x, y)
    band = (radius > 15) & (radius < 25)
    mask = np.repeat(band[..., np.newaxis], shape[2], axis=2).astype(np.uint8)

    targets = np.zeros(shape, dtype=np.int16)
    targets[15:25, 0:3, :] = 1
    targets[0:3, 15:25, :] = 2

    return space, Image(peaks, space, ElementKind.VECTOR), Image(mask, space), Image(targets, space)


def example_1_tracking(output_dir):
    """Example 1: Track from a seed mask and write the results."""

    print("\n" + "=" * 70)
    print("EXAMPLE 1: Tracking")
    print("=" * 70)

    space, peaks, mask, targets = make_synthetic_data()

    # Seed in a thin slab across the bundle
    seed_mask = np.zeros(space.dim)
    seed_mask[14:18, 14:18, 8:12] = mask.data[14:18, 14:18, 8:12]
    seeds, metadata = SeedGenerator(rng_seed=42).mask_seeds(seed_mask, seeds_per_voxel=2)
    print(f"\n1. Generated {metadata['n_seeds']} seeds in {metadata['n_voxels']} voxels")

    tracker = Tracker(
        PeakModel(peaks),
        space,
        max_steps=500,
        step_length=1.0,
        inner_product_threshold=0.5,
        flags={'terminate-outside': True, 'loopcheck': True},
        mask=mask,
        targets=targets,
        jitter=True,
        rng=np.random.RandomState(42)
    )

    pipeline = Pipeline(TractographyDataSource(tracker, seeds), progress=True)
    pipeline.add_manipulator(LabelCountFilter(2))
    pipeline.add_manipulator(LengthFilter(10.0, space))

    visitation = VisitationMapDataSink(space, output_dir / "density.nii.gz")
    pipeline.add_sink(visitation)
    pipeline.add_sink(StreamlineFileSink(
        output_dir / "bundle", space, label_dictionary={1: "anterior", 2: "lateral"}
    ))
    pipeline.add_sink(StreamlineFileSink(
        output_dir / "bundle", space, write_labels=False, format=StreamlineFormat.MRTRIX
    ))
    pipeline.add_sink(MedianStreamlineDataSink(output_dir / "bundle_median", space))

    n_retained = pipeline.run()

    print(f"\n2. Retained {n_retained} streamlines")
    print(tracker.get_statistics_summary())
    print(f"\n3. Visitation map covers {np.count_nonzero(visitation.counts)} voxels")

    return space


def example_2_reading(output_dir, space):
    """Example 2: Read streamlines back and profile them."""

    print("\n" + "=" * 70)
    print("EXAMPLE 2: Reading and Profiling")
    print("=" * 70)

    source = StreamlineFileSource(output_dir / "bundle", point_type=PointType.WORLD)
    print(f"\n1. {source.n_streamlines} streamlines, properties {source.property_names}")

    pipeline = Pipeline(source)
    profile = ProfileDataSink(lambda s: [len(s), s.length(), len(s.labels)])
    pipeline.add_sink(profile)
    pipeline.run()

    values = profile.matrix()
    if len(values):
        print(f"\n2. Mean points: {values[:, 0].mean():.1f}, mean length: {values[:, 1].mean():.1f} mm")

    median = StreamlineFileSource(output_dir / "bundle_median")
    if median.more():
        streamline = median.get()
        print(f"\n3. Median streamline: {len(streamline)} points, {streamline.length(space):.1f} mm")
    median.done()

    density = nib.load(str(output_dir / "density.nii.gz"))
    print(f"\n4. Density map maximum: {np.asanyarray(density.dataobj).max()}")


if __name__ == "__main__":
    output_dir = Path("output/tracking_example")
    output_dir.mkdir(parents=True, exist_ok=True)

    space = example_1_tracking(output_dir)
    example_2_reading(output_dir, space)

    print("\n" + "=" * 70)
    print("All examples complete!")
    print("=" * 70)
