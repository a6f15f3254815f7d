"""
fibertrack Command-Line Interface

Runs streamline tracking and inspects streamline files.
"""

import argparse
import sys
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from .utils.logger import TrackingRunRecord, get_logger, record_tracking_run


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="fibertrack: Streamline Tractography",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Track from seeds in a mask, using a peak direction image
  fibertrack track --model peaks --peaks peaks.nii.gz --seed-mask wm.nii.gz --mask brain.nii.gz --output tracts

  # Track from listed seeds with FSL bedpostx samples, keeping streamlines that reach two targets
  fibertrack track --model bedpost --bedpost-dir subject.bedpostX --seeds seeds.txt \\
      --mask brain.nii.gz --targets regions.nii.gz --min-target-hits 2 --output tracts --map density.nii.gz

  # Summarise a streamline file
  fibertrack info tracts

  # Median streamline of an existing file
  fibertrack median tracts --output tracts_median

  # Median of an MRtrix file, which carries no image grid
  fibertrack median tracts.tck --reference brain.nii.gz --output tracts_median
        """
    )

    parser.add_argument('--version', action='version', version='fibertrack 0.1.0')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    parser.add_argument('--debug', action='store_true', help='Debug mode')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Track command
    track_parser = subparsers.add_parser('track', help='Run streamline tracking')
    track_parser.add_argument('--model', choices=['peaks', 'bedpost'], required=True,
                              help='Fibre orientation model')
    track_parser.add_argument('--peaks', help='Peak direction image (NIfTI, 4D with 3 volumes)')
    track_parser.add_argument('--bedpost-dir', help='FSL bedpostx output directory')
    track_parser.add_argument('--seeds', help='Seed points file (.txt with 1-based voxel coordinates, or .npy)')
    track_parser.add_argument('--seeds-zero-based', action='store_true',
                              help='Seed file coordinates are already 0-based')
    track_parser.add_argument('--seed-mask', help='Seed from every voxel of this mask (NIfTI)')
    track_parser.add_argument('--seeds-per-voxel', type=int, default=1,
                              help='Seeds per voxel with --seed-mask (default: 1)')
    track_parser.add_argument('--mask', help='Tracking mask (NIfTI); defines the tracking space')
    track_parser.add_argument('--targets', help='Target region image (NIfTI, integer labels)')
    track_parser.add_argument('--target-names', help='Text file of "label name" lines')
    track_parser.add_argument('--output', '-o', help='Output streamline file stem')
    track_parser.add_argument('--format', choices=['trk', 'tck'], default='trk',
                              help='Output streamline format (default: trk)')
    track_parser.add_argument('--map', help='Write a visitation map (NIfTI)')
    track_parser.add_argument('--median', help='Write the median streamline to this file stem')
    track_parser.add_argument('--config', help='Tracking configuration JSON')
    track_parser.add_argument('--block-size', type=int, help='Streamlines per pipeline block')
    track_parser.add_argument('--count', type=int, dest='streamlines_per_seed',
                              help='Streamlines per seed')
    track_parser.add_argument('--max-steps', type=int, help='Maximum steps per half-streamline')
    track_parser.add_argument('--step-length', type=float, help='Step length in mm')
    track_parser.add_argument('--threshold', type=float, dest='inner_product_threshold',
                              help='Minimum inner product between successive steps')
    track_parser.add_argument('--reference-vector', type=float, nargs=3,
                              help='Vector orienting the first step')
    track_parser.add_argument('--min-target-hits', type=int, help='Minimum number of targets reached')
    track_parser.add_argument('--min-length', type=float, help='Minimum streamline length in mm')
    track_parser.add_argument('--random-seed', type=int, help='Random number generator seed')
    for flag in ('jitter', 'loopcheck', 'terminate-targets', 'terminate-outside', 'must-leave'):
        track_parser.add_argument(f'--{flag}', action='store_true', default=None,
                                  help=f'Enable {flag}')
    track_parser.add_argument('--progress', action='store_true', help='Show a progress bar')

    # Info command
    info_parser = subparsers.add_parser('info', help='Describe a streamline file')
    info_parser.add_argument('stem', help='Streamline file stem or path')

    # Median command
    median_parser = subparsers.add_parser('median', help='Median streamline of a file')
    median_parser.add_argument('stem', help='Streamline file stem or path')
    median_parser.add_argument('--output', '-o', required=True, help='Output file stem')
    median_parser.add_argument('--quantile', type=float, default=0.99,
                               help='Length quantile limiting the median (default: 0.99)')
    median_parser.add_argument('--reference',
                               help='Image (NIfTI) defining the output space, for files without an image grid')
    median_parser.add_argument('--format', choices=['trk', 'tck'], default='trk',
                               help='Output streamline format (default: trk)')

    # Parse arguments
    args = parser.parse_args(argv)

    # Setup logging
    log_level = logging.DEBUG if args.debug else (logging.INFO if args.verbose else logging.WARNING)
    logger = get_logger(log_level)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    # Execute command
    try:
        if args.command == 'track':
            run_tracking(args)
        elif args.command == 'info':
            show_info(args)
        elif args.command == 'median':
            run_median(args)
        else:
            parser.print_help()
            sys.exit(1)

        logger.info("Command completed successfully")

    except Exception as e:
        logger.error(f"Error: {e}", exc_info=args.debug)
        sys.exit(1)


def tracking_config(args) -> Dict:
    """Configuration file values, overridden by any options given"""
    from .config import load_tracking_config

    config = load_tracking_config(args.config)
    for key in config:
        value = getattr(args, key, None)
        if value is not None:
            config[key] = value
    return config


def read_target_names(path: str) -> Dict[int, str]:
    """Read "label name" lines into a label dictionary"""
    names = {}
    with open(path, 'r') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            label, _, name = line.partition(' ')
            names[int(label)] = name.strip()
    return names


def build_model(args, config, rng):
    """Create the orientation model named on the command line"""
    from .tractography.models import BedpostModel, PeakModel

    logger = get_logger()

    if args.model == 'peaks':
        if not args.peaks:
            raise ValueError("--peaks is required with --model peaks")
        logger.info(f"Loading peak directions from {args.peaks}")
        return PeakModel.from_nifti(args.peaks)

    if not args.bedpost_dir:
        raise ValueError("--bedpost-dir is required with --model bedpost")
    directory = Path(args.bedpost_dir)
    avf = sorted(directory.glob('merged_f*samples.nii*'))
    if not avf:
        raise FileNotFoundError(f"No merged_f*samples images found in {directory}")

    theta, phi = [], []
    for path in avf:
        compartment = path.name[len('merged_f'):].split('samples')[0]
        theta.append(next(directory.glob(f'merged_th{compartment}samples.nii*')))
        phi.append(next(directory.glob(f'merged_ph{compartment}samples.nii*')))

    logger.info(f"Loading {len(avf)} bedpost compartments from {directory}")
    return BedpostModel.from_nifti(avf, theta, phi, config['avf_threshold'], rng)


def run_tracking(args):
    """Run streamline tracking"""
    import numpy as np

    from .core.image import Image
    from .io.files import StreamlineFileSink, StreamlineFormat, file_stem
    from .tractography.filters import LabelCountFilter, LengthFilter
    from .tractography.median import MedianStreamlineDataSink
    from .tractography.pipeline import Pipeline
    from .tractography.seeding import SeedGenerator, TractographyDataSource
    from .tractography.sinks import VisitationMapDataSink
    from .tractography.tracker import Tracker

    logger = get_logger()
    logger.info("=" * 80)
    logger.info("STREAMLINE TRACKING")
    logger.info("=" * 80)

    config = tracking_config(args)
    rng = np.random.RandomState(config['random_seed'])

    model = build_model(args, config, rng)

    mask = Image.from_nifti(args.mask) if args.mask else None
    space = mask.space if mask is not None else model.space
    logger.info(f"Tracking space: {space}")

    targets = Image.from_nifti(args.targets) if args.targets else None

    # Seeds
    seed_generator = SeedGenerator(config['random_seed'])
    if args.seeds:
        seeds = seed_generator.load_seeds_from_file(args.seeds, one_based=not args.seeds_zero_based)
    elif args.seed_mask:
        seeds, _ = seed_generator.mask_seeds(Image.from_nifti(args.seed_mask).data, args.seeds_per_voxel)
    else:
        raise ValueError("Either --seeds or --seed-mask is required")

    tracker = Tracker(
        model,
        space,
        max_steps=config['max_steps'],
        step_length=config['step_length'],
        inner_product_threshold=config['inner_product_threshold'],
        reference_vector=config['reference_vector'],
        flags={
            'loopcheck': config['loopcheck'],
            'terminate-targets': config['terminate_targets'],
            'terminate-outside': config['terminate_outside'],
            'must-leave': config['must_leave']
        },
        mask=mask,
        targets=targets,
        jitter=config['jitter'],
        rng=rng
    )

    source = TractographyDataSource(tracker, seeds, config['streamlines_per_seed'])
    pipeline = Pipeline(source, progress=args.progress)

    if config['min_target_hits'] > 0:
        pipeline.add_manipulator(LabelCountFilter(config['min_target_hits']))
    if config['min_length'] > 0:
        pipeline.add_manipulator(LengthFilter(config['min_length'], space))

    if args.map:
        pipeline.add_sink(VisitationMapDataSink(space, args.map))
    if args.output:
        label_names = read_target_names(args.target_names) if args.target_names else None
        pipeline.add_sink(StreamlineFileSink(
            args.output,
            space,
            write_labels=targets is not None,
            label_dictionary=label_names,
            format=StreamlineFormat(args.format),
            endianness=config['endianness']
        ))
    if args.median:
        pipeline.add_sink(MedianStreamlineDataSink(args.median, space, config['median_quantile']))

    if not pipeline.sinks:
        logger.warning("No outputs requested; streamlines will be counted only")

    if config['block_size'] is not None:
        pipeline.set_block_size(config['block_size'])

    started = datetime.now()
    logger.info(f"Tracking from {len(seeds)} seeds, {config['streamlines_per_seed']} streamline(s) each")
    n_retained = pipeline.run()

    logger.info(tracker.get_statistics_summary())
    logger.info(f"Retained {n_retained} of {source.total} streamlines")

    outputs = {}
    if args.output:
        outputs['streamlines'] = f"{file_stem(args.output)}.{args.format}"
    if args.map:
        outputs['visitation map'] = args.map
    if args.median:
        outputs['median'] = f"{file_stem(args.median)}.trk"

    record_tracking_run(TrackingRunRecord(
        model=args.model,
        seeds=args.seeds or args.seed_mask,
        n_seeds=len(seeds),
        n_generated=source.total,
        n_retained=n_retained,
        outputs=outputs,
        tracker_config={**tracker.get_config(), 'block_size': config['block_size']},
        started=started
    ))

    print(n_retained)


def show_info(args):
    """Print a summary of a streamline file"""
    from .core.space import PointType
    from .io.files import label_path, open_source_adapter
    from .io.labels import StreamlineLabelList

    adapter = open_source_adapter(args.stem, PointType.WORLD)
    try:
        print(f"File:          {adapter.path}")
        print(f"Streamlines:   {adapter.n_streamlines}")
        if adapter.grid is not None:
            print(f"Dimensions:    {' x '.join(str(d) for d in adapter.grid.dim)}")
            print(f"Voxel size:    {' x '.join(f'{p:g}' for p in adapter.grid.pixdim)}")
            print(f"Orientation:   {adapter.grid.orientation}")
        if adapter.point_property_names:
            print(f"Point values:  {', '.join(adapter.point_property_names)}")
        if adapter.property_names:
            print(f"Properties:    {', '.join(adapter.property_names)}")
    finally:
        adapter.close()

    labels = label_path(args.stem)
    if labels.is_file():
        label_list = StreamlineLabelList.read(labels)
        print(f"Label entries: {len(label_list)}")
        if label_list.dictionary:
            print(f"Label names:   {', '.join(label_list.dictionary.values())}")


def run_median(args):
    """Write the median streamline of a file"""
    from .core.space import ImageSpace, PointType
    from .io.files import StreamlineFileSink, StreamlineFormat, open_source_adapter
    from .tractography.median import MedianStreamlineSource
    from .tractography.pipeline import Pipeline

    logger = get_logger()

    if args.reference:
        space = ImageSpace.from_nifti(args.reference)
    else:
        adapter = open_source_adapter(args.stem, PointType.WORLD)
        grid = adapter.grid
        adapter.close()
        if grid is None:
            raise ValueError(f"{adapter.path} has no image grid; give the output space with --reference")
        space = grid.to_space()

    pipeline = Pipeline(MedianStreamlineSource(args.stem, args.quantile, space))
    pipeline.add_sink(StreamlineFileSink(
        args.output, space, write_labels=False, format=StreamlineFormat(args.format)
    ))
    pipeline.run()

    logger.info(f"Median streamline written to {args.output}")
