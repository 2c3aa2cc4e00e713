#!/usr/bin/env python3
"""
Timelapse Alignment CLI
Command-line interface for aligning scenery frames onto a reference frame.

Usage:
    python -m lapse_align landscape reference.jpg frame1.jpg frame2.jpg [options]

Face and body alignment need an external landmark detector and are only
available through the library API.
"""

import argparse
import logging
import os
import sys
import time

from .image_io import ImageProcessor
from .pipeline import LandscapeAligner, align_batch
from .services import Frame, InMemoryFrameRepository, NumpyFeatureMatcherService
from .settings import LandscapeAlignmentSettings, LandscapeStabilizationSettings
from .stabilization import StabilizationMode


def build_parser():
    parser = argparse.ArgumentParser(
        prog='lapse-align',
        description='Align timelapse frames onto a common reference'
    )
    subparsers = parser.add_subparsers(dest='command')
    subparsers.required = True

    landscape = subparsers.add_parser(
        'landscape',
        help='Align scenery frames by feature matching and homography'
    )
    landscape.add_argument(
        'reference',
        help='Reference frame every other frame is aligned onto'
    )
    landscape.add_argument(
        'images',
        nargs='+',
        help='Frames to align'
    )
    landscape.add_argument(
        '-o', '--output-dir',
        default='aligned_outputs',
        help='Directory for aligned frames (default: aligned_outputs)'
    )
    landscape.add_argument(
        '--mode',
        choices=['fast', 'slow'],
        default='fast',
        help='fast: single homography estimate, slow: multi-pass refinement (default: fast)'
    )
    landscape.add_argument(
        '--output-size',
        type=int,
        default=1080,
        help='Side of the square output image in pixels (default: 1080)'
    )
    landscape.add_argument(
        '--max-keypoints',
        type=int,
        default=500,
        help='Maximum keypoints detected per image (default: 500)'
    )
    landscape.add_argument(
        '--ratio',
        type=float,
        default=0.75,
        help="Lowe's ratio test threshold (default: 0.75)"
    )
    landscape.add_argument(
        '--verbose',
        action='store_true',
        help='Log every stabilization pass'
    )
    return parser


def _print_progress(progress):
    print(f"    [{progress.progress_percent_int:3d}%] {progress.message}")


def run_landscape(args):
    for path in [args.reference] + args.images:
        if not os.path.exists(path):
            print(f"Error: Image not found: {path}")
            return 1

    try:
        stabilization = (LandscapeStabilizationSettings.slow() if args.mode == 'slow'
                         else LandscapeStabilizationSettings.fast())
        settings = LandscapeAlignmentSettings(
            max_keypoints=args.max_keypoints,
            ratio_test_threshold=args.ratio,
            output_size=args.output_size,
            stabilization_settings=stabilization,
        )
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    print(f"\nReference: {args.reference}")
    print(f"Frames: {len(args.images)}")
    print(f"Mode: {stabilization.mode.name}")

    repository = InMemoryFrameRepository()
    aligner = LandscapeAligner(NumpyFeatureMatcherService(), ImageProcessor(), repository,
                               args.output_dir)
    reference = Frame('reference', args.reference)
    frames = [Frame(f"{i + 1:04d}", path) for i, path in enumerate(args.images)]

    def on_frame_done(index, total, result):
        frame = frames[index]
        if result.is_success:
            aligned = result.get_or_none()
            print(f"  [{index + 1}/{total}] {frame.original_path} -> {aligned.aligned_path} "
                  f"(confidence {aligned.confidence:.2f})")
        else:
            print(f"  [{index + 1}/{total}] {frame.original_path} failed: {result.message} "
                  f"({result.exception_or_none()})")

    print("\nAligning frames...")
    start_time = time.time()
    batch = align_batch(aligner, frames, reference_frame=reference, settings=settings,
                        on_frame_done=on_frame_done,
                        on_progress=_print_progress if args.verbose else None)
    aligned_count = len(batch.aligned)
    elapsed_time = time.time() - start_time

    print(f"\nAligned {aligned_count} of {len(frames)} frames")
    print(f"  Output directory: {args.output_dir}")
    print(f"  Processing time: {elapsed_time:.2f} seconds")
    return 0 if aligned_count == len(frames) else 1


def main(argv=None):
    """Main function for CLI."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.command == 'landscape':
        return run_landscape(args)
    return 1


if __name__ == '__main__':
    sys.exit(main())
