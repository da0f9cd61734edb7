"""
Command-line entry point for batch compartment segmentation.

Images are processed one at a time:

1. Loading (io_utils.py):
   - Reads each image as a (channels, height, width) stack
   - Z-stacks are max-projected

2. Classification (providers.py):
   - Nuclei and cell-matrix probability maps from channel intensity, or
     precomputed maps from an external classifier (--probability-dir)

3. Segmentation (segmentation.py):
   - Nuclei: threshold + hole filling + watershed split
   - Cells: nuclei markers grown through a distance-limited guidance image

4. Matching (matching.py):
   - Each nucleus paired with the cell containing it, orphans discarded

5. Compartments (compartments.py):
   - Membrane + cytoplasm, or cellular matrix, per matched pair

6. Measurements and export (measurements.py, export.py):
   - Per-channel statistics, ROI archive, label image, run log

A failing image is reported with the failing stage and skipped; the batch
carries on with the next image.
"""

import argparse
import sys
from pathlib import Path
from typing import List

import pandas as pd

from cell_compartments.config import PipelineConfig, load_config
from cell_compartments.exceptions import ConfigurationError, StageError
from cell_compartments.io_utils import find_images
from cell_compartments.pipeline import default_threshold_provider, process_image
from cell_compartments.providers import (
    IntensityClassifier, OtsuThresholdProvider, ProbabilityMapClassifier
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Segment cells into nucleus, membrane and cytoplasm compartments "
                    "and measure every channel"
    )
    parser.add_argument(
        'images',
        type=str,
        nargs='+',
        help='Image files or folders of images to process'
    )
    parser.add_argument(
        '--output-root',
        type=str,
        default='outputs',
        help='Output directory; one subfolder per image (default: outputs)'
    )
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='JSON file with pipeline parameters'
    )
    parser.add_argument('--pixel-size', type=float, default=None,
                        help='Pixel size in microns per pixel')
    parser.add_argument('--nuclei-channel', type=int, default=None,
                        help='Channel index (0-based) of the nuclei stain')
    parser.add_argument('--matrix-channel', type=int, default=None,
                        help='Channel index (0-based) of the cell-matrix stain')
    parser.add_argument('--measure-channels', type=int, nargs='+', default=None,
                        help='Channel indices to measure (default: all)')
    parser.add_argument('--nuclei-threshold', type=float, nargs=2, default=None,
                        metavar=('LOWER', 'UPPER'),
                        help='Nuclei probability threshold on the 0-32767 scale')
    parser.add_argument('--cell-threshold', type=float, nargs=2, default=None,
                        metavar=('LOWER', 'UPPER'),
                        help='Cell guidance threshold on the 0-65535 scale')
    parser.add_argument('--cell-expansion', type=float, default=None,
                        help='Minimum cell radius around each nucleus (microns)')
    parser.add_argument('--cell-expansion-limit', type=float, default=None,
                        help='Maximum cell radius around each nucleus (microns)')
    parser.add_argument('--membrane-width', type=float, default=None,
                        help='Membrane width in microns (0 = cell minus nucleus only)')
    parser.add_argument('--probability-dir', type=str, default=None,
                        help='Folder with precomputed <image>_<nuclei|matrix>_probabilities.tif')
    parser.add_argument('--auto-threshold', action='store_true',
                        help='Use Otsu thresholds for nuclei instead of fixed ones')
    parser.add_argument('--no-overlay', action='store_true',
                        help='Do not save QC overlay images')
    parser.add_argument('--wide-table', action='store_true',
                        help='Also save measurements with one row per region')
    return parser


def collect_images(inputs: List[str]) -> List[Path]:
    images = []
    for item in inputs:
        path = Path(item)
        if path.is_dir():
            images.extend(find_images(path))
        else:
            images.append(path)
    return images


def main(argv=None) -> int:
    """Main entry point for the pipeline."""
    args = build_parser().parse_args(argv)

    overrides = dict(
        pixel_size_um=args.pixel_size,
        nuclei_channel=args.nuclei_channel,
        matrix_channel=args.matrix_channel,
        measure_channels=args.measure_channels,
        nuclei_threshold=args.nuclei_threshold,
        cell_threshold=args.cell_threshold,
        cell_expansion=args.cell_expansion,
        cell_expansion_limit=args.cell_expansion_limit,
        membrane_width=args.membrane_width,
    )

    # Configuration errors abort before any image is touched
    try:
        if args.config:
            config = load_config(args.config, **overrides)
        else:
            config = PipelineConfig().updated(**overrides).validate()
    except ConfigurationError as e:
        print(f"Error: {e}")
        return 1

    images = collect_images(args.images)
    if not images:
        print("Error: No images found")
        return 1

    if args.probability_dir:
        classifier = ProbabilityMapClassifier(args.probability_dir)
    else:
        classifier = IntensityClassifier(normalize_background=config.normalize_background)
    thresholds = default_threshold_provider(config)
    if args.auto_threshold:
        thresholds = OtsuThresholdProvider(fallback=thresholds)

    output_root = Path(args.output_root)
    summaries = []
    failures = []
    for image_path in images:
        try:
            summary = process_image(
                image_path,
                config,
                output_root,
                classifier=classifier,
                thresholds=thresholds,
                save_overlay=not args.no_overlay,
                save_wide_table=args.wide_table
            )
            summaries.append(summary)
            print(f"  Completed {summary['image']}")
        except StageError as e:
            print(f"  ERROR: {e}")
            print(f"  Skipping {image_path.name}, no results written")
            failures.append(image_path.name)

    print("\n" + "="*60)
    print("SUMMARY")
    print("="*60)
    if summaries:
        summary_df = pd.DataFrame(summaries).set_index('image')
        print(summary_df.to_string())
        output_root.mkdir(parents=True, exist_ok=True)
        summary_path = output_root / 'summary.csv'
        summary_df.to_csv(summary_path)
        print(f"\nSummary saved to {summary_path}")
    if failures:
        print(f"\nFailed images ({len(failures)}): {', '.join(failures)}")
    print("="*60 + "\n")

    return 0 if summaries else 1


if __name__ == '__main__':
    sys.exit(main())
