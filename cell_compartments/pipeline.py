"""
Per-image pipeline: classification, segmentation, matching, compartment
derivation, measurement and export.

Stages run strictly one after another on a single PipelineContext. A stage
either completes (possibly with zero regions) or raises; StageError is
annotated with the image and stage names on its way out so the batch loop
can report exactly where a run failed.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np

from cell_compartments import export, io_utils, morphology
from cell_compartments.compartments import build_compartments
from cell_compartments.config import PipelineConfig
from cell_compartments.context import PipelineContext
from cell_compartments.exceptions import ConfigurationError, StageError
from cell_compartments.matching import match_regions
from cell_compartments.measurements import measure_regions, to_wide_table
from cell_compartments.plotting import plot_compartment_overlay, render_compartments
from cell_compartments.providers import (
    CELL_STAGE, NUCLEI_STAGE, ClassifierProvider, FixedThresholdProvider,
    IntensityClassifier, ThresholdProvider
)
from cell_compartments.segmentation import (
    cell_guidance, segment_cells_from_guidance, segment_nuclei
)


@contextmanager
def stage(context: PipelineContext, name: str):
    """Report a stage boundary and tag StageErrors raised inside it."""
    context.log(f"  {name}...")
    try:
        yield
    except StageError as e:
        if e.image is None:
            e.image = context.image_name
        if e.stage is None:
            e.stage = name
        raise
    except ConfigurationError:
        raise
    except (OSError, ValueError) as e:
        raise StageError(str(e), image=context.image_name, stage=name) from e


def default_threshold_provider(config: PipelineConfig) -> ThresholdProvider:
    return FixedThresholdProvider({
        NUCLEI_STAGE: config.nuclei_threshold,
        CELL_STAGE: config.cell_threshold,
    })


def segment_image(
    nuclei_probability: np.ndarray,
    matrix_probability: Optional[np.ndarray],
    config: PipelineConfig,
    thresholds: Optional[ThresholdProvider] = None,
    image_name: str = 'image',
    verbose: bool = True
) -> PipelineContext:
    """
    Run segmentation, matching and compartment derivation on probability maps.

    Parameters
    ----------
    nuclei_probability : np.ndarray
        Nuclei probability plane (0..1 or 0..32767)
    matrix_probability : np.ndarray or None
        Cell-matrix probability plane; None when no matrix channel exists
    config : PipelineConfig
        Pipeline parameters (validated here)
    thresholds : ThresholdProvider, optional
        Threshold source; defaults to the thresholds in ``config``
    image_name : str
        Name used in progress messages and errors
    verbose : bool
        Print progress messages

    Returns
    -------
    PipelineContext
        Context holding the final sorted regions and counts
    """
    config.validate()
    if thresholds is None:
        thresholds = default_threshold_provider(config)

    nuclei_probability = morphology.to_probability_scale(nuclei_probability)
    shape = nuclei_probability.shape
    context = PipelineContext(image_name=image_name, shape=shape, verbose=verbose)

    with stage(context, "Segmenting nuclei"):
        nuclei_threshold = thresholds.get_threshold(NUCLEI_STAGE, nuclei_probability)
        segment_nuclei(
            context,
            nuclei_probability,
            nuclei_threshold,
            exclude_edges=config.exclude_edges,
            fill_holes=config.fill_holes,
            min_size_px=config.to_pixel_area(config.min_nucleus_size)
        )

    with stage(context, "Segmenting cells"):
        nuclei_mask = np.zeros(shape, dtype=bool)
        for region in context.regions:
            nuclei_mask |= region.to_mask(shape)
        guidance = cell_guidance(
            matrix_probability,
            nuclei_mask,
            expansion_px=config.to_pixels(config.cell_expansion),
            limit_px=config.to_pixels(config.cell_expansion_limit)
        )
        cell_threshold = thresholds.get_threshold(CELL_STAGE, guidance)
        segment_cells_from_guidance(
            context,
            guidance,
            cell_threshold,
            min_size_px=config.to_pixel_area(config.min_cell_size)
        )

    with stage(context, "Matching nuclei to cells"):
        match_regions(context, offset=config.match_offset)

    with stage(context, "Building compartments"):
        build_compartments(
            context,
            nuclei_contraction=config.to_pixels(config.nuclei_contraction),
            cell_matrix_contraction=config.to_pixels(config.cell_matrix_contraction),
            membrane_width=config.to_pixels(config.membrane_width)
        )

    return context


def process_image(
    image_path: Union[str, Path],
    config: PipelineConfig,
    output_root: Union[str, Path],
    classifier: Optional[ClassifierProvider] = None,
    thresholds: Optional[ThresholdProvider] = None,
    save_overlay: bool = True,
    save_wide_table: bool = False,
    verbose: bool = True
) -> Dict[str, object]:
    """
    Process a single image end to end and write its artifacts.

    Nothing is written unless every stage succeeds.

    Parameters
    ----------
    image_path : str or Path
        Multi-channel image file
    config : PipelineConfig
        Pipeline parameters
    output_root : str or Path
        Root folder; artifacts go to ``<output_root>/<image base name>/``
    classifier : ClassifierProvider, optional
        Probability map source (default: IntensityClassifier)
    thresholds : ThresholdProvider, optional
        Threshold source (default: thresholds from ``config``)
    save_overlay : bool
        Also save the QC overlay PNG
    save_wide_table : bool
        Also save the measurements with one row per region

    Returns
    -------
    dict
        Run summary (counts per compartment, unmatched and skipped regions)

    Raises
    ------
    ConfigurationError
        If ``config`` is invalid
    StageError
        If loading, classification or any stage fails for this image
    """
    config.validate()
    image_path = Path(image_path)
    name = io_utils.image_base_name(image_path)
    if classifier is None:
        classifier = IntensityClassifier(normalize_background=config.normalize_background)
    if verbose:
        print(f"Processing {name}...")

    try:
        stack = io_utils.load_image_stack(image_path)
    except (OSError, ValueError) as e:
        raise StageError(str(e), image=name, stage="Loading image") from e

    n_channels = stack.shape[0]
    for label, channel in (('nuclei', config.nuclei_channel), ('matrix', config.matrix_channel)):
        if channel is not None and not 0 <= channel < n_channels:
            raise StageError(
                f"{label} channel {channel} not present ({n_channels} channels)",
                image=name, stage="Loading image"
            )

    try:
        nuclei_probability = classifier.classify(
            stack, [config.nuclei_channel], 'nuclei', image_name=name
        )
        matrix_probability = None
        if config.matrix_channel is not None:
            matrix_probability = classifier.classify(
                stack, [config.matrix_channel], 'matrix', image_name=name
            )
    except StageError as e:
        if e.image is None:
            e.image = name
        raise
    except ConfigurationError:
        raise
    except (OSError, ValueError) as e:
        raise StageError(str(e), image=name, stage="Classification") from e

    context = segment_image(
        nuclei_probability, matrix_probability, config,
        thresholds=thresholds, image_name=name, verbose=verbose
    )

    try:
        with stage(context, "Measuring"):
            channels = config.measure_channels
            if channels is None:
                channels = list(range(n_channels))
            planes = {f"C{c + 1}": stack[c] for c in channels if 0 <= c < n_channels}
            measurements = measure_regions(
                context.regions, planes, config.pixel_size_um, image_name=name
            )
            context.log(f"    Measured {len(context.regions)} regions on {len(planes)} channels")

        with stage(context, "Saving results"):
            paths = io_utils.output_paths(image_path, output_root)
            paths['folder'].mkdir(parents=True, exist_ok=True)
            export.save_measurements(measurements, paths['measurements'])
            if save_wide_table:
                export.save_measurements(to_wide_table(measurements), paths['wide'])
            export.save_label_image(render_compartments(context.regions, context.shape),
                                    paths['labels'])
            if len(context.regions):
                export.save_region_archive(context.regions, paths['rois'])
            else:
                context.log("    WARNING: No regions left, ROI archive not written")
            if save_overlay:
                display = stack[config.nuclei_channel]
                plot_compartment_overlay(display, context.regions, str(paths['overlay']),
                                         title=f"{name} compartments")
            context.log(f"    Results saved to {paths['folder']}")
            export.save_run_log(context.messages, paths['log'], header=f"Processing {name}...")

        return context.summary()
    finally:
        context.clear()
