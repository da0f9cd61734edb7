"""
Segmentation stages for nuclei and cells.

Both stages consume classifier probability maps rather than raw channels:
- Nuclei: threshold + hole filling + watershed splitting + particle scan
- Cells: a guidance image built from the nuclei, a distance-limited
  expansion and the (optional) cell-matrix probability map, segmented from
  its prominent maxima so that every cell grows out of exactly one nucleus
  marker

The cell guidance is assembled from small pure functions so each step can
be inspected and tested on its own.
"""

from typing import List, Optional, Tuple

import numpy as np

from cell_compartments import morphology
from cell_compartments.config import check_threshold
from cell_compartments.context import PipelineContext
from cell_compartments.morphology import NUCLEUS_MARKER_VALUE, PROBABILITY_MAX


# Peaks must rise more than this above their saddle. Matrix structure tops
# out at PROBABILITY_MAX, so only nucleus markers (NUCLEUS_MARKER_VALUE)
# qualify as peaks.
CELL_PEAK_PROMINENCE = PROBABILITY_MAX


def segment_nuclei(
    context: PipelineContext,
    nuclei_probability: np.ndarray,
    threshold: Tuple[float, float],
    exclude_edges: bool = True,
    fill_holes: bool = True,
    min_size_px: float = 0.0
) -> List[int]:
    """
    Segment nuclei from the nuclei probability map.

    Parameters
    ----------
    context : PipelineContext
        Run state; nuclei are appended to ``context.regions``
    nuclei_probability : np.ndarray
        Nuclei probability plane on the 0..32767 scale (see
        ``morphology.to_probability_scale``)
    threshold : tuple
        (lower, upper) bounds on the 0..32767 scale
    exclude_edges : bool
        Drop nuclei touching the image border
    fill_holes : bool
        Fill interior holes before watershed splitting
    min_size_px : float
        Minimum nucleus area in pixels

    Returns
    -------
    list
        Collection indices of the new nuclei, in scan order
    """
    check_threshold(threshold, 'nuclei_threshold')

    binary = morphology.threshold(nuclei_probability, *threshold)
    if fill_holes:
        binary = morphology.fill_holes(binary)
    binary = morphology.watershed_split(binary)

    nuclei = morphology.connected_components(
        binary, min_area=min_size_px, exclude_border=exclude_edges
    )
    indices = context.regions.extend(nuclei)
    context.counts.nuclei = len(indices)

    context.log(f"    Nuclei detected: {len(indices)}")
    if not indices:
        context.log("    WARNING: No nuclei detected "
                    f"(threshold={threshold[0]:.0f}-{threshold[1]:.0f}, min_size={min_size_px:.1f} px)")
    return indices


def nuclei_distance_map(nuclei_mask: np.ndarray) -> np.ndarray:
    """Distance (pixels) from every pixel to the nearest nucleus pixel."""
    return morphology.distance_transform(~np.asarray(nuclei_mask, dtype=bool))


def expansion_limit_mask(distance_map: np.ndarray, limit_px: float) -> np.ndarray:
    """True within ``limit_px`` of a nucleus, False beyond; caps cell growth."""
    return distance_map <= limit_px


def simulated_matrix(distance_map: np.ndarray, expansion_px: float) -> np.ndarray:
    """
    Synthetic matrix signal: full probability within ``expansion_px`` of a
    nucleus, zero elsewhere. Guarantees every nucleus the minimum radius even
    without a matrix channel.
    """
    return np.where(distance_map <= expansion_px, PROBABILITY_MAX, 0).astype(np.float64)


def guidance_image(nuclei_mask: np.ndarray, matrix_image: np.ndarray) -> np.ndarray:
    """
    Nuclei at NUCLEUS_MARKER_VALUE over matrix values clipped to
    0..PROBABILITY_MAX, so nucleus pixels always sit above any matrix peak.
    """
    nuclei = np.asarray(nuclei_mask, dtype=bool) * float(NUCLEUS_MARKER_VALUE)
    matrix = np.clip(matrix_image, 0, PROBABILITY_MAX)
    return np.maximum(nuclei, matrix)


def cell_guidance(
    matrix_probability: Optional[np.ndarray],
    nuclei_mask: np.ndarray,
    expansion_px: float,
    limit_px: float
) -> np.ndarray:
    """
    Build the image the cell segmentation floods.

    Parameters
    ----------
    matrix_probability : np.ndarray or None
        Cell-matrix probability plane; None is treated as a blank plane
    nuclei_mask : np.ndarray
        Union of all nucleus regions
    expansion_px : float
        Minimum radius around each nucleus (pixels)
    limit_px : float
        Maximum radius around each nucleus (pixels)

    Returns
    -------
    np.ndarray
        Guidance image with values in 0..65535
    """
    nuclei_mask = np.asarray(nuclei_mask, dtype=bool)
    if matrix_probability is None:
        matrix = np.zeros(nuclei_mask.shape, dtype=np.float64)
    else:
        matrix = morphology.to_probability_scale(matrix_probability)
        if matrix.shape != nuclei_mask.shape:
            raise ValueError(
                f"Shape mismatch: matrix plane {matrix.shape} vs nuclei mask {nuclei_mask.shape}"
            )

    distance = nuclei_distance_map(nuclei_mask)
    limit = expansion_limit_mask(distance, limit_px)
    combined = np.maximum(matrix, simulated_matrix(distance, expansion_px))
    combined = combined * limit
    return guidance_image(nuclei_mask, combined)


def segment_cells(
    context: PipelineContext,
    matrix_probability: Optional[np.ndarray],
    nuclei_mask: np.ndarray,
    threshold: Tuple[float, float],
    expansion_px: float,
    limit_px: float,
    min_size_px: float = 0.0
) -> List[int]:
    """
    Segment cells around the nuclei.

    Returns
    -------
    list
        Collection indices of the new cells, appended after the nuclei
    """
    guidance = cell_guidance(matrix_probability, nuclei_mask, expansion_px, limit_px)
    return segment_cells_from_guidance(context, guidance, threshold, min_size_px)


def segment_cells_from_guidance(
    context: PipelineContext,
    guidance: np.ndarray,
    threshold: Tuple[float, float],
    min_size_px: float = 0.0
) -> List[int]:
    """Threshold a guidance image and flood it from the nucleus peaks."""
    check_threshold(threshold, 'cell_threshold')
    foreground = morphology.threshold(guidance, *threshold)

    labels = morphology.find_local_maxima(guidance, CELL_PEAK_PROMINENCE, mask=foreground)
    cells = morphology.labels_to_regions(labels, min_area=min_size_px)
    indices = context.regions.extend(cells)
    context.counts.cells = len(indices)

    context.log(f"    Cells detected: {len(indices)}")
    return indices
