"""
Morphology adapter: primitive image operators as pure functions.

Every function takes arrays and returns new arrays or lists of Regions;
inputs are never modified. Connectivity is 4-connected throughout so that
the one-pixel lines drawn by the watershed functions always separate
neighbouring objects.
"""

from typing import List, Optional

import numpy as np
from scipy import ndimage
from skimage import measure, morphology, segmentation

from cell_compartments.config import check_threshold
from cell_compartments.regions import Region


# 16-bit probability convention used by the classifier outputs
PROBABILITY_MAX = 32767
NUCLEUS_MARKER_VALUE = 65535

FOUR_CONNECTED = ndimage.generate_binary_structure(2, 1)


def to_probability_scale(plane: np.ndarray) -> np.ndarray:
    """
    Bring a probability plane to the 0..32767 convention.

    Planes whose maximum is at most 1.0 are treated as 0..1 probabilities and
    rescaled; anything else is assumed to already use the 16-bit scale.
    """
    plane = np.asarray(plane, dtype=np.float64)
    if plane.size and plane.max() <= 1.0:
        return plane * PROBABILITY_MAX
    return plane.copy()


def threshold(plane: np.ndarray, lower: float, upper: float) -> np.ndarray:
    """Binary mask of pixels with ``lower <= value <= upper``."""
    check_threshold((lower, upper))
    plane = np.asarray(plane)
    return (plane >= lower) & (plane <= upper)


def fill_holes(mask: np.ndarray) -> np.ndarray:
    return ndimage.binary_fill_holes(np.asarray(mask, dtype=bool))


def distance_transform(mask: np.ndarray) -> np.ndarray:
    """
    Euclidean distance (pixels) from every foreground pixel to the nearest
    background pixel. Background pixels are 0; a mask without background
    yields infinity everywhere.
    """
    mask = np.asarray(mask, dtype=bool)
    if mask.all():
        return np.full(mask.shape, np.inf)
    return ndimage.distance_transform_edt(mask)


def watershed_split(mask: np.ndarray, tolerance: float = 0.5) -> np.ndarray:
    """
    Split touching objects of a binary mask along one-pixel lines.

    Markers are the maxima of the distance map standing at least
    ``tolerance`` above their surroundings; the mask is flooded from them on
    the inverted distance map. Components that get no marker are kept whole.
    """
    mask = np.asarray(mask, dtype=bool)
    if not mask.any():
        return mask.copy()

    distance = ndimage.distance_transform_edt(mask)
    peaks = morphology.h_maxima(distance, tolerance, footprint=FOUR_CONNECTED) > 0
    markers = measure.label(peaks & mask, connectivity=1)
    labels = segmentation.watershed(
        -distance, markers, mask=mask, connectivity=1, watershed_line=True
    )
    split = labels > 0

    components = measure.label(mask, connectivity=1)
    marked = np.unique(components[markers > 0])
    orphans = mask & ~np.isin(components, marked)
    return split | orphans


def find_local_maxima(
    plane: np.ndarray,
    prominence: float,
    mask: Optional[np.ndarray] = None
) -> np.ndarray:
    """
    Segment a 16-bit plane from its prominent maxima.

    A maximum counts as a peak only if it rises strictly more than
    ``prominence`` above the saddle joining it to any higher peak. The
    foreground (``mask``, default everything above zero) is flooded from the
    peaks and neighbouring basins are separated by one-pixel lines.

    Parameters
    ----------
    plane : np.ndarray
        2D image with values in 0..65535
    prominence : float
        Minimum peak height above its saddle
    mask : np.ndarray, optional
        Foreground restricting both the peaks and the flooded area

    Returns
    -------
    np.ndarray
        Labeled image (int32), 0 = background or separating line
    """
    values = np.clip(np.rint(np.asarray(plane, dtype=np.float64)), 0, NUCLEUS_MARKER_VALUE)
    values = values.astype(np.uint16)
    if mask is None:
        mask = values > 0
    mask = np.asarray(mask, dtype=bool)
    values = np.where(mask, values, 0).astype(np.uint16)

    height = int(np.floor(prominence)) + 1
    if not mask.any() or height > int(values.max()) - int(values.min()):
        return np.zeros(values.shape, dtype=np.int32)

    peaks = morphology.h_maxima(values, height, footprint=FOUR_CONNECTED) > 0
    markers = measure.label(peaks & mask, connectivity=1)
    labels = segmentation.watershed(
        NUCLEUS_MARKER_VALUE - values.astype(np.int32), markers,
        mask=mask, connectivity=1, watershed_line=True
    )
    return labels.astype(np.int32)


def labels_to_regions(
    labels: np.ndarray,
    min_area: float = 0,
    exclude_border: bool = False
) -> List[Region]:
    """
    Convert a label image into Regions.

    Regions come out in raster scan order of their first pixel (top to
    bottom, left to right), which is the order a particle scan visits them.
    """
    labels = np.asarray(labels)
    height, width = labels.shape
    regions = []
    props = measure.regionprops(labels)
    first_pixel = {}
    flat = labels.ravel()
    foreground = np.flatnonzero(flat)
    if foreground.size:
        ids, first = np.unique(flat[foreground], return_index=True)
        first_pixel = dict(zip(ids.tolist(), foreground[first].tolist()))

    for prop in sorted(props, key=lambda p: first_pixel[p.label]):
        if prop.area < min_area:
            continue
        min_row, min_col, max_row, max_col = prop.bbox
        if exclude_border and (
            min_row == 0 or min_col == 0 or max_row == height or max_col == width
        ):
            continue
        regions.append(Region(prop.image, (min_row, min_col)))
    return regions


def connected_components(
    mask: np.ndarray,
    min_area: float = 0,
    exclude_border: bool = False
) -> List[Region]:
    """One Region per 4-connected component of ``mask`` with area >= ``min_area``."""
    labels = measure.label(np.asarray(mask, dtype=bool), connectivity=1)
    return labels_to_regions(labels, min_area=min_area, exclude_border=exclude_border)
