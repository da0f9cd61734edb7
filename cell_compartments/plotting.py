"""
Rendering of compartment rasters and QC overlays.

This module paints the final regions into a label image (pixel value =
region group) and draws a QC figure with one outline color per compartment.
"""

from typing import Dict, Iterable, Tuple

import numpy as np
import matplotlib.pyplot as plt
from skimage import measure

from cell_compartments.regions import Region, RegionGroup


# Paint order: later groups overwrite earlier ones
PAINT_ORDER = [
    RegionGroup.CELL,
    RegionGroup.MATRIX_OR_MEMBRANE,
    RegionGroup.CYTOPLASM,
    RegionGroup.NUCLEUS,
]

GROUP_COLORS: Dict[RegionGroup, Tuple[float, float, float]] = {
    RegionGroup.NUCLEUS: (1.0, 0.0, 0.0),
    RegionGroup.CELL: (0.0, 1.0, 0.0),
    RegionGroup.MATRIX_OR_MEMBRANE: (1.0, 1.0, 0.0),
    RegionGroup.CYTOPLASM: (0.0, 0.6, 1.0),
}


def render_compartments(regions: Iterable[Region], shape: Tuple[int, int]) -> np.ndarray:
    """
    Label image of the final compartments.

    Parameters
    ----------
    regions : iterable of Region
        Final regions of a run
    shape : tuple
        (height, width) of the source image

    Returns
    -------
    np.ndarray
        uint8 image; each pixel holds the group number of the innermost
        compartment covering it, 0 for background
    """
    regions = list(regions)
    raster = np.zeros(shape, dtype=np.uint8)
    for group in PAINT_ORDER:
        for region in regions:
            if region.group == group:
                raster[region.to_mask(shape)] = int(group)
    return raster


def overlay_mask_on_image(
    image: np.ndarray,
    mask: np.ndarray,
    color: Tuple[float, float, float] = (1.0, 0.0, 0.0),
    alpha: float = 0.3
) -> np.ndarray:
    """
    Blend a semi-transparent colored mask into an image.

    Parameters
    ----------
    image : np.ndarray
        Grayscale or RGB image (2D or 3D array)
    mask : np.ndarray
        Binary mask (same height and width as image)
    color : tuple
        RGB color for the mask overlay (values 0-1)
    alpha : float
        Transparency of the mask overlay (0-1)

    Returns
    -------
    np.ndarray
        RGB float image in 0-1
    """
    if image.ndim == 2:
        image_rgb = np.stack([image, image, image], axis=-1).astype(np.float64)
    else:
        image_rgb = image[..., :3].astype(np.float64)

    # Normalize to 0-1 range if needed
    top = image_rgb.max()
    if top > 1.0:
        image_rgb = image_rgb / top

    if mask.shape != image_rgb.shape[:2]:
        raise ValueError(
            f"Mask shape {mask.shape} does not match image shape {image_rgb.shape[:2]}"
        )

    overlay = image_rgb.copy()
    overlay[mask] = alpha * np.array(color) + (1 - alpha) * overlay[mask]
    return overlay


def plot_compartment_overlay(
    image: np.ndarray,
    regions: Iterable[Region],
    output_path: str,
    title: str = 'Compartments',
    alpha: float = 0.25
) -> None:
    """
    Save a QC figure with filled nuclei and outlined compartments.

    Nuclei are filled red; cells (green), membrane or matrix (yellow) and
    cytoplasm (blue) are drawn as contours.
    """
    regions = list(regions)
    shape = image.shape[:2]

    nuclei_mask = np.zeros(shape, dtype=bool)
    for region in regions:
        if region.group == RegionGroup.NUCLEUS:
            nuclei_mask |= region.to_mask(shape)
    overlay = overlay_mask_on_image(
        image, nuclei_mask, color=GROUP_COLORS[RegionGroup.NUCLEUS], alpha=alpha
    )

    fig, ax = plt.subplots(figsize=(10, 10))
    ax.imshow(overlay)
    for region in regions:
        if region.group == RegionGroup.NUCLEUS:
            continue
        color = GROUP_COLORS.get(region.group, (1.0, 1.0, 1.0))
        padded = np.pad(region.mask, 1).astype(float)
        for contour in measure.find_contours(padded, 0.5):
            ax.plot(
                contour[:, 1] - 1 + region.origin[1],
                contour[:, 0] - 1 + region.origin[0],
                color=color, linewidth=0.8
            )
    ax.axis('off')
    ax.set_title(title)

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    plt.close(fig)
