"""
Writing of the per-image artifacts: ROI archive, measurement table,
compartment label image and run log.
"""

import zipfile
from pathlib import Path
from typing import Iterable, List, Optional, Union

import numpy as np
import pandas as pd
import roifile
from skimage import io, measure

from cell_compartments.regions import Region


# ImageJ places pixel (0, 0) between 0.0 and 1.0, so its center is at 0.5
PIXEL_CENTER = 0.5

# java.awt.geom.PathIterator segment codes used by composite ROIs
PATH_MOVETO = 0
PATH_LINETO = 1
PATH_CLOSE = 4


def region_outlines(region: Region) -> List[np.ndarray]:
    """
    Every outline of a region as (x, y) vertices in ImageJ coordinates.

    Outer boundaries and hole boundaries are all returned; filling them with
    the even-odd rule gives back exactly the region's pixels.
    """
    padded = np.pad(region.mask, 1).astype(float)
    outlines = []
    for contour in measure.find_contours(padded, 0.5):
        rows = contour[:, 0] - 1 + region.origin[0] + PIXEL_CENTER
        cols = contour[:, 1] - 1 + region.origin[1] + PIXEL_CENTER
        outlines.append(np.column_stack([cols, rows]))
    return outlines


def outline_path(outlines: List[np.ndarray]) -> np.ndarray:
    """Encode closed outlines as composite shape path data."""
    path = []
    for outline in outlines:
        # Contours are closed: the last vertex repeats the first
        points = outline[:-1] if len(outline) > 1 else outline
        x, y = points[0]
        path.extend([PATH_MOVETO, x, y])
        for x, y in points[1:]:
            path.extend([PATH_LINETO, x, y])
        path.append(PATH_CLOSE)
    return np.asarray(path, dtype=np.float32)


def region_to_imagej(region: Region) -> roifile.ImagejRoi:
    """
    ImageJ ROI for a region.

    Simple regions become polygons. Regions with holes (membrane, cytoplasm
    and matrix rings) or several pieces become composite shape ROIs.
    """
    outlines = region_outlines(region)
    if len(outlines) == 1:
        roi = roifile.ImagejRoi.frompoints(outlines[0], name=region.label)
        roi.roitype = roifile.ROI_TYPE.POLYGON
    else:
        top, left, bottom, right = region.bbox
        path = outline_path(outlines)
        roi = roifile.ImagejRoi(
            roitype=roifile.ROI_TYPE.RECT,
            name=region.label,
            top=top,
            left=left,
            bottom=bottom,
            right=right,
            shape_roi_size=int(path.size),
            multi_coordinates=path,
        )
    roi.group = int(region.group)
    return roi


def save_region_archive(regions: Iterable[Region], output_path: Union[str, Path]) -> int:
    """
    Write regions as an ImageJ ROI zip archive.

    Each entry carries the region outline, its display label as name and
    its group number as ROI group.

    Returns
    -------
    int
        Number of regions written
    """
    regions = list(regions)
    with zipfile.ZipFile(output_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for i, region in enumerate(regions):
            entry = f"{i + 1:04d}-{region.label.replace(':', '-') or 'region'}.roi"
            zipf.writestr(entry, region_to_imagej(region).tobytes())
    return len(regions)


def save_measurements(measurements: pd.DataFrame, output_path: Union[str, Path]) -> None:
    measurements.to_csv(output_path, index=False)


def save_label_image(raster: np.ndarray, output_path: Union[str, Path]) -> None:
    io.imsave(str(output_path), raster.astype(np.uint8), check_contrast=False)


def save_run_log(messages: Iterable[str], output_path: Union[str, Path],
                 header: Optional[str] = None) -> None:
    with open(output_path, 'w') as f:
        if header:
            f.write(header + '\n')
        for message in messages:
            f.write(message + '\n')
