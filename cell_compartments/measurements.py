"""
Per-channel intensity statistics for every region.

Areas and centroids are reported in calibrated units (square microns and
microns); intensities are raw channel values.
"""

from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from cell_compartments.regions import Region


MEASUREMENT_COLUMNS = [
    'image', 'label', 'pair_id', 'role', 'group', 'channel',
    'area', 'mean', 'std', 'min', 'max', 'median', 'integrated_density',
    'centroid_x', 'centroid_y'
]

STAT_COLUMNS = ['mean', 'std', 'min', 'max', 'median', 'integrated_density']


def measure_region(
    region: Region,
    plane: np.ndarray,
    pixel_size_um: float = 1.0
) -> Dict[str, float]:
    """
    Intensity statistics of one region on one image plane.

    Parameters
    ----------
    region : Region
        Region to measure (must lie inside the plane)
    plane : np.ndarray
        2D channel image
    pixel_size_um : float
        Pixel size in microns per pixel

    Returns
    -------
    dict
        area, mean, std, min, max, median, integrated_density, centroid_x,
        centroid_y
    """
    rows, cols = region.pixels()
    values = np.asarray(plane)[rows, cols].astype(np.float64)
    pixel_area = pixel_size_um ** 2
    area = values.size * pixel_area
    mean = float(values.mean())
    centroid_row, centroid_col = region.centroid

    return {
        'area': area,
        'mean': mean,
        'std': float(values.std()),
        'min': float(values.min()),
        'max': float(values.max()),
        'median': float(np.median(values)),
        'integrated_density': mean * area,
        'centroid_x': centroid_col * pixel_size_um,
        'centroid_y': centroid_row * pixel_size_um,
    }


def measure_regions(
    regions: Iterable[Region],
    channels: Dict[str, np.ndarray],
    pixel_size_um: float = 1.0,
    image_name: Optional[str] = None
) -> pd.DataFrame:
    """
    Measure every region on every channel.

    Channels are processed one at a time over all regions, giving one row
    per region x channel combination.

    Returns
    -------
    pd.DataFrame
        Long-format table with MEASUREMENT_COLUMNS
    """
    regions = list(regions)
    rows: List[Dict[str, object]] = []
    for channel_name, plane in channels.items():
        for region in regions:
            row = {
                'image': image_name,
                'label': region.label,
                'pair_id': region.tag.pair_id if region.tag is not None else None,
                'role': region.tag.role.value if region.tag is not None else None,
                'group': int(region.group),
                'channel': channel_name,
            }
            row.update(measure_region(region, plane, pixel_size_um))
            rows.append(row)
    return pd.DataFrame(rows, columns=MEASUREMENT_COLUMNS)


def to_wide_table(measurements: pd.DataFrame) -> pd.DataFrame:
    """One row per region with ``<channel>_<stat>`` columns."""
    if measurements.empty:
        return pd.DataFrame(columns=['image', 'label', 'pair_id', 'role', 'group', 'area'])

    keys = ['image', 'label', 'pair_id', 'role', 'group']
    base = measurements.drop_duplicates('label')[keys + ['area', 'centroid_x', 'centroid_y']]
    wide = measurements.pivot(index='label', columns='channel', values=STAT_COLUMNS)
    wide.columns = [f"{channel}_{stat}" for stat, channel in wide.columns]
    wide = wide[sorted(wide.columns)]
    return base.merge(wide, left_on='label', right_index=True).reset_index(drop=True)
