"""
Unit tests for the morphology adapter.
"""

import numpy as np
import pytest
from skimage.draw import disk

from cell_compartments.exceptions import ConfigurationError
from cell_compartments.morphology import (
    PROBABILITY_MAX, connected_components, distance_transform, find_local_maxima,
    labels_to_regions, threshold, to_probability_scale, watershed_split
)


def draw_disks(shape, centers, radius, value=True, dtype=bool):
    img = np.zeros(shape, dtype=dtype)
    for center in centers:
        rr, cc = disk(center, radius, shape=shape)
        img[rr, cc] = value
    return img


def test_to_probability_scale():
    plane = np.array([[0.0, 0.5], [1.0, 0.25]])
    scaled = to_probability_scale(plane)

    assert scaled.max() == PROBABILITY_MAX
    assert scaled[0, 1] == pytest.approx(0.5 * PROBABILITY_MAX)

    already = np.array([[0.0, 20000.0]])
    assert np.array_equal(to_probability_scale(already), already)


def test_threshold_is_inclusive():
    plane = np.array([[0, 10, 20, 30, 40]])
    mask = threshold(plane, 10, 30)
    assert mask.tolist() == [[False, True, True, True, False]]


def test_threshold_rejects_inverted_bounds():
    with pytest.raises(ConfigurationError):
        threshold(np.zeros((5, 5)), 10, 5)


def test_distance_transform_without_background():
    assert np.isinf(distance_transform(np.ones((4, 4), dtype=bool))).all()


def test_watershed_split_separates_touching_disks():
    """Two overlapping disks form one blob that splits into two objects."""
    mask = draw_disks((60, 80), [(30, 30), (30, 46)], 10)
    assert len(connected_components(mask)) == 1

    split = watershed_split(mask)
    regions = connected_components(split)

    assert len(regions) == 2
    assert split.sum() < mask.sum()
    assert not np.any(split & ~mask)


def test_watershed_split_leaves_single_disk_intact():
    mask = draw_disks((40, 40), [(20, 20)], 8)
    assert np.array_equal(watershed_split(mask), mask)


def test_connected_components_scan_order_and_filters():
    """Components come out top-to-bottom; small and border objects are filtered."""
    mask = np.zeros((40, 50), dtype=bool)
    mask[5:10, 40:45] = True    # first in scan order
    mask[20:25, 2:7] = True     # second
    mask[30:32, 30:32] = True   # 4 pixels, below min_area
    mask[0:4, 20:24] = True     # touches the top border

    regions = connected_components(mask, min_area=5, exclude_border=True)
    assert [r.bbox for r in regions] == [(5, 40, 10, 45), (20, 2, 25, 7)]

    regions = connected_components(mask, min_area=0, exclude_border=False)
    assert len(regions) == 4
    assert regions[0].bbox == (0, 20, 4, 24)


def test_labels_to_regions_orders_by_first_pixel():
    labels = np.zeros((20, 20), dtype=int)
    labels[10:15, 2:5] = 1
    labels[2:6, 12:16] = 2

    regions = labels_to_regions(labels)
    assert [r.bbox for r in regions] == [(2, 12, 6, 16), (10, 2, 15, 5)]


def test_find_local_maxima_one_basin_per_marker():
    """Two nucleus plateaus joined by a matrix band give two basins."""
    plane = np.zeros((40, 80), dtype=np.float64)
    plane[10:30, 5:75] = PROBABILITY_MAX
    plane[15:25, 15:25] = 65535
    plane[15:25, 55:65] = 65535

    labels = find_local_maxima(plane, PROBABILITY_MAX)
    ids = np.unique(labels[labels > 0])

    assert len(ids) == 2
    # Each plateau lies in a single basin
    assert len(np.unique(labels[15:25, 15:25])) == 1
    assert len(np.unique(labels[15:25, 55:65])) == 1
    assert labels[20, 20] != labels[20, 60]


def test_find_local_maxima_ignores_matrix_only_peaks():
    """A matrix blob never rises strictly above the prominence."""
    plane = np.zeros((30, 30), dtype=np.float64)
    plane[5:25, 5:25] = PROBABILITY_MAX

    labels = find_local_maxima(plane, PROBABILITY_MAX)
    assert labels.max() == 0


def test_find_local_maxima_respects_mask():
    plane = np.zeros((40, 40), dtype=np.float64)
    plane[5:35, 5:35] = PROBABILITY_MAX
    plane[15:25, 15:25] = 65535
    mask = plane >= 65535

    labels = find_local_maxima(plane, PROBABILITY_MAX, mask=mask)
    assert np.array_equal(labels > 0, mask)
