"""
Unit tests for the ROI archive and the other written artifacts.
"""

import numpy as np
import roifile
from skimage.draw import disk, polygon2mask

from cell_compartments.export import (
    PIXEL_CENTER, region_outlines, region_to_imagej, save_region_archive, save_run_log
)
from cell_compartments.regions import PairTag, Region, RegionGroup, Role


SHAPE = (60, 60)


def roi_to_mask(roi, shape):
    """Rasterise an ImageJ ROI with the even-odd rule."""
    mask = np.zeros(shape, dtype=bool)
    for outline in roi.coordinates(multi=True):
        vertices = np.asarray(outline, dtype=np.float64)[:, ::-1] - PIXEL_CENTER
        mask ^= polygon2mask(shape, vertices)
    return mask


def ring_region():
    """Cell-minus-nucleus ring, as produced for a matrix compartment."""
    mask = np.zeros(SHAPE, dtype=bool)
    rr, cc = disk((30, 30), 12, shape=SHAPE)
    mask[rr, cc] = True
    rr, cc = disk((30, 30), 5, shape=SHAPE)
    mask[rr, cc] = False
    return Region.from_mask(
        mask, group=RegionGroup.MATRIX_OR_MEMBRANE, tag=PairTag(1, Role.MATRIX)
    )


def test_ring_keeps_its_hole():
    """Test that a ring exports both its outer and inner outline."""
    region = ring_region()

    assert len(region_outlines(region)) == 2

    roi = region_to_imagej(region)
    assert roi.composite
    assert np.array_equal(roi_to_mask(roi, SHAPE), region.to_mask(SHAPE))


def test_simple_region_is_polygon():
    mask = np.zeros(SHAPE, dtype=bool)
    rr, cc = disk((20, 25), 6, shape=SHAPE)
    mask[rr, cc] = True
    region = Region.from_mask(mask, group=RegionGroup.NUCLEUS, tag=PairTag(1, Role.NUCLEUS))

    roi = region_to_imagej(region)

    assert roi.roitype == roifile.ROI_TYPE.POLYGON
    assert not roi.composite
    assert np.array_equal(roi_to_mask(roi, SHAPE), mask)


def test_two_piece_region_keeps_both_pieces():
    mask = np.zeros(SHAPE, dtype=bool)
    mask[5:10, 5:10] = True
    mask[30:40, 30:35] = True
    region = Region.from_mask(mask)

    roi = region_to_imagej(region)

    assert roi.composite
    assert np.array_equal(roi_to_mask(roi, SHAPE), mask)


def test_archive_round_trip(tmp_path):
    """Names, groups and geometry survive writing and reading the archive."""
    ring = ring_region()
    square = np.zeros(SHAPE, dtype=bool)
    square[40:50, 5:15] = True
    nucleus = Region.from_mask(square, group=RegionGroup.NUCLEUS, tag=PairTag(2, Role.NUCLEUS))
    path = tmp_path / 'regions.zip'

    assert save_region_archive([nucleus, ring], path) == 2

    rois = roifile.roiread(str(path))
    assert [roi.name for roi in rois] == ['2:nu', '1:ma']
    assert [roi.group for roi in rois] == [1, 3]
    assert roi_to_mask(rois[0], SHAPE).sum() == nucleus.area
    assert np.array_equal(roi_to_mask(rois[1], SHAPE), ring.to_mask(SHAPE))


def test_save_run_log(tmp_path):
    path = tmp_path / 'log.txt'
    save_run_log(["  Segmenting nuclei...", "    Nuclei detected: 2"], path,
                 header="Processing sample...")

    assert path.read_text().splitlines() == [
        "Processing sample...", "  Segmenting nuclei...", "    Nuclei detected: 2"
    ]
