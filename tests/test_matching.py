"""
Unit tests for nucleus/cell matching.
"""

import numpy as np

from cell_compartments.context import PipelineContext
from cell_compartments.matching import match_nuclei_to_cells, match_regions
from cell_compartments.regions import Region, RegionGroup, Role


SHAPE = (100, 100)


def square(r0, c0, size):
    mask = np.zeros(SHAPE, dtype=bool)
    mask[r0:r0 + size, c0:c0 + size] = True
    return Region.from_mask(mask)


def test_match_in_order():
    nuclei = [square(12, 12, 4), square(12, 52, 4)]
    cells = [square(10, 10, 10), square(10, 50, 10)]

    assert match_nuclei_to_cells(nuclei, cells) == [0, 1]


def test_match_wraps_around_cell_list():
    """With offset 0 the scan starts at cell n and wraps to find earlier cells."""
    nuclei = [square(12, 52, 4), square(12, 12, 4)]
    cells = [square(10, 10, 10), square(10, 50, 10)]

    assert match_nuclei_to_cells(nuclei, cells, offset=0) == [1, 0]


def test_each_cell_matched_once():
    """Two nuclei in one cell: only the first one gets the cell."""
    nuclei = [square(12, 12, 3), square(15, 15, 3)]
    cells = [square(10, 10, 10)]

    assert match_nuclei_to_cells(nuclei, cells) == [0, None]


def test_nucleus_crossing_cell_border_is_unmatched():
    nuclei = [square(18, 18, 5)]
    cells = [square(10, 10, 10)]

    assert match_nuclei_to_cells(nuclei, cells) == [None]


def test_no_cells():
    assert match_nuclei_to_cells([square(10, 10, 3)], []) == [None]


def test_match_regions_tags_pairs_and_drops_orphans():
    """Matched regions are tagged by nucleus order; orphans are deleted."""
    context = PipelineContext(image_name='test', shape=SHAPE, verbose=False)
    context.regions.extend([
        square(12, 12, 4),   # nucleus 1, inside the first cell
        square(60, 60, 4),   # nucleus 2, no cell
        square(12, 52, 4),   # nucleus 3, inside the second cell
    ])
    context.regions.extend([
        square(10, 10, 10),
        square(10, 50, 10),
        square(80, 10, 10),  # cell without nucleus
    ])
    context.counts.nuclei = 3
    context.counts.cells = 3

    matched = match_regions(context)

    assert matched == 2
    assert context.unmatched_nuclei == 1
    assert context.unmatched_cells == 1
    assert len(context.regions) == 4
    assert context.counts.nuclei == 2
    assert context.counts.cells == 2
    assert len(context.regions.select(RegionGroup.UNMATCHED)) == 0

    labels = sorted(r.label for r in context.regions)
    assert labels == ['1:ce', '1:nu', '3:ce', '3:nu']

    by_label = {r.label: r for r in context.regions}
    for pair_id in (1, 3):
        nucleus = by_label[f"{pair_id}:nu"]
        cell = by_label[f"{pair_id}:ce"]
        assert nucleus.tag.role == Role.NUCLEUS
        assert cell.tag.role == Role.CELL
        assert cell.contains(nucleus)


def test_match_regions_nothing_to_match():
    context = PipelineContext(image_name='test', shape=SHAPE, verbose=False)
    context.regions.add(square(12, 12, 4))
    context.counts.nuclei = 1

    assert match_regions(context) == 0
    assert len(context.regions) == 0
    assert context.unmatched_nuclei == 1


def test_match_regions_no_nuclei_drops_all_cells():
    """Cells with no nucleus to pair with are all discarded."""
    context = PipelineContext(image_name='test', shape=SHAPE, verbose=False)
    context.regions.extend([square(10, 10, 10), square(10, 50, 10)])
    context.counts.nuclei = 0
    context.counts.cells = 2

    assert match_regions(context) == 0
    assert context.unmatched_nuclei == 0
    assert context.unmatched_cells == 2
    assert len(context.regions) == 0
    assert context.counts.cells == 0
