"""
Pairing of nuclei with the cells that contain them.

Nuclei and cells come out of their segmentation stages in scan order, so
the n-th nucleus usually lies in a cell whose index is close to n. The scan
for each nucleus therefore starts ``offset`` cells before n and wraps around
the cell list; every cell is still tried once, so no containing cell is
ever missed. This is a fast heuristic, not an optimal assignment.

Worst case: O(N * M) containment tests for N nuclei and M cells.
"""

from typing import List, Optional, Sequence

import numpy as np

from cell_compartments.context import PipelineContext
from cell_compartments.regions import Counts, PairTag, Region, RegionGroup, Role


DEFAULT_OFFSET = 100


def match_nuclei_to_cells(
    nuclei: Sequence[Region],
    cells: Sequence[Region],
    offset: int = DEFAULT_OFFSET
) -> List[Optional[int]]:
    """
    Find, for each nucleus, the first unconsumed cell that fully contains it.

    Parameters
    ----------
    nuclei : sequence of Region
        Nuclei in detection order
    cells : sequence of Region
        Cells in detection order
    offset : int
        The scan for nucleus n starts at cell ``max(0, n - offset)``

    Returns
    -------
    list
        One entry per nucleus: index into ``cells`` or None if unmatched.
        No cell index appears twice.
    """
    n_cells = len(cells)
    consumed = np.zeros(n_cells, dtype=bool)
    matches: List[Optional[int]] = []

    for n, nucleus in enumerate(nuclei):
        match = None
        start = max(0, n - offset)
        for step in range(n_cells):
            c = (start + step) % n_cells
            if consumed[c]:
                continue
            if cells[c].contains(nucleus):
                consumed[c] = True
                match = c
                break
        matches.append(match)

    return matches


def match_regions(context: PipelineContext, offset: int = DEFAULT_OFFSET) -> int:
    """
    Match the nuclei and cells registered in ``context`` and drop the rest.

    The first ``counts.nuclei`` live regions are the nuclei and the next
    ``counts.cells`` are the cells. Matched pairs are tagged
    ``PairTag(n + 1, ...)`` where n is the nucleus index; everything left
    in the UNMATCHED group is deleted afterwards.

    Returns
    -------
    int
        Number of matched pairs
    """
    live = context.regions.indices()
    n_nuclei = context.counts.nuclei
    n_cells = context.counts.cells
    nucleus_indices = live[:n_nuclei]
    cell_indices = live[n_nuclei:n_nuclei + n_cells]

    nuclei = [context.regions[i] for i in nucleus_indices]
    cells = [context.regions[i] for i in cell_indices]
    matches = match_nuclei_to_cells(nuclei, cells, offset=offset)

    matched = 0
    for n, c in enumerate(matches):
        if c is None:
            continue
        pair_id = n + 1
        nucleus_index = nucleus_indices[n]
        cell_index = cell_indices[c]
        context.regions.replace(
            nucleus_index,
            context.regions[nucleus_index].relabel(
                RegionGroup.NUCLEUS, PairTag(pair_id, Role.NUCLEUS)
            )
        )
        context.regions.replace(
            cell_index,
            context.regions[cell_index].relabel(
                RegionGroup.CELL, PairTag(pair_id, Role.CELL)
            )
        )
        matched += 1

    context.unmatched_nuclei = n_nuclei - matched
    context.unmatched_cells = n_cells - matched
    context.regions.delete_group(RegionGroup.UNMATCHED)
    context.regions.compact()
    context.counts = Counts.from_collection(context.regions)

    context.log(f"    Matched pairs: {matched}")
    context.log(f"    Unmatched nuclei: {context.unmatched_nuclei}, "
                f"unmatched cells: {context.unmatched_cells}")
    return matched
