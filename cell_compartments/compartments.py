"""
Derivation of membrane, cytoplasm and cellular-matrix compartments.

For every matched nucleus/cell pair:
- membrane = cell - nucleus - (cell contracted by the membrane width)
- cytoplasm = cell - nucleus - membrane
or, with a membrane width of 0:
- matrix = cell - nucleus

Derived regions are always subsets of their cell. An empty derivation is a
normal outcome: the region is simply not registered.
"""

from typing import Dict, Tuple

from cell_compartments.context import PipelineContext
from cell_compartments.exceptions import ConfigurationError
from cell_compartments.regions import Counts, PairTag, RegionGroup, Role


def _pairs_by_id(context: PipelineContext) -> Dict[int, Tuple[int, int]]:
    """Map pair id -> (nucleus index, cell index) for every complete pair."""
    nuclei = {}
    cells = {}
    for i in context.regions.indices(RegionGroup.NUCLEUS):
        nuclei[context.regions[i].tag.pair_id] = i
    for i in context.regions.indices(RegionGroup.CELL):
        cells[context.regions[i].tag.pair_id] = i
    return {pid: (nuclei[pid], cells[pid]) for pid in nuclei if pid in cells}


def build_compartments(
    context: PipelineContext,
    nuclei_contraction: float = 0.0,
    cell_matrix_contraction: float = 0.0,
    membrane_width: float = 0.0
) -> Counts:
    """
    Add derived compartments for every matched pair in ``context``.

    Parameters
    ----------
    context : PipelineContext
        Run state holding matched nuclei and cells
    nuclei_contraction : float
        Contraction (pixels) applied to each nucleus in place
    cell_matrix_contraction : float
        Contraction (pixels) applied to each cell in place
    membrane_width : float
        Membrane band width (pixels); 0 derives a single matrix region

    Returns
    -------
    Counts
        Updated region counts (also stored on the context)
    """
    for name, value in (('nuclei_contraction', nuclei_contraction),
                        ('cell_matrix_contraction', cell_matrix_contraction),
                        ('membrane_width', membrane_width)):
        if value < 0:
            raise ConfigurationError(f"{name} must be >= 0, got {value}")

    regions = context.regions
    pairs = _pairs_by_id(context)
    skipped = 0

    # Most recent pair first
    for pair_id in sorted(pairs, reverse=True):
        nucleus_index, cell_index = pairs[pair_id]

        nucleus = regions[nucleus_index].contract(nuclei_contraction)
        regions.replace(nucleus_index, nucleus)
        cell = regions[cell_index].contract(cell_matrix_contraction)
        regions.replace(cell_index, cell)

        if cell.area <= nucleus.area:
            skipped += 1
            continue

        if membrane_width > 0:
            shrunk = cell.contract(membrane_width)
            membrane = cell.subtract(nucleus, shrunk)
            if membrane is None:
                continue
            regions.add(membrane.relabel(
                RegionGroup.MATRIX_OR_MEMBRANE, PairTag(pair_id, Role.MEMBRANE)
            ))
            cytoplasm = cell.subtract(nucleus, membrane)
            if cytoplasm is None:
                continue
            regions.add(cytoplasm.relabel(
                RegionGroup.CYTOPLASM, PairTag(pair_id, Role.CYTOPLASM)
            ))
        else:
            matrix = cell.subtract(nucleus)
            if matrix is None:
                continue
            regions.add(matrix.relabel(
                RegionGroup.MATRIX_OR_MEMBRANE, PairTag(pair_id, Role.MATRIX)
            ))

    regions.sort()
    context.skipped_pairs = skipped
    context.counts = Counts.from_collection(regions)

    if membrane_width > 0:
        context.log(f"    Membranes: {context.counts.matrix_or_membrane}, "
                    f"cytoplasms: {context.counts.cytoplasm}")
    else:
        context.log(f"    Cellular matrix regions: {context.counts.matrix_or_membrane}")
    if skipped:
        context.log(f"    Pairs skipped after contraction: {skipped}")
    return context.counts
