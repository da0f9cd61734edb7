"""
Per-image run state passed explicitly through every pipeline stage.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from cell_compartments.regions import Counts, RegionCollection


@dataclass
class PipelineContext:
    """
    Mutable state of one image run.

    Stages append to ``regions``, keep ``counts`` in step with what they
    added or removed, and report progress through ``log`` so that the
    console output and the saved run log are identical.
    """
    image_name: str
    shape: Tuple[int, int]
    regions: RegionCollection = field(default_factory=RegionCollection)
    counts: Counts = field(default_factory=Counts)
    unmatched_nuclei: int = 0
    unmatched_cells: int = 0
    skipped_pairs: int = 0
    messages: List[str] = field(default_factory=list)
    verbose: bool = True

    def log(self, message: str) -> None:
        self.messages.append(message)
        if self.verbose:
            print(message)

    def summary(self) -> Dict[str, object]:
        return {
            'image': self.image_name,
            'nuclei': self.counts.nuclei,
            'cells': self.counts.cells,
            'matrix_or_membrane': self.counts.matrix_or_membrane,
            'cytoplasm': self.counts.cytoplasm,
            'unmatched_nuclei': self.unmatched_nuclei,
            'unmatched_cells': self.unmatched_cells,
            'skipped_pairs': self.skipped_pairs,
        }

    def clear(self) -> None:
        self.regions.clear()
