"""
Region primitive and the region collection shared by all pipeline stages.

A Region is a pixel mask cropped to its bounding box plus the absolute
(row, col) origin of that box. Masks are always tight: the first and last
rows and columns of ``mask`` contain at least one foreground pixel. Geometry
operations (contraction, subtraction) return new Regions so that a region's
geometry is only ever replaced as a whole.

RegionCollection stores regions in an arena: indices are stable for the
lifetime of a stage, removal leaves a tombstone, and ``compact()`` /
``sort()`` renumber once the stage is done.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Iterator, List, NamedTuple, Optional, Tuple

import numpy as np
from scipy import ndimage


class RegionGroup(IntEnum):
    """Group numbers, also used as pixel values of the rendered label image."""
    UNMATCHED = 0
    NUCLEUS = 1
    CELL = 2
    MATRIX_OR_MEMBRANE = 3
    CYTOPLASM = 4


class Role(Enum):
    NUCLEUS = 'nu'
    CELL = 'ce'
    MEMBRANE = 'me'
    CYTOPLASM = 'cy'
    MATRIX = 'ma'


class PairTag(NamedTuple):
    """Identifies which matched pair a region belongs to and its role in it."""
    pair_id: int
    role: Role


class Region:
    """
    A region of interest stored as a cropped boolean mask.

    Parameters
    ----------
    mask : np.ndarray
        Tight boolean mask of the region (cropped to its bounding box)
    origin : tuple
        Absolute (row, col) of ``mask[0, 0]``
    group : RegionGroup
        Current group of the region
    tag : PairTag, optional
        Pair identifier assigned by the matcher
    """

    __slots__ = ('mask', 'origin', 'group', 'tag')

    def __init__(
        self,
        mask: np.ndarray,
        origin: Tuple[int, int] = (0, 0),
        group: RegionGroup = RegionGroup.UNMATCHED,
        tag: Optional[PairTag] = None
    ):
        mask = np.asarray(mask, dtype=bool)
        if mask.ndim != 2 or not mask.any():
            raise ValueError("Region mask must be a non-empty 2D array")
        self.mask = mask
        self.origin = (int(origin[0]), int(origin[1]))
        self.group = RegionGroup(group)
        self.tag = tag

    @classmethod
    def from_mask(
        cls,
        mask: np.ndarray,
        origin: Tuple[int, int] = (0, 0),
        group: RegionGroup = RegionGroup.UNMATCHED,
        tag: Optional[PairTag] = None
    ) -> Optional["Region"]:
        """
        Build a Region from a mask that may carry empty margins.

        Returns None if the mask has no foreground pixel.
        """
        mask = np.asarray(mask, dtype=bool)
        rows = np.flatnonzero(mask.any(axis=1))
        if rows.size == 0:
            return None
        cols = np.flatnonzero(mask.any(axis=0))
        r0, r1 = rows[0], rows[-1] + 1
        c0, c1 = cols[0], cols[-1] + 1
        return cls(
            mask[r0:r1, c0:c1].copy(),
            (origin[0] + r0, origin[1] + c0),
            group=group,
            tag=tag
        )

    def __repr__(self) -> str:
        return (f"Region(label={self.label!r}, group={self.group.name}, "
                f"bbox={self.bbox}, area={self.area})")

    # Geometry queries

    @property
    def bbox(self) -> Tuple[int, int, int, int]:
        """(min_row, min_col, max_row, max_col), max exclusive."""
        r0, c0 = self.origin
        h, w = self.mask.shape
        return r0, c0, r0 + h, c0 + w

    @property
    def area(self) -> int:
        return int(np.count_nonzero(self.mask))

    @property
    def centroid(self) -> Tuple[float, float]:
        rows, cols = np.nonzero(self.mask)
        return float(rows.mean() + self.origin[0]), float(cols.mean() + self.origin[1])

    @property
    def label(self) -> str:
        """Display label ``"<pair_id>:<role>"``, empty for unmatched regions."""
        if self.tag is None:
            return ''
        return f"{self.tag.pair_id}:{self.tag.role.value}"

    def pixels(self) -> Tuple[np.ndarray, np.ndarray]:
        """Absolute (rows, cols) of every pixel in the region."""
        rows, cols = np.nonzero(self.mask)
        return rows + self.origin[0], cols + self.origin[1]

    def to_mask(self, shape: Tuple[int, int]) -> np.ndarray:
        """Full-size boolean mask; parts outside ``shape`` are clipped."""
        full = np.zeros(shape, dtype=bool)
        sl_full, sl_own = _overlap_slices((0, 0, shape[0], shape[1]), self.bbox)
        if sl_full is not None:
            full[sl_full] = self.mask[sl_own]
        return full

    def corner_inside(self, other: "Region") -> bool:
        """Fast reject: is the top-left bbox corner of ``other`` inside this bbox?"""
        r0, c0, r1, c1 = self.bbox
        orow, ocol = other.origin
        return r0 <= orow < r1 and c0 <= ocol < c1

    def contains(self, other: "Region") -> bool:
        """True if every pixel of ``other`` is a pixel of this region."""
        if not self.corner_inside(other):
            return False
        sl_own, sl_other = _overlap_slices(self.bbox, other.bbox)
        if sl_own is None:
            return False
        # Every pixel of other outside the overlap window is outside self
        if np.count_nonzero(other.mask[sl_other]) != other.area:
            return False
        return bool(np.all(self.mask[sl_own] | ~other.mask[sl_other]))

    def intersects(self, other: "Region") -> bool:
        sl_own, sl_other = _overlap_slices(self.bbox, other.bbox)
        if sl_own is None:
            return False
        return bool(np.any(self.mask[sl_own] & other.mask[sl_other]))

    # Geometry operations (all return new regions)

    def relabel(self, group: RegionGroup, tag: Optional[PairTag] = None) -> "Region":
        return Region(self.mask, self.origin, group=group, tag=tag)

    def contract(self, amount: float) -> "Region":
        """
        Shrink the region by ``amount`` pixels.

        A pixel survives if its Euclidean distance to the background exceeds
        ``amount``. Contraction never deletes a region: if nothing would
        survive, the region is returned unchanged.
        """
        if amount <= 0:
            return self
        distance = ndimage.distance_transform_edt(np.pad(self.mask, 1))[1:-1, 1:-1]
        shrunk = Region.from_mask(distance > amount, self.origin, self.group, self.tag)
        if shrunk is None:
            return self
        return shrunk

    def subtract(self, *others: "Region") -> Optional["Region"]:
        """Pixels of this region not in any of ``others``; None if nothing is left."""
        remaining = self.mask.copy()
        for other in others:
            if other is None:
                continue
            sl_own, sl_other = _overlap_slices(self.bbox, other.bbox)
            if sl_own is not None:
                remaining[sl_own] &= ~other.mask[sl_other]
        return Region.from_mask(remaining, self.origin, self.group, self.tag)


def _overlap_slices(
    bbox_a: Tuple[int, int, int, int],
    bbox_b: Tuple[int, int, int, int]
):
    """
    Slices into two boxes covering their common window, or (None, None)
    if the boxes do not overlap.
    """
    r0 = max(bbox_a[0], bbox_b[0])
    c0 = max(bbox_a[1], bbox_b[1])
    r1 = min(bbox_a[2], bbox_b[2])
    c1 = min(bbox_a[3], bbox_b[3])
    if r0 >= r1 or c0 >= c1:
        return None, None
    sl_a = (slice(r0 - bbox_a[0], r1 - bbox_a[0]), slice(c0 - bbox_a[1], c1 - bbox_a[1]))
    sl_b = (slice(r0 - bbox_b[0], r1 - bbox_b[0]), slice(c0 - bbox_b[1], c1 - bbox_b[1]))
    return sl_a, sl_b


class RegionCollection:
    """
    Ordered arena of regions.

    ``add`` returns an index that stays valid until the next ``compact`` or
    ``sort``; ``remove`` and ``delete_group`` only tombstone slots.
    """

    def __init__(self):
        self._slots: List[Optional[Region]] = []

    def __len__(self) -> int:
        return sum(1 for region in self._slots if region is not None)

    def __iter__(self) -> Iterator[Region]:
        return (region for region in self._slots if region is not None)

    def __getitem__(self, index: int) -> Region:
        region = self._slots[index]
        if region is None:
            raise KeyError(f"Region {index} has been removed")
        return region

    def _check_live(self, index: int) -> None:
        if self._slots[index] is None:
            raise KeyError(f"Region {index} has been removed")

    def add(self, region: Region) -> int:
        self._slots.append(region)
        return len(self._slots) - 1

    def extend(self, regions) -> List[int]:
        return [self.add(region) for region in regions]

    def replace(self, index: int, region: Region) -> None:
        """Swap the region stored at ``index`` for ``region``."""
        self._check_live(index)
        self._slots[index] = region

    def remove(self, index: int) -> None:
        self._check_live(index)
        self._slots[index] = None

    def indices(self, group: Optional[RegionGroup] = None) -> List[int]:
        """Live indices in insertion order, optionally restricted to one group."""
        return [
            i for i, region in enumerate(self._slots)
            if region is not None and (group is None or region.group == group)
        ]

    def select(self, group: RegionGroup) -> List[Region]:
        return [self._slots[i] for i in self.indices(group)]

    def delete_group(self, group: RegionGroup) -> int:
        """Tombstone every region of ``group``; returns how many were removed."""
        doomed = self.indices(group)
        for i in doomed:
            self._slots[i] = None
        return len(doomed)

    def compact(self) -> None:
        self._slots = [region for region in self._slots if region is not None]

    def sort(self) -> None:
        """Compact, then order by group, pair id and insertion order."""
        self.compact()
        self._slots = sorted(self._slots, key=_sort_key)

    def clear(self) -> None:
        self._slots = []


def _sort_key(region: Region):
    pair_id = region.tag.pair_id if region.tag is not None else 0
    return int(region.group), pair_id


@dataclass
class Counts:
    """Per-stage region counts threaded through the pipeline."""
    nuclei: int = 0
    cells: int = 0
    matrix_or_membrane: int = 0
    cytoplasm: int = 0

    @classmethod
    def from_collection(cls, regions: RegionCollection) -> "Counts":
        return cls(
            nuclei=len(regions.indices(RegionGroup.NUCLEUS)),
            cells=len(regions.indices(RegionGroup.CELL)),
            matrix_or_membrane=len(regions.indices(RegionGroup.MATRIX_OR_MEMBRANE)),
            cytoplasm=len(regions.indices(RegionGroup.CYTOPLASM)),
        )
