"""
Threshold and classifier capabilities injected into the pipeline.

The pipeline never talks to a user interface or a trained model directly.
It asks a ThresholdProvider for (lower, upper) bounds and a
ClassifierProvider for probability maps. The providers here are the
automated ones; an interactive application supplies its own subclasses
and raises RunCancelled when the user backs out.
"""

from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
from skimage import filters, io

from cell_compartments.config import check_threshold
from cell_compartments.exceptions import StageError
from cell_compartments.io_utils import median_normalize
from cell_compartments.morphology import PROBABILITY_MAX


NUCLEI_STAGE = 'nuclei'
CELL_STAGE = 'cells'


class ThresholdProvider:
    """Supplies (lower, upper) threshold bounds for a stage."""

    def get_threshold(self, stage: str, plane: np.ndarray) -> Tuple[float, float]:
        raise NotImplementedError


class FixedThresholdProvider(ThresholdProvider):
    """Returns the same bounds for every image."""

    def __init__(self, thresholds: Dict[str, Tuple[float, float]]):
        for stage, bounds in thresholds.items():
            check_threshold(bounds, f"{stage} threshold")
        self.thresholds = dict(thresholds)

    def get_threshold(self, stage: str, plane: np.ndarray) -> Tuple[float, float]:
        if stage not in self.thresholds:
            raise StageError(f"No threshold configured for stage '{stage}'", stage=stage)
        return self.thresholds[stage]


class OtsuThresholdProvider(ThresholdProvider):
    """
    Otsu lower bound and plane maximum upper bound for the stages in
    ``stages``; other stages are delegated to ``fallback``.
    """

    def __init__(
        self,
        fallback: ThresholdProvider,
        stages: Sequence[str] = (NUCLEI_STAGE,)
    ):
        self.fallback = fallback
        self.stages = set(stages)

    def get_threshold(self, stage: str, plane: np.ndarray) -> Tuple[float, float]:
        if stage not in self.stages:
            return self.fallback.get_threshold(stage, plane)

        plane = np.asarray(plane, dtype=np.float64)
        upper = float(plane.max())
        if plane.min() == upper:
            # Flat plane: nothing to separate
            return self.fallback.get_threshold(stage, plane)
        return float(filters.threshold_otsu(plane)), upper


class ClassifierProvider:
    """Turns channel images into a probability map on the 0..32767 scale."""

    def classify(
        self,
        stack: np.ndarray,
        channels: Sequence[int],
        target: str,
        image_name: Optional[str] = None
    ) -> np.ndarray:
        raise NotImplementedError


class IntensityClassifier(ClassifierProvider):
    """
    Uses normalized channel intensity as the probability map.

    Each selected channel is scaled between its ``low`` and ``high``
    percentiles; several channels are combined by per-pixel maximum.
    Suitable for clean fluorescence stains and for tests.
    """

    def __init__(
        self,
        low_percentile: float = 1.0,
        high_percentile: float = 99.8,
        normalize_background: bool = False
    ):
        self.low_percentile = low_percentile
        self.high_percentile = high_percentile
        self.normalize_background = normalize_background

    def _scale(self, plane: np.ndarray) -> np.ndarray:
        plane = np.asarray(plane, dtype=np.float64)
        if self.normalize_background:
            plane = median_normalize(plane)
        low, high = np.percentile(plane, [self.low_percentile, self.high_percentile])
        if high <= low:
            return np.zeros_like(plane)
        return np.clip((plane - low) / (high - low), 0.0, 1.0) * PROBABILITY_MAX

    def classify(self, stack, channels, target, image_name=None):
        if not channels:
            raise StageError(f"No channels selected for {target} classification",
                             image=image_name, stage=f"{target} classification")
        planes = [self._scale(stack[c]) for c in channels]
        return np.maximum.reduce(planes)


class ProbabilityMapClassifier(ClassifierProvider):
    """
    Reads probability maps produced by an external classifier.

    Maps are looked up as ``<directory>/<image_name>_<target>_probabilities.tif``.
    A missing map is a stage failure for that image.
    """

    def __init__(self, directory: Union[str, Path], suffix: str = '_probabilities.tif'):
        self.directory = Path(directory)
        self.suffix = suffix

    def path_for(self, image_name: str, target: str) -> Path:
        return self.directory / f"{image_name}_{target}{self.suffix}"

    def classify(self, stack, channels, target, image_name=None):
        if image_name is None:
            raise StageError("Probability maps are looked up by image name",
                             stage=f"{target} classification")
        path = self.path_for(image_name, target)
        if not path.exists():
            raise StageError(f"Probability map not found: {path}",
                             image=image_name, stage=f"{target} classification")

        try:
            probability = np.asarray(io.imread(str(path)), dtype=np.float64)
        except (OSError, ValueError) as e:
            raise StageError(f"Cannot read probability map {path.name}: {e}",
                             image=image_name, stage=f"{target} classification") from e
        if probability.ndim == 3:
            # Multi-class output: first plane is the foreground class
            probability = probability[0]
        if probability.shape != stack.shape[1:]:
            raise StageError(
                f"Probability map {path.name} has shape {probability.shape}, "
                f"expected {stack.shape[1:]}",
                image=image_name, stage=f"{target} classification"
            )
        return probability
