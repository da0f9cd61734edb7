"""
Pipeline parameters, config file loading and validation.

All lengths are in microns and all areas in square microns unless the name
says otherwise; ``pixel_size_um`` converts them to pixel units. Probability
planes use the 0..32767 convention, so thresholds are given on that scale
(the cell guidance image additionally carries nuclei at 65535).
"""

import json
from dataclasses import dataclass, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from cell_compartments.exceptions import ConfigurationError


# Default pipeline parameters
DEFAULT_PARAMS = {
    'pixel_size_um': 1.0,  # Calibration: microns per pixel
    'nuclei_channel': 0,  # Channel fed to the nuclei classifier (mandatory)
    'matrix_channel': None,  # Channel fed to the cell-matrix classifier (None = blank plane)
    'measure_channels': None,  # Channels to measure (None = all channels)
    'nuclei_threshold': (16384.0, 32767.0),  # (lower, upper) on the nuclei probability plane
    'cell_threshold': (16384.0, 65535.0),  # (lower, upper) on the cell guidance image
    'exclude_edges': True,  # Drop nuclei touching the image border
    'fill_holes': True,  # Fill interior holes of the nuclei mask before splitting
    'min_nucleus_size': 10.0,  # Minimum nucleus area (um^2)
    'min_cell_size': 20.0,  # Minimum cell area (um^2)
    'cell_expansion': 5.0,  # Minimum radius grown around every nucleus (um)
    'cell_expansion_limit': 30.0,  # Maximum radius a cell may reach from its nucleus (um)
    'nuclei_contraction': 0.0,  # Contraction applied to nuclei before subtraction (um)
    'cell_matrix_contraction': 0.0,  # Contraction applied to cells before subtraction (um)
    'membrane_width': 0.0,  # Membrane band width (um); 0 = cell minus nucleus only
    'match_offset': 100,  # Index offset where the matcher starts its scan
    'normalize_background': False,  # Median-normalize channels before classification
}


@dataclass
class PipelineConfig:
    """
    Parameters for one batch run. Build with ``PipelineConfig()`` for the
    defaults, ``PipelineConfig.from_dict()`` or ``load_config()``.
    """

    pixel_size_um: float = DEFAULT_PARAMS['pixel_size_um']
    nuclei_channel: Optional[int] = DEFAULT_PARAMS['nuclei_channel']
    matrix_channel: Optional[int] = DEFAULT_PARAMS['matrix_channel']
    measure_channels: Optional[List[int]] = DEFAULT_PARAMS['measure_channels']
    nuclei_threshold: Tuple[float, float] = DEFAULT_PARAMS['nuclei_threshold']
    cell_threshold: Tuple[float, float] = DEFAULT_PARAMS['cell_threshold']
    exclude_edges: bool = DEFAULT_PARAMS['exclude_edges']
    fill_holes: bool = DEFAULT_PARAMS['fill_holes']
    min_nucleus_size: float = DEFAULT_PARAMS['min_nucleus_size']
    min_cell_size: float = DEFAULT_PARAMS['min_cell_size']
    cell_expansion: float = DEFAULT_PARAMS['cell_expansion']
    cell_expansion_limit: float = DEFAULT_PARAMS['cell_expansion_limit']
    nuclei_contraction: float = DEFAULT_PARAMS['nuclei_contraction']
    cell_matrix_contraction: float = DEFAULT_PARAMS['cell_matrix_contraction']
    membrane_width: float = DEFAULT_PARAMS['membrane_width']
    match_offset: int = DEFAULT_PARAMS['match_offset']
    normalize_background: bool = DEFAULT_PARAMS['normalize_background']

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> "PipelineConfig":
        """
        Build a config from a (partial) parameter dictionary.

        Unknown keys are rejected so a typo in a config file cannot
        silently fall back to a default.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(params) - known)
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {', '.join(unknown)}")

        values = dict(params)
        for key in ('nuclei_threshold', 'cell_threshold'):
            if key in values and values[key] is not None:
                values[key] = tuple(float(v) for v in values[key])
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def updated(self, **overrides) -> "PipelineConfig":
        """Return a copy with the non-None overrides applied."""
        params = self.to_dict()
        params.update({k: v for k, v in overrides.items() if v is not None})
        return PipelineConfig.from_dict(params)

    def validate(self) -> "PipelineConfig":
        """
        Check parameter consistency.

        Raises
        ------
        ConfigurationError
            On the first invalid parameter found.
        """
        if self.nuclei_channel is None:
            raise ConfigurationError("A nuclei channel is required")
        if self.pixel_size_um <= 0:
            raise ConfigurationError(
                f"pixel_size_um must be positive, got {self.pixel_size_um}"
            )

        for name in ('nuclei_threshold', 'cell_threshold'):
            check_threshold(getattr(self, name), name)

        for name in ('min_nucleus_size', 'min_cell_size', 'cell_expansion',
                     'cell_expansion_limit', 'nuclei_contraction',
                     'cell_matrix_contraction', 'membrane_width'):
            value = getattr(self, name)
            if value < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {value}")

        # No clamping rule: a minimum radius above the cap is contradictory
        if self.cell_expansion > self.cell_expansion_limit:
            raise ConfigurationError(
                f"cell_expansion ({self.cell_expansion}) exceeds "
                f"cell_expansion_limit ({self.cell_expansion_limit})"
            )
        if self.match_offset < 0:
            raise ConfigurationError(f"match_offset must be >= 0, got {self.match_offset}")
        return self

    def to_pixels(self, length_um: float) -> float:
        """Convert a calibrated length to pixels."""
        return length_um / self.pixel_size_um

    def to_pixel_area(self, area_um2: float) -> float:
        """Convert a calibrated area to pixels."""
        return area_um2 / (self.pixel_size_um ** 2)


def check_threshold(threshold: Tuple[float, float], name: str = 'threshold') -> None:
    """Raise ConfigurationError unless ``threshold`` is an ordered (lower, upper) pair."""
    try:
        lower, upper = threshold
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a (lower, upper) pair, got {threshold!r}")
    if lower > upper:
        raise ConfigurationError(f"{name}: lower bound {lower} exceeds upper bound {upper}")


def load_config(path: Union[str, Path], **overrides) -> PipelineConfig:
    """
    Load a JSON config file and merge it over the defaults.

    Parameters
    ----------
    path : str or Path
        JSON file holding a flat object of parameter names to values
    **overrides
        Values that take precedence over the file (None values are ignored)

    Returns
    -------
    PipelineConfig
        Validated configuration
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    with open(path, 'r') as f:
        try:
            params = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid config file {path}: {e}")

    if not isinstance(params, dict):
        raise ConfigurationError(f"Config file {path} must contain a JSON object")

    config = PipelineConfig.from_dict(params).updated(**overrides)
    return config.validate()
