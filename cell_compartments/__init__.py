"""
Cell compartment segmentation for multi-channel fluorescence images.

This package provides tools for:
- Nuclei and cell-matrix segmentation from classifier probability maps
- Pairing every nucleus with the cell that contains it
- Deriving membrane, cytoplasm or cellular-matrix compartments per cell
- Per-channel intensity measurements for every compartment
"""

__version__ = "0.1.0"
