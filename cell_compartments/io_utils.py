"""
I/O utilities for loading multi-channel images and naming output files.

This module brings every input into a (channels, height, width) stack and
derives the per-image output folder where all artifacts of a run are
written.
"""

from pathlib import Path
from typing import Dict, List, Union

import numpy as np
from skimage import io


IMAGE_EXTENSIONS = ['.tif', '.tiff', '.png', '.jpg', '.jpeg']

# Artifact name suffixes, appended to the image base name
OUTPUT_SUFFIXES = {
    'rois': '_rois.zip',
    'measurements': '_measurements.csv',
    'wide': '_measurements_wide.csv',
    'labels': '_compartments.tif',
    'log': '_log.txt',
    'overlay': '_overlay.png'
}


def z_project(stack: np.ndarray, axis: int = 0) -> np.ndarray:
    """Maximum-intensity projection along ``axis``."""
    return np.asarray(stack).max(axis=axis)


def median_normalize(plane: np.ndarray) -> np.ndarray:
    """Subtract the plane median as background and clip at zero."""
    plane = np.asarray(plane, dtype=np.float64)
    return np.clip(plane - np.median(plane), 0, None)


def to_channel_stack(image: np.ndarray) -> np.ndarray:
    """
    Reorder an image array into a (channels, height, width) stack.

    Parameters
    ----------
    image : np.ndarray
        2D grayscale, 3D channel-first or channel-last, or 4D
        (z, channels, height, width) image

    Returns
    -------
    np.ndarray
        3D array with channels on the first axis. Z-stacks are max-projected.
    """
    image = np.asarray(image)
    if image.ndim == 2:
        return image[np.newaxis]
    if image.ndim == 3:
        # Channel-last images (RGB, small channel counts) have a short last axis
        if image.shape[-1] <= 4 and image.shape[0] > 4:
            return np.moveaxis(image, -1, 0)
        return image
    if image.ndim == 4:
        return z_project(image, axis=0)
    raise ValueError(f"Unsupported image dimensions: {image.shape}")


def load_image_stack(image_path: Union[str, Path]) -> np.ndarray:
    """
    Load an image file as a (channels, height, width) stack.

    Raises
    ------
    FileNotFoundError
        If the image file does not exist.
    """
    image_path = Path(image_path)
    if not image_path.exists():
        raise FileNotFoundError(f"Image file not found: {image_path}")
    return to_channel_stack(io.imread(str(image_path)))


def find_images(directory: Union[str, Path]) -> List[Path]:
    """All image files directly inside ``directory``, sorted by name."""
    directory = Path(directory)
    return sorted(
        p for p in directory.iterdir()
        if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
    )


def image_base_name(image_path: Union[str, Path]) -> str:
    return Path(image_path).stem


def output_paths(image_path: Union[str, Path], output_root: Union[str, Path]) -> Dict[str, Path]:
    """
    Paths of every artifact for one image.

    All artifacts go into ``<output_root>/<base>/`` and are named
    ``<base><suffix>``; re-running on the same image overwrites them.
    """
    base = image_base_name(image_path)
    folder = Path(output_root) / base
    paths = {key: folder / f"{base}{suffix}" for key, suffix in OUTPUT_SUFFIXES.items()}
    paths['folder'] = folder
    return paths
