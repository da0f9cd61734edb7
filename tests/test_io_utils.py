"""
Unit tests for image loading and output naming.
"""

import numpy as np
import pytest
from skimage import io

from cell_compartments.io_utils import (
    find_images, image_base_name, load_image_stack, median_normalize,
    output_paths, to_channel_stack
)


def test_to_channel_stack_grayscale():
    assert to_channel_stack(np.zeros((30, 40))).shape == (1, 30, 40)


def test_to_channel_stack_channel_last():
    assert to_channel_stack(np.zeros((30, 40, 3))).shape == (3, 30, 40)


def test_to_channel_stack_channel_first():
    assert to_channel_stack(np.zeros((2, 30, 40))).shape == (2, 30, 40)


def test_to_channel_stack_projects_z():
    stack = np.zeros((4, 2, 10, 10))
    stack[2, 1, 5, 5] = 9
    projected = to_channel_stack(stack)

    assert projected.shape == (2, 10, 10)
    assert projected[1, 5, 5] == 9


def test_to_channel_stack_rejects_1d():
    with pytest.raises(ValueError):
        to_channel_stack(np.zeros(10))


def test_median_normalize():
    plane = np.array([[1.0, 2.0, 3.0, 10.0, 2.0]])
    assert median_normalize(plane).tolist() == [[0.0, 0.0, 1.0, 8.0, 0.0]]


def test_load_image_stack(tmp_path):
    image = np.zeros((2, 20, 20), dtype=np.uint16)
    image[1, 5, 5] = 100
    path = tmp_path / 'sample.tif'
    io.imsave(str(path), image, check_contrast=False)

    stack = load_image_stack(path)

    assert stack.shape == (2, 20, 20)
    assert stack[1, 5, 5] == 100


def test_load_image_stack_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_image_stack(tmp_path / 'missing.tif')


def test_find_images(tmp_path):
    for name in ['b.tif', 'a.png', 'notes.txt']:
        (tmp_path / name).write_bytes(b'')

    assert [p.name for p in find_images(tmp_path)] == ['a.png', 'b.tif']


def test_output_paths(tmp_path):
    paths = output_paths('/data/run1/well_A1.tif', tmp_path)

    assert image_base_name('/data/run1/well_A1.tif') == 'well_A1'
    assert paths['folder'] == tmp_path / 'well_A1'
    assert paths['rois'] == tmp_path / 'well_A1' / 'well_A1_rois.zip'
    assert paths['measurements'].name == 'well_A1_measurements.csv'
    assert paths['labels'].name == 'well_A1_compartments.tif'
    assert paths['log'].name == 'well_A1_log.txt'
