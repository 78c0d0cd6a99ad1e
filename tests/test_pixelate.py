"""Tests for grid decomposition and pixelation."""

import numpy as np
import pytest

from beadgrid import (
    DecodeUnavailableError, InvalidDimensionsError, cell_bounds, pixelate,
)
from tests.conftest import BLUE, RED, WHITE, make_image, solid_image


def test_even_split():
    assert [cell_bounds(i, 4, 8) for i in range(4)] == [(0, 2), (2, 2), (4, 2), (6, 2)]


def test_uneven_split_shares_edge_pixels():
    # 5 pixels into 2 cells: [0, 3) and [2, 5)
    assert cell_bounds(0, 2, 5) == (0, 3)
    assert cell_bounds(1, 2, 5) == (2, 3)


def test_more_cells_than_pixels():
    spans = [cell_bounds(i, 5, 2) for i in range(5)]
    assert all(size >= 1 for _, size in spans)
    assert all(start + size <= 2 for start, size in spans)


@pytest.mark.parametrize("extent", range(1, 41))
@pytest.mark.parametrize("n_cells", [1, 2, 3, 7, 10, 16, 40])
def test_cells_cover_every_pixel(extent, n_cells):
    spans = [cell_bounds(i, n_cells, extent) for i in range(n_cells)]
    covered = set()
    for start, size in spans:
        assert 0 <= start and start + size <= extent
        covered.update(range(start, start + size))
    assert covered == set(range(extent))

    # each pixel has one owning cell: [start_i, start_i+1) tiles the extent
    starts = [start for start, _ in spans] + [extent]
    assert starts[0] == 0
    assert all(a <= b for a, b in zip(starts, starts[1:]))
    for i, (start, size) in enumerate(spans):
        assert start + size >= starts[i + 1]
        assert start + size - starts[i + 1] <= 1


def test_quadrants_map_to_cells():
    img = solid_image(4, 4, WHITE)
    img[:2, 2:, :3] = RED
    img[2:, :2, :3] = BLUE
    grid_rgb, grid_mask = pixelate(img, 2, 2, "dominant")
    assert grid_mask.all()
    assert grid_rgb[0, 0].tolist() == list(WHITE)
    assert grid_rgb[0, 1].tolist() == list(RED)
    assert grid_rgb[1, 0].tolist() == list(BLUE)
    assert grid_rgb[1, 1].tolist() == list(WHITE)


def test_single_cell_dominant():
    img = make_image([[RED, RED], [RED, BLUE]])
    grid_rgb, grid_mask = pixelate(img, 1, 1, "dominant")
    assert grid_mask.tolist() == [[True]]
    assert tuple(grid_rgb[0, 0]) == RED


def test_transparent_cells_are_masked():
    img = solid_image(4, 4, RED)
    img[:2, :2, 3] = 0
    grid_rgb, grid_mask = pixelate(img, 2, 2, "average")
    assert grid_mask.tolist() == [[False, True], [True, True]]
    assert grid_rgb[0, 0].tolist() == [0, 0, 0]


def test_rectangular_grid():
    img = solid_image(9, 6, RED)
    grid_rgb, grid_mask = pixelate(img, 2, 3, "dominant")
    assert grid_rgb.shape == (2, 3, 3)
    assert grid_mask.shape == (2, 3)
    assert grid_mask.all()


def test_grid_larger_than_image():
    img = make_image([[RED, BLUE]])
    grid_rgb, grid_mask = pixelate(img, 3, 4, "dominant")
    assert grid_mask.all()
    assert tuple(grid_rgb[0, 0]) == RED
    assert tuple(grid_rgb[2, 3]) == BLUE


def test_rgb_buffer_is_treated_as_opaque():
    img = np.zeros((2, 2, 3), dtype=np.uint8)
    img[..., 2] = 255
    grid_rgb, grid_mask = pixelate(img, 1, 1, "average")
    assert grid_mask.all()
    assert tuple(grid_rgb[0, 0]) == BLUE


@pytest.mark.parametrize("rows, cols", [(0, 3), (3, 0), (-1, 2)])
def test_invalid_grid(rows, cols):
    with pytest.raises(InvalidDimensionsError):
        pixelate(solid_image(4, 4, RED), rows, cols)


def test_invalid_image():
    with pytest.raises(InvalidDimensionsError):
        pixelate(np.zeros((0, 4, 4), dtype=np.uint8), 2, 2)
    with pytest.raises(InvalidDimensionsError):
        pixelate(np.zeros((4, 4), dtype=np.uint8), 2, 2)
    with pytest.raises(DecodeUnavailableError):
        pixelate(None, 2, 2)
