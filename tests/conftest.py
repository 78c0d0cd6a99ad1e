"""Shared test fixtures."""

from __future__ import annotations

import numpy as np
import pytest

from beadgrid import Palette, PaletteColor

RED = (255, 0, 0)
BLUE = (0, 0, 255)
WHITE = (255, 255, 255)
BLACK = (0, 0, 0)
CLEAR = (0, 0, 0, 0)


def make_palette(entries: list[tuple[str, tuple[int, int, int]]]) -> Palette:
    return Palette(
        PaletteColor(key, "#{:02X}{:02X}{:02X}".format(*rgb), rgb, name=key)
        for key, rgb in entries
    )


def make_image(rows: list[list[tuple]]) -> np.ndarray:
    """RGBA buffer from nested pixel tuples; 3-tuples are fully opaque."""
    return np.array(
        [[px if len(px) == 4 else (*px, 255) for px in row] for row in rows],
        dtype=np.uint8,
    )


def solid_image(width: int, height: int, rgb: tuple[int, int, int],
                alpha: int = 255) -> np.ndarray:
    img = np.zeros((height, width, 4), dtype=np.uint8)
    img[..., :3] = rgb
    img[..., 3] = alpha
    return img


@pytest.fixture
def basic_palette() -> Palette:
    return make_palette([
        ("H7", BLACK),
        ("H2", WHITE),
        ("F5", (229, 44, 44)),
        ("C8", (31, 107, 208)),
        ("B5", (62, 198, 111)),
    ])


@pytest.fixture
def gray_palette() -> Palette:
    return make_palette([
        ("G0", (0, 0, 0)),
        ("G1", (20, 20, 20)),
        ("G2", (40, 40, 40)),
        ("G3", (60, 60, 60)),
    ])
