"""拼豆图纸生成器 - Beadgrid

Converts arbitrary images into square bead patterns constrained to a bead
color catalog, with per-color usage counts.
"""
# /// script
# requires-python = ">=3.10"
# dependencies = [
#     "numpy",
#     "pillow",
# ]
# ///

import argparse
import json
import math
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
BASIC_PREFIXES = set("ABCDEFGHM")
ALPHA_THRESHOLD = 128
DEFAULT_GRID_SIZE = 50
DEFAULT_MERGE_THRESHOLD = 30.0
MODES = ("dominant", "average")

Rgb = tuple[int, int, int]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class BeadgridError(ValueError):
    """Base class for conversion failures."""


class EmptyPaletteError(BeadgridError):
    """The palette has no colors to match against."""


class InvalidDimensionsError(BeadgridError):
    """Grid size or image dimensions are not positive."""


class DecodeUnavailableError(BeadgridError):
    """The source image could not be decoded into a pixel buffer."""


# ---------------------------------------------------------------------------
# Color helpers
# ---------------------------------------------------------------------------

def hex_to_rgb(h: str) -> Rgb:
    """Convert '#RRGGBB' to (R, G, B)."""
    h = h.lstrip("#")
    return int(h[0:2], 16), int(h[2:4], 16), int(h[4:6], 16)


def rgb_to_hex(rgb: Sequence[int]) -> str:
    return "#{:02X}{:02X}{:02X}".format(*(int(v) for v in rgb[:3]))


def color_distance(c1: Sequence[int], c2: Sequence[int]) -> float:
    """Euclidean distance in RGB space, 0 to ~441."""
    dr = int(c1[0]) - int(c2[0])
    dg = int(c1[1]) - int(c2[1])
    db = int(c1[2]) - int(c2[2])
    return math.sqrt(dr * dr + dg * dg + db * db)


def _check_mode(mode: str) -> None:
    if mode not in MODES:
        raise ValueError(f"Unknown mode {mode!r}, expected one of {MODES}")


# ---------------------------------------------------------------------------
# Bead color catalog
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PaletteColor:
    key: str
    hex: str
    rgb: Rgb
    name: str = ""
    category: str = ""

    @classmethod
    def from_hex(cls, key: str, hex_value: str, name: str = "",
                 category: str = "") -> "PaletteColor":
        return cls(key, rgb_to_hex(hex_to_rgb(hex_value)), hex_to_rgb(hex_value),
                   name, category)


class Palette:
    """Immutable, ordered bead color collection with O(1) key lookup.

    Order matters: when two entries are equally close to a target color the
    earlier one wins.
    """

    def __init__(self, colors: Iterable[PaletteColor]):
        self._colors: tuple[PaletteColor, ...] = tuple(colors)
        self._index: dict[str, int] = {}
        for i, color in enumerate(self._colors):
            if color.key in self._index:
                raise ValueError(f"Duplicate palette key: {color.key}")
            self._index[color.key] = i
        rgb = np.array([c.rgb for c in self._colors], dtype=np.int32).reshape(-1, 3)
        rgb.setflags(write=False)
        self._rgb = rgb

    def __len__(self) -> int:
        return len(self._colors)

    def __iter__(self) -> Iterator[PaletteColor]:
        return iter(self._colors)

    def __getitem__(self, i: int) -> PaletteColor:
        return self._colors[i]

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __repr__(self) -> str:
        return f"Palette({len(self._colors)} colors)"

    @property
    def keys(self) -> list[str]:
        return [c.key for c in self._colors]

    @property
    def rgb(self) -> np.ndarray:
        """(n, 3) int32 array of palette colors, read-only."""
        return self._rgb

    def index_of(self, key: str) -> int:
        return self._index[key]

    def get(self, key: str) -> PaletteColor | None:
        i = self._index.get(key)
        return None if i is None else self._colors[i]


def _as_palette(palette: Palette | Iterable[PaletteColor]) -> Palette:
    return palette if isinstance(palette, Palette) else Palette(palette)


def _series_prefix(label: str) -> str:
    prefix = ""
    for ch in label:
        if ch.isalpha():
            prefix += ch
        else:
            break
    return prefix


def load_palette(json_path: str | Path, allow_extended: bool = True) -> Palette:
    """Load a bead color catalog.

    Two layouts are accepted:

    * a list of ``{"id", "hex", "name", "category", "rgb"?}`` entries, either
      bare or under a ``"colors"`` key next to ``"brand"``;
    * ``{"label_to_hex": {label: hex}, "transparent": [labels]}``.

    Transparent beads are always excluded. If allow_extended is False, only
    the A-M series are kept.
    """
    with open(json_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    transparent: set[str] = set()
    entries: list[dict] = []
    if isinstance(data, list):
        entries = data
    elif "label_to_hex" in data:
        transparent = set(data.get("transparent", []))
        entries = [{"id": label, "hex": hexval}
                   for label, hexval in data["label_to_hex"].items()]
    else:
        transparent = set(data.get("transparent", []))
        entries = data.get("colors", [])

    colors: list[PaletteColor] = []
    for entry in entries:
        label = str(entry["id"])
        if label in transparent:
            continue
        if not allow_extended and _series_prefix(label) not in BASIC_PREFIXES:
            continue
        if "rgb" in entry:
            rgb = tuple(int(v) for v in entry["rgb"][:3])
        else:
            rgb = hex_to_rgb(entry["hex"])
        hexval = rgb_to_hex(hex_to_rgb(entry["hex"]) if "hex" in entry else rgb)
        colors.append(PaletteColor(
            key=label,
            hex=hexval,
            rgb=rgb,  # type: ignore[arg-type]
            name=entry.get("name", ""),
            category=entry.get("category", _series_prefix(label)),
        ))
    return Palette(colors)


# ---------------------------------------------------------------------------
# Image buffer
# ---------------------------------------------------------------------------

def decode_image(path: str | Path) -> np.ndarray:
    """Decode an image file into an (H, W, 4) uint8 RGBA array."""
    try:
        with Image.open(path) as img:
            return np.array(img.convert("RGBA"))
    except (OSError, Image.DecompressionBombError) as exc:
        raise DecodeUnavailableError(f"Cannot decode image {path}: {exc}") from exc


def _as_rgba(img: np.ndarray | None) -> np.ndarray:
    """Validate a pixel buffer, adding an opaque alpha channel to RGB input."""
    if img is None:
        raise DecodeUnavailableError("No decoded image buffer available")
    arr = np.asarray(img)
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise InvalidDimensionsError(
            f"Expected an (H, W, 3|4) pixel buffer, got shape {arr.shape}")
    if arr.shape[0] <= 0 or arr.shape[1] <= 0:
        raise InvalidDimensionsError(
            f"Image dimensions must be positive, got {arr.shape[1]}x{arr.shape[0]}")
    if arr.dtype != np.uint8:
        raise ValueError(f"Expected a uint8 pixel buffer, got {arr.dtype}")
    if arr.shape[2] == 3:
        alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
        arr = np.concatenate([arr, alpha], axis=2)
    return arr


# ---------------------------------------------------------------------------
# Cell sampling
# ---------------------------------------------------------------------------

def _unpack(key: int) -> Rgb:
    return (key >> 16) & 0xFF, (key >> 8) & 0xFF, key & 0xFF


def _dominant_key(keys: np.ndarray) -> int:
    """Most frequent packed color in scan order.

    Ties go to the color that reached the top count first, i.e. a later
    color has to strictly exceed the running maximum to take over.
    """
    uniq, inverse, counts = np.unique(keys, return_inverse=True,
                                      return_counts=True)
    inverse = inverse.reshape(-1)
    top = int(counts.max())
    # scan positions grouped by color, each group kept in scan order
    order = np.argsort(inverse, kind="stable")
    starts = np.concatenate(([0], np.cumsum(counts)[:-1]))
    tied = np.flatnonzero(counts == top)
    # position where each tied color hit the top count
    reached = order[starts[tied] + top - 1]
    return int(uniq[tied[np.argmin(reached)]])


def sample_cell(
    img: np.ndarray, start_x: int, start_y: int, width: int, height: int,
    mode: str = "dominant",
) -> Rgb | None:
    """Representative color of one rectangular region.

    Pixels with alpha below ALPHA_THRESHOLD are ignored. Returns None if no
    opaque pixel remains.

    mode: "dominant" picks the most frequent exact color, "average" the
    per-channel mean rounded half-up.
    """
    _check_mode(mode)
    block = img[start_y:start_y + height, start_x:start_x + width]
    opaque = block[..., 3] >= ALPHA_THRESHOLD
    if not opaque.any():
        return None

    pixels = block[opaque][:, :3].astype(np.int64)  # row-major order

    if mode == "average":
        n = len(pixels)
        sums = pixels.sum(axis=0)
        r, g, b = ((2 * sums + n) // (2 * n)).tolist()
        return int(r), int(g), int(b)

    keys = (pixels[:, 0] << 16) | (pixels[:, 1] << 8) | pixels[:, 2]
    return _unpack(_dominant_key(keys))


# ---------------------------------------------------------------------------
# Palette matching
# ---------------------------------------------------------------------------

def find_closest(target: Sequence[int],
                 palette: Palette | Sequence[PaletteColor]) -> PaletteColor:
    """Nearest palette entry by RGB distance; the first entry wins ties."""
    if len(palette) == 0:
        raise EmptyPaletteError("Palette has no colors")
    closest = palette[0]
    min_dist = float("inf")
    for color in palette:
        d = color_distance(target, color.rgb)
        if d < min_dist:
            min_dist = d
            closest = color
        if d == 0:
            break
    return closest


def map_to_palette(
    grid_rgb: np.ndarray, grid_mask: np.ndarray,
    palette: Palette | Sequence[PaletteColor],
) -> np.ndarray:
    """Map each opaque cell to its nearest palette entry.

    Returns:
        grid_indices: (n_rows, n_cols) int32 array of palette positions,
            -1 where the cell is transparent
    """
    palette = _as_palette(palette)
    if len(palette) == 0:
        raise EmptyPaletteError("Palette has no colors")

    grid_indices = np.full(grid_mask.shape, -1, dtype=np.int32)
    flat_rgb = grid_rgb[grid_mask].astype(np.int32)
    if flat_rgb.size == 0:
        return grid_indices

    # Distances only for the distinct colors; argmin keeps the first minimum
    uniq, inverse = np.unique(flat_rgb, axis=0, return_inverse=True)
    diff = uniq[:, np.newaxis, :] - palette.rgb[np.newaxis, :, :]
    dist2 = (diff * diff).sum(axis=2)
    nearest = dist2.argmin(axis=1)
    grid_indices[grid_mask] = nearest[inverse.reshape(-1)]
    return grid_indices


# ---------------------------------------------------------------------------
# Pixelation
# ---------------------------------------------------------------------------

def cell_bounds(index: int, n_cells: int, extent: int) -> tuple[int, int]:
    """Return (start, size) of cell `index` when `extent` pixels are split
    into `n_cells`.

    start = floor(index * extent / n_cells), end = ceil((index + 1) * extent
    / n_cells). Sizes differ by one near boundaries when the split is uneven
    and neighbouring cells may share one edge pixel; no pixel is left out.
    """
    start = index * extent // n_cells
    end = -(-(index + 1) * extent // n_cells)
    return start, max(1, end - start)


def pixelate(
    img: np.ndarray, grid_rows: int, grid_cols: int, mode: str = "dominant",
) -> tuple[np.ndarray, np.ndarray]:
    """Split the image into grid_rows x grid_cols cells and sample each one.

    Returns:
        grid_rgb: (grid_rows, grid_cols, 3) uint8 representative colors
        grid_mask: (grid_rows, grid_cols) bool array, True if the cell is opaque
    """
    _check_mode(mode)
    if grid_rows <= 0 or grid_cols <= 0:
        raise InvalidDimensionsError(
            f"Grid must be positive, got {grid_cols}x{grid_rows}")
    img = _as_rgba(img)
    img_h, img_w = img.shape[:2]

    grid_rgb = np.zeros((grid_rows, grid_cols, 3), dtype=np.uint8)
    grid_mask = np.zeros((grid_rows, grid_cols), dtype=bool)

    col_spans = [cell_bounds(i, grid_cols, img_w) for i in range(grid_cols)]
    for r in range(grid_rows):
        y0, h = cell_bounds(r, grid_rows, img_h)
        for c, (x0, w) in enumerate(col_spans):
            color = sample_cell(img, x0, y0, w, h, mode)
            if color is None:
                continue
            grid_rgb[r, c] = color
            grid_mask[r, c] = True
    return grid_rgb, grid_mask


# ---------------------------------------------------------------------------
# Color merging
# ---------------------------------------------------------------------------

def colors_by_frequency(grid_indices: np.ndarray) -> list[int]:
    """Used palette positions, most frequent first.

    Equal counts keep the order in which the colors first appear in a
    row-major scan.
    """
    flat = grid_indices[grid_indices >= 0].reshape(-1)
    if flat.size == 0:
        return []
    uniq, first, counts = np.unique(flat, return_index=True, return_counts=True)
    order = sorted(range(len(uniq)), key=lambda n: (-int(counts[n]), int(first[n])))
    return [int(uniq[n]) for n in order]


def merge_similar_colors(
    grid_indices: np.ndarray,
    palette: Palette | Sequence[PaletteColor],
    threshold: float = DEFAULT_MERGE_THRESHOLD,
    verbose: bool = False,
) -> np.ndarray:
    """Fold less frequent colors into more frequent similar ones.

    Walks the used colors from most to least frequent. Every later color
    closer than `threshold` to the current one is replaced by it everywhere
    in the grid. A replaced color never absorbs or gets absorbed again.
    Single pass; the input array is left untouched.
    """
    if threshold < 0:
        raise ValueError(f"Merge threshold must be non-negative, got {threshold}")
    palette = _as_palette(palette)
    indices = np.array(grid_indices, dtype=np.int32, copy=True)

    by_frequency = colors_by_frequency(indices)
    if not by_frequency:
        if verbose:
            print("  No opaque cells, nothing to merge")
        return indices

    replaced: set[int] = set()
    for i, keep in enumerate(by_frequency):
        if keep in replaced:
            continue
        keep_rgb = palette[keep].rgb
        for other in by_frequency[i + 1:]:
            if other in replaced:
                continue
            d = color_distance(keep_rgb, palette[other].rgb)
            if d < threshold:
                replaced.add(other)
                indices[indices == other] = keep
                if verbose:
                    print(f"  Merging {palette[other].key} into "
                          f"{palette[keep].key} (distance {d:.1f})")

    if verbose:
        print(f"  Merged {len(replaced)} of {len(by_frequency)} colors")
    return indices


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PatternResult:
    grid_size: int
    pixels: tuple[tuple[str | None, ...], ...]
    color_palette: dict[str, PaletteColor]  # first-encountered order
    color_usage: dict[str, int]
    total_beads: int
    transparent_pixels: int
    mode: str = "dominant"

    @property
    def n_colors(self) -> int:
        return len(self.color_palette)

    def to_dict(self) -> dict:
        """Plain JSON-serializable form."""
        return {
            "grid_size": self.grid_size,
            "mode": self.mode,
            "pixels": [list(row) for row in self.pixels],
            "color_palette": {
                key: {"hex": c.hex, "rgb": list(c.rgb), "name": c.name,
                      "category": c.category}
                for key, c in self.color_palette.items()
            },
            "color_usage": dict(self.color_usage),
            "total_beads": self.total_beads,
            "transparent_pixels": self.transparent_pixels,
        }


def assemble_result(
    grid_indices: np.ndarray,
    palette: Palette | Sequence[PaletteColor],
    mode: str = "dominant",
) -> PatternResult:
    """Build the final pattern and its statistics from a palette-index grid."""
    palette = _as_palette(palette)
    n_rows, n_cols = grid_indices.shape

    pixels: list[tuple[str | None, ...]] = []
    color_palette: dict[str, PaletteColor] = {}
    color_usage: dict[str, int] = {}
    transparent = 0

    for r in range(n_rows):
        row: list[str | None] = []
        for idx in grid_indices[r].tolist():
            if idx < 0:
                row.append(None)
                transparent += 1
                continue
            color = palette[idx]
            row.append(color.key)
            if color.key not in color_palette:
                color_palette[color.key] = color
                color_usage[color.key] = 0
            color_usage[color.key] += 1
        pixels.append(tuple(row))

    return PatternResult(
        grid_size=n_rows,
        pixels=tuple(pixels),
        color_palette=color_palette,
        color_usage=color_usage,
        total_beads=n_rows * n_cols - transparent,
        transparent_pixels=transparent,
        mode=mode,
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def convert_image(
    img: np.ndarray | None,
    palette: Palette | Sequence[PaletteColor],
    grid_size: int = DEFAULT_GRID_SIZE,
    mode: str = "dominant",
    merge_threshold: float = DEFAULT_MERGE_THRESHOLD,
    verbose: bool = False,
) -> PatternResult:
    """Convert a decoded RGBA buffer into a grid_size x grid_size bead pattern.

    Colors are merged only in "dominant" mode; "average" keeps every matched
    color.
    """
    if img is None:
        raise DecodeUnavailableError("No decoded image buffer available")
    palette = _as_palette(palette)
    if len(palette) == 0:
        raise EmptyPaletteError("Palette has no colors")
    if grid_size <= 0:
        raise InvalidDimensionsError(f"Grid size must be positive, got {grid_size}")
    _check_mode(mode)
    img = _as_rgba(img)

    if verbose:
        print(f"  Image size: {img.shape[1]}x{img.shape[0]}, "
              f"grid {grid_size}x{grid_size}, mode {mode}")

    grid_rgb, grid_mask = pixelate(img, grid_size, grid_size, mode)
    grid_indices = map_to_palette(grid_rgb, grid_mask, palette)
    if verbose:
        print(f"  {int(grid_mask.sum())} opaque cells, "
              f"{len(colors_by_frequency(grid_indices))} colors before merging")

    if mode == "dominant":
        grid_indices = merge_similar_colors(grid_indices, palette,
                                            merge_threshold, verbose=verbose)

    return assemble_result(grid_indices, palette, mode)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    import beadgrid_chart

    parser = argparse.ArgumentParser(
        description="拼豆图纸生成器 - Bead Pattern Generator"
    )
    parser.add_argument("input", help="Input image path")
    parser.add_argument("-o", "--output", default=None,
                        help="Output pattern image (default: <input>_beadgrid.png)")
    parser.add_argument("-g", "--grid-size", type=int, default=DEFAULT_GRID_SIZE,
                        help=f"Beads per side (default: {DEFAULT_GRID_SIZE})")
    parser.add_argument("-m", "--mode", choices=MODES, default="dominant",
                        help="dominant: most frequent color per cell (cartoon), "
                             "average: mean color (photo)")
    parser.add_argument("-t", "--threshold", type=float,
                        default=DEFAULT_MERGE_THRESHOLD,
                        help="Color merge threshold in RGB distance, dominant "
                             f"mode only (default: {DEFAULT_MERGE_THRESHOLD:g})")
    parser.add_argument("-e", "--extended", action="store_true",
                        help="Allow extended color series (P/Q/R/T/Y/ZG)")
    parser.add_argument("-p", "--palette", default=None,
                        help="Bead color catalog JSON (default: colors/mard.json)")
    parser.add_argument("-c", "--cell-size", type=int, default=beadgrid_chart.CELL_SIZE,
                        help=f"Output cell size in pixels (default: {beadgrid_chart.CELL_SIZE})")
    parser.add_argument("--origin", choices=["bl", "tl", "br", "tr"], default="bl",
                        help="Coordinate origin: bl=bottom-left (default), tl=top-left, br=bottom-right, tr=top-right")
    parser.add_argument("--guide-lines", action="store_true",
                        help="Darken every 5th and 10th grid line")
    parser.add_argument("--legend-order", choices=beadgrid_chart.LEGEND_ORDERS,
                        default="code", help="Legend ordering (default: code)")
    parser.add_argument("--chart", default=None,
                        help="Also write a plain-text chart to this path")
    parser.add_argument("--json", default=None,
                        help="Also write the pattern as JSON to this path")
    parser.add_argument("--system", default=None,
                        help="Color system name for the text chart (e.g. COCO)")
    parser.add_argument("--system-map", default=None,
                        help="JSON mapping hex -> {system: code}")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress output")
    args = parser.parse_args(argv)
    verbose = not args.quiet
    if (args.system is None) != (args.system_map is None):
        parser.error("--system and --system-map must be given together")

    input_path = Path(args.input)
    if args.output is None:
        output_path = input_path.parent / f"{input_path.stem}_beadgrid.png"
    else:
        output_path = Path(args.output)

    if args.palette is None:
        json_path = Path(__file__).parent / "colors" / "mard.json"
    else:
        json_path = Path(args.palette)
    if not json_path.exists():
        print(f"Error: {json_path} not found")
        return 1

    mapping = None
    if args.system_map:
        try:
            with open(args.system_map, "r", encoding="utf-8") as f:
                mapping = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            print(f"Error: cannot read color system map {args.system_map}: {exc}")
            return 1

    # 1. Load bead colors
    if verbose:
        print(f"Loading bead colors (extended={args.extended})...")
    palette = load_palette(json_path, args.extended)
    if verbose:
        print(f"  {len(palette)} bead colors available")

    # 2. Decode image
    if verbose:
        print(f"Loading image: {input_path}")
    try:
        img = decode_image(input_path)
    except DecodeUnavailableError as exc:
        print(f"Error: {exc}")
        return 1

    # 3. Convert
    if verbose:
        print("Converting...")
    try:
        result = convert_image(img, palette, args.grid_size, args.mode,
                               args.threshold, verbose=verbose)
    except BeadgridError as exc:
        print(f"Error: {exc}")
        return 1

    if result.total_beads == 0:
        print("Pattern is empty: the image has no opaque area to convert")

    # 4. Export
    if verbose:
        print("Rendering output...")
    chart_img = beadgrid_chart.render_pattern(
        result, args.cell_size, origin=args.origin,
        guide_lines=args.guide_lines, legend_order=args.legend_order)
    chart_img.save(str(output_path))
    if verbose:
        print(f"Saved: {output_path}")

    if args.chart:
        Path(args.chart).write_text(
            beadgrid_chart.format_bead_chart(result, args.system, mapping),
            encoding="utf-8")
        if verbose:
            print(f"Saved: {args.chart}")
    if args.json:
        with open(args.json, "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, ensure_ascii=False)
        if verbose:
            print(f"Saved: {args.json}")

    # Summary
    if verbose:
        print(f"\nColor usage ({result.n_colors} colors, "
              f"{result.total_beads} beads total, "
              f"{result.transparent_pixels} empty cells):")
        for label, count in sorted(result.color_usage.items(), key=lambda x: -x[1]):
            print(f"  {label:>4s}: {count:4d}  {result.color_palette[label].hex}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
