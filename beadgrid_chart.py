"""拼豆图纸导出 - pattern charts for beadgrid results.

Renders a PatternResult as a Pillow image (coordinates, grid lines, bead
codes and a legend) or as a plain-text chart with a materials list.
"""

import colorsys
import functools
import math
import re

from PIL import Image, ImageDraw, ImageFont

from beadgrid import PaletteColor, PatternResult, hex_to_rgb

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
CELL_SIZE = 40
GRID_LINE_WIDTH = 1
BG_COLOR = (210, 210, 210)  # background for empty areas
LEGEND_ORDERS = ("code", "hue", "usage", "first")
UNKNOWN_CODE = "?"

_CODE_RE = re.compile(r"^([A-Z]+)(\d+)$")


# ---------------------------------------------------------------------------
# Color systems & ordering
# ---------------------------------------------------------------------------

def color_key_by_hex(hex_value: str, system: str, mapping: dict) -> str:
    """Look up the code a given brand uses for a hex color.

    mapping: {"#RRGGBB": {"MARD": "A1", "COCO": "E02", ...}, ...}
    """
    codes = mapping.get(hex_value.upper())
    if codes and codes.get(system):
        return codes[system]
    return UNKNOWN_CODE


def _hsl(hex_value: str) -> tuple[float, float, float]:
    r, g, b = (v / 255.0 for v in hex_to_rgb(hex_value))
    h, l, s = colorsys.rgb_to_hls(r, g, b)
    return h * 360.0, s, l


def _compare_hue(a: PaletteColor, b: PaletteColor) -> int:
    ha, sa, la = _hsl(a.hex)
    hb, sb, lb = _hsl(b.hex)
    if abs(ha - hb) > 1:
        return -1 if ha < hb else 1
    if abs(la - lb) > 0.01:
        return -1 if la < lb else 1
    return (sa > sb) - (sa < sb)


def _compare_code(a: str, b: str) -> int:
    ma = _CODE_RE.match(a)
    mb = _CODE_RE.match(b)
    if not ma or not mb:
        return (a > b) - (a < b)
    if ma.group(1) != mb.group(1):
        return -1 if ma.group(1) < mb.group(1) else 1
    na, nb = int(ma.group(2)), int(mb.group(2))
    return (na > nb) - (na < nb)


def sort_by_hue(colors: list[PaletteColor]) -> list[PaletteColor]:
    """Visual order: hue first, then lightness, then saturation."""
    return sorted(colors, key=functools.cmp_to_key(_compare_hue))


def sort_by_code(keys: list[str]) -> list[str]:
    """Series letters first, then the numeric part: A2 < A10 < B1."""
    return sorted(keys, key=functools.cmp_to_key(_compare_code))


def legend_entries(result: PatternResult,
                   order: str = "code") -> list[tuple[PaletteColor, int]]:
    """Used colors with their counts, in the requested order."""
    if order not in LEGEND_ORDERS:
        raise ValueError(f"Unknown legend order {order!r}")
    colors = list(result.color_palette.values())
    if order == "code":
        keys = sort_by_code([c.key for c in colors])
        colors = [result.color_palette[k] for k in keys]
    elif order == "hue":
        colors = sort_by_hue(colors)
    elif order == "usage":
        colors.sort(key=lambda c: -result.color_usage[c.key])
    return [(c, result.color_usage[c.key]) for c in colors]


# ---------------------------------------------------------------------------
# Text chart
# ---------------------------------------------------------------------------

def format_bead_chart(result: PatternResult, system: str | None = None,
                      mapping: dict | None = None) -> str:
    """Plain-text chart: the code grid followed by a materials list.

    Empty cells print as blanks. With a system and mapping, the materials
    list gains that brand's code for each color.
    """
    lines = []
    for row in result.pixels:
        lines.append("".join((key or " ").ljust(4) for key in row))
    chart = "\n".join(lines) + "\n"

    with_system = system is not None and mapping is not None
    chart += "\n\n=== 材料清单 ===\n"
    chart += "颜色ID | 颜色名 | 数量"
    chart += f" | {system}\n" if with_system else "\n"
    chart += "-" * 50 + "\n"
    for key, color in result.color_palette.items():
        count = result.color_usage.get(key, 0)
        line = f"{key} | {color.name} | {count}"
        if with_system:
            line += f" | {color_key_by_hex(color.hex, system, mapping)}"
        chart += line + "\n"
    chart += f"\n总计: {result.total_beads} | 空白: {result.transparent_pixels}\n"
    return chart


# ---------------------------------------------------------------------------
# Image rendering
# ---------------------------------------------------------------------------

def _load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Try to load a monospace system font, fall back to default."""
    candidates = [
        "/System/Library/Fonts/Menlo.ttc",
        "/System/Library/Fonts/SFNSMono.ttf",
        "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf",
        "consola.ttf",
    ]
    for path in candidates:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    return ImageFont.load_default()


def _text_color(r: int, g: int, b: int) -> tuple[int, int, int]:
    """Choose black or white text for contrast against the given background."""
    brightness = (r * 299 + g * 587 + b * 114) / 1000
    return (0, 0, 0) if brightness > 128 else (255, 255, 255)


def _draw_checkerboard(draw: ImageDraw.ImageDraw, x0: int, y0: int,
                       x1: int, y1: int, cell_size: int) -> None:
    step = max(4, cell_size // 8)
    for py in range(y0, y1, step):
        for px in range(x0, x1, step):
            shade = 195 if ((px - x0 + py - y0) // step) % 2 == 0 else 215
            draw.rectangle(
                [px, py, min(px + step - 1, x1), min(py + step - 1, y1)],
                fill=(shade, shade, shade))


def _text_size(draw: ImageDraw.ImageDraw, text: str, font) -> tuple[int, int]:
    bbox = draw.textbbox((0, 0), text, font=font)
    return int(bbox[2] - bbox[0]), int(bbox[3] - bbox[1])


def render_color_image(result: PatternResult,
                       cell_size: int = CELL_SIZE) -> Image.Image:
    """Plain bead color image: no grid lines, no labels, no legend."""
    n = result.grid_size
    n_cols = len(result.pixels[0]) if result.pixels else 0
    img = Image.new("RGB", (max(1, n_cols * cell_size), max(1, n * cell_size)), BG_COLOR)
    draw = ImageDraw.Draw(img)
    for r, row in enumerate(result.pixels):
        for c, key in enumerate(row):
            x0, y0 = c * cell_size, r * cell_size
            x1, y1 = x0 + cell_size - 1, y0 + cell_size - 1
            if key is None:
                _draw_checkerboard(draw, x0, y0, x1, y1, cell_size)
            else:
                draw.rectangle([x0, y0, x1, y1], fill=result.color_palette[key].rgb)
    return img


def axis_labels(n: int, reverse: bool) -> list[str]:
    """1-based coordinate labels, counted from the far end when reverse."""
    return [str(n - i if reverse else i + 1) for i in range(n)]


def _grid_line_style(d: int, guide_lines: bool) -> tuple[tuple[int, int, int], int]:
    if guide_lines and d % 10 == 0:
        return (80, 80, 80), 2
    if guide_lines and d % 5 == 0:
        return (130, 130, 130), 2
    return (180, 180, 180), GRID_LINE_WIDTH


def _draw_centered(draw: ImageDraw.ImageDraw, box: tuple[int, int, int, int],
                   text: str, font, fill: tuple[int, int, int]) -> None:
    """Draw text centered in box = (x0, y0, width, height)."""
    x0, y0, w, h = box
    tw, th = _text_size(draw, text, font)
    draw.text((x0 + (w - tw) // 2, y0 + (h - th) // 2), text, fill=fill, font=font)


def _draw_legend(draw: ImageDraw.ImageDraw, items: list[tuple[PaletteColor, int]],
                 top: int, n_cols: int, swatch: int, item_w: int, row_h: int,
                 code_font, count_font, count_font_size: int) -> None:
    for i, (color, count) in enumerate(items):
        lx = (i % n_cols) * item_w + 8
        ly = top + (i // n_cols) * row_h
        draw.rectangle([lx, ly, lx + swatch, ly + swatch],
                       fill=color.rgb, outline=(120, 120, 120))
        _draw_centered(draw, (lx, ly, swatch, swatch), color.key, code_font,
                       _text_color(*color.rgb))
        draw.text((lx + swatch + 6, ly + (swatch - count_font_size) // 2),
                  f"x{count}", fill=(0, 0, 0), font=count_font)


def render_pattern(
    result: PatternResult,
    cell_size: int = CELL_SIZE,
    origin: str = "bl",
    guide_lines: bool = False,
    legend_order: str = "code",
) -> Image.Image:
    """Render the bead pattern sheet: coordinates on all four sides, coded
    cells, grid lines and a usage legend underneath.

    origin: "bl" (bottom-left), "tl" (top-left), "br" (bottom-right), "tr" (top-right)
    guide_lines: if True, every 5th grid line is darker, every 10th even darker.
    """
    n_rows = len(result.pixels)
    n_cols = len(result.pixels[0]) if n_rows else 0
    row_from_bottom = origin.startswith("b")
    col_from_right = origin.endswith("r")
    col_labels = axis_labels(n_cols, col_from_right)
    row_labels = axis_labels(n_rows, row_from_bottom)

    coord_font = _load_font(max(9, cell_size // 4))
    measure = ImageDraw.Draw(Image.new("RGB", (1, 1)))
    label_w, label_h = _text_size(measure, str(max(n_rows, n_cols, 1)), coord_font)
    margin_x, margin_y = label_w + 8, label_h + 6
    grid_w = n_cols * cell_size + GRID_LINE_WIDTH
    grid_h = n_rows * cell_size + GRID_LINE_WIDTH
    sheet_w = margin_x * 2 + grid_w

    items = legend_entries(result, legend_order)
    count_font_size = max(12, cell_size * 2 // 5)
    count_font = _load_font(count_font_size)
    item_w = cell_size + count_font_size * 7 + 16
    row_h = cell_size + 8
    per_row = min(max(1, sheet_w // item_w), len(items)) if items else 1
    legend_h = 0
    if items:
        legend_h = math.ceil(len(items) / per_row) * row_h + count_font_size + 24

    img = Image.new("RGB", (max(sheet_w, per_row * item_w),
                            margin_y * 2 + grid_h + legend_h), BG_COLOR)
    draw = ImageDraw.Draw(img)
    ox, oy = margin_x, margin_y
    code_font = _load_font(max(10, int(cell_size * 0.4)))

    coord_color = (100, 100, 100)
    for c, lbl in enumerate(col_labels):
        x = ox + c * cell_size
        _draw_centered(draw, (x, 0, cell_size, margin_y), lbl, coord_font, coord_color)
        _draw_centered(draw, (x, oy + grid_h, cell_size, margin_y), lbl,
                       coord_font, coord_color)
    for r, lbl in enumerate(row_labels):
        y = oy + r * cell_size
        _draw_centered(draw, (0, y, margin_x, cell_size), lbl, coord_font, coord_color)
        _draw_centered(draw, (ox + grid_w, y, margin_x, cell_size), lbl,
                       coord_font, coord_color)

    for r, row in enumerate(result.pixels):
        for c, key in enumerate(row):
            x0, y0 = ox + c * cell_size, oy + r * cell_size
            if key is None:
                _draw_checkerboard(draw, x0, y0, x0 + cell_size, y0 + cell_size, cell_size)
                continue
            rgb = result.color_palette[key].rgb
            draw.rectangle([x0, y0, x0 + cell_size, y0 + cell_size], fill=rgb)
            _draw_centered(draw, (x0, y0, cell_size, cell_size), key, code_font,
                           _text_color(*rgb))

    for r in range(n_rows + 1):
        y = oy + r * cell_size
        fill, width = _grid_line_style(n_rows - r if row_from_bottom else r, guide_lines)
        draw.line([(ox, y), (ox + grid_w, y)], fill=fill, width=width)
    for c in range(n_cols + 1):
        x = ox + c * cell_size
        fill, width = _grid_line_style(n_cols - c if col_from_right else c, guide_lines)
        draw.line([(x, oy), (x, oy + grid_h)], fill=fill, width=width)

    if items:
        top = oy + grid_h + margin_y + 10
        draw.text((8, top),
                  f"Colors: {len(items)} | Beads: {result.total_beads} | "
                  f"Board: {n_cols}x{n_rows}",
                  fill=(0, 0, 0), font=count_font)
        _draw_legend(draw, items, top + count_font_size + 16, per_row, cell_size,
                     item_w, row_h, code_font, count_font, count_font_size)

    return img
