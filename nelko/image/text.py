"""
Text label rendering.
Lays out wrapped, centred text on a label-sized canvas and packs it for printing.
"""

import enum
import logging
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from PIL import Image, ImageDraw, ImageFont # type: ignore

from nelko.image.raster import Bitmap, DEFAULT_THRESHOLD, rasterize_image
from nelko.tspl.labels import DPI

logger = logging.getLogger(__name__)

# Horizontal room kept free around each line
LINE_MARGIN = 10


class Orientation(enum.Enum):
    HORIZONTAL = 'horizontal'
    VERTICAL = 'vertical'


@dataclass
class TextOptions:
    """Text rendering settings."""

    font_size: float = 24
    orientation: Orientation = Orientation.HORIZONTAL
    invert: bool = False  # white text on black
    word_break_only: bool = False
    font_path: Optional[str] = None


def points_to_pixels(points: float) -> int:
    return max(1, round(points * DPI / 72))


@lru_cache(maxsize=16)
def load_font(size_px: int, font_path: Optional[str] = None):
    """
    Load a TrueType font at a pixel size.

    Falls back to Pillow's bundled scalable font when no path is given or the
    file cannot be read.
    """
    if font_path:
        try:
            return ImageFont.truetype(font_path, size_px)
        except OSError as e:
            logger.warning(f"[Text] Could not load font {font_path}, using default: {e}")
    return ImageFont.load_default(size=size_px)


def measure(font, text: str) -> int:
    """Rendered advance width of text in whole pixels."""
    return math.ceil(font.getlength(text))


def wrap_text(text: str, font, max_width: int) -> List[str]:
    """
    Split text into lines no wider than max_width, breaking anywhere.

    A single character wider than max_width still gets its own line.
    """
    lines = []
    current = ""
    for char in text:
        if char == "\n":
            lines.append(current)
            current = ""
            continue
        candidate = current + char
        if current and measure(font, candidate) > max_width:
            lines.append(current)
            current = char
        else:
            current = candidate

    if current:
        lines.append(current)
    return lines


def _break_long_word(word: str, font, max_width: int, lines: List[str]) -> str:
    """Append full-width pieces of word to lines and return the remainder."""
    part = ""
    for char in word:
        candidate = part + char
        if part and measure(font, candidate) > max_width:
            lines.append(part)
            part = char
        else:
            part = candidate
    return part


def wrap_text_word_only(text: str, font, max_width: int) -> List[str]:
    """
    Split text into lines no wider than max_width, breaking only at whitespace.

    Words that are wider than max_width on their own are split by character.
    """
    lines = []
    for paragraph in text.split("\n"):
        words = paragraph.split()
        if not words:
            lines.append("")
            continue

        current = ""
        for word in words:
            candidate = f"{current} {word}" if current else word
            if measure(font, candidate) <= max_width:
                current = candidate
                continue

            if current:
                lines.append(current)
            if measure(font, word) > max_width:
                current = _break_long_word(word, font, max_width, lines)
            else:
                current = word

        if current:
            lines.append(current)
    return lines


def render_text(text: str, width: int, height: int,
                options: Optional[TextOptions] = None) -> Optional[Image.Image]:
    """
    Render text onto a label-sized greyscale canvas.

    Vertical labels are laid out on a swapped canvas so lines wrap against
    the reading width, then rotated 90 degrees clockwise.

    Args:
        text: Text to render; newlines force a line break
        width: Label width in pixels
        height: Label height in pixels
        options: Rendering settings

    Returns:
        'L' mode image of width x height, or None for empty text
    """
    if not text:
        return None
    options = options or TextOptions()

    vertical = options.orientation == Orientation.VERTICAL
    render_w, render_h = (height, width) if vertical else (width, height)

    background, foreground = (0, 255) if options.invert else (255, 0)
    img = Image.new('L', (render_w, render_h), background)
    draw = ImageDraw.Draw(img)
    draw.fontmode = "1"  # no antialiasing, glyph edges stay pure black/white

    font = load_font(points_to_pixels(options.font_size), options.font_path)
    ascent, descent = font.getmetrics()
    line_height = ascent + descent

    if options.word_break_only:
        lines = wrap_text_word_only(text, font, render_w - LINE_MARGIN)
    else:
        lines = wrap_text(text, font, render_w - LINE_MARGIN)

    y = (render_h - len(lines) * line_height) // 2 + ascent
    for line in lines:
        x = (render_w - measure(font, line)) // 2
        draw.text((x, y), line, fill=foreground, font=font, anchor='ls')
        y += line_height

    logger.debug(f"[Text] Rendered {len(lines)} line(s) on {render_w}x{render_h}, orientation={options.orientation.value}")

    if vertical:
        img = img.transpose(Image.Transpose.ROTATE_270)
    return img


def rasterize_text(text: str, width: int, height: int, options: Optional[TextOptions] = None,
                   threshold: int = DEFAULT_THRESHOLD) -> Optional[Bitmap]:
    """
    Render text and pack it into a Bitmap.

    Inversion is applied as colours while rendering, so packing itself never
    inverts. Returns None for empty text; there is nothing to print.
    """
    img = render_text(text, width, height, options)
    if img is None:
        return None
    return rasterize_image(img, width, height, threshold=threshold, invert=False)


def rotate_preview_for_display(img: Image.Image) -> Image.Image:
    """Rotate a vertical label 90 degrees counter-clockwise so it reads upright on screen."""
    return img.transpose(Image.Transpose.ROTATE_90)
