"""
Image rasterization for the thermal print head.
Handles fitting, luminance thresholding and 1-bit packing.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from PIL import Image, ImageOps # type: ignore

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 128


@dataclass(frozen=True)
class Bitmap:
    """
    Packed 1-bit raster, 8 pixels per byte, MSB first, row-major.

    A set bit is a dark (burned) dot.
    """

    width: int
    height: int
    data: bytes

    def __post_init__(self):
        if self.width % 8 != 0:
            raise ValueError(f"Bitmap width {self.width} is not a multiple of 8")
        expected = self.width // 8 * self.height
        if len(self.data) != expected:
            raise ValueError(f"Bitmap data is {len(self.data)} bytes, expected {expected}")

    @property
    def width_bytes(self) -> int:
        return self.width // 8

    def is_dark(self, x: int, y: int) -> bool:
        byte = self.data[y * self.width_bytes + x // 8]
        return bool(byte >> (7 - x % 8) & 1)

    def is_blank(self) -> bool:
        return not any(self.data)

    def inverted(self) -> "Bitmap":
        """Return the bitwise complement of this bitmap."""
        return Bitmap(self.width, self.height, bytes(b ^ 0xFF for b in self.data))


def pack_rows(rows: Iterable[Sequence], width: int) -> Bitmap:
    """
    Pack rows of dark flags into a Bitmap.

    Args:
        rows: One sequence of truthy (dark) / falsy (light) values per row
        width: Row width in pixels, a multiple of 8

    Returns:
        Bitmap with the rows packed MSB first
    """
    width_bytes = width // 8
    data = bytearray()
    height = 0
    for row in rows:
        if len(row) != width:
            raise ValueError(f"Row {height} has {len(row)} pixels, expected {width}")
        for byte_col in range(width_bytes):
            byte_val = 0
            for bit in range(8):
                if row[byte_col * 8 + bit]:
                    byte_val |= 1 << (7 - bit)
            data.append(byte_val)
        height += 1
    return Bitmap(width, height, bytes(data))


def unpack_rows(bitmap: Bitmap) -> List[List[bool]]:
    """Expand a Bitmap back into rows of dark flags."""
    return [
        [bitmap.is_dark(x, y) for x in range(bitmap.width)]
        for y in range(bitmap.height)
    ]


def luminance(r: int, g: int, b: int) -> int:
    """
    Grey level of an 8-bit RGB pixel.

    Weighted as ITU-R 601 on 16-bit channels (value * 257) scaled back by 256,
    so pure white stays 255.
    """
    gray = (0.299 * r + 0.587 * g + 0.114 * b) * 257 / 256
    return min(255, int(gray))


def load_image(path: str) -> Image.Image:
    """
    Open an image file for printing.

    Args:
        path: Path to a PNG, JPEG, GIF, BMP or WebP file

    Returns:
        Loaded PIL Image with EXIF orientation applied
    """
    with Image.open(path) as img:
        img = ImageOps.exif_transpose(img)
        img.load()
    logger.debug(f"[Raster] Loaded {path}: {img.size}, mode: {img.mode}")
    return img


def fit_size(src_width: int, src_height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Largest size that fits within max_width x max_height keeping the aspect ratio."""
    if src_width <= 0 or src_height <= 0:
        return 0, 0
    scale = min(max_width / src_width, max_height / src_height)
    return int(src_width * scale), int(src_height * scale)


def _to_rgb(img: Image.Image) -> Image.Image:
    """Convert to RGB, flattening any transparency onto white."""
    if img.mode in ('RGBA', 'LA') or (img.mode == 'P' and 'transparency' in img.info):
        rgba = img.convert('RGBA')
        background = Image.new('RGBA', rgba.size, (255, 255, 255, 255))
        return Image.alpha_composite(background, rgba).convert('RGB')
    if img.mode != 'RGB':
        return img.convert('RGB')
    return img


def rasterize_image(source: Image.Image, width: int, height: int,
                    threshold: int = DEFAULT_THRESHOLD, invert: bool = False) -> Bitmap:
    """
    Convert an image to a packed 1-bit bitmap for the print head.

    The image is scaled to fit (nearest neighbour) and anchored top-left;
    the rest of the label is white.

    Args:
        source: Any PIL Image
        width: Target width in pixels, a multiple of 8
        height: Target height in pixels
        threshold: Pixels with luminance below this are dark
        invert: Flip dark/light after thresholding

    Returns:
        Bitmap of exactly width x height pixels
    """
    threshold = max(0, min(256, threshold))
    new_w, new_h = fit_size(source.width, source.height, width, height)
    fitted = None
    if new_w > 0 and new_h > 0:
        fitted = _to_rgb(source).resize((new_w, new_h), Image.Resampling.NEAREST)
        pixels = fitted.load()

    logger.debug(f"[Raster] {source.size} -> {new_w}x{new_h} on {width}x{height}, threshold={threshold}, invert={invert}")

    rows = []
    for y in range(height):
        row = []
        for x in range(width):
            if fitted is not None and x < new_w and y < new_h:
                gray = luminance(*pixels[x, y])
            else:
                gray = 255
            dark = gray < threshold
            row.append(dark != invert)
        rows.append(row)

    return pack_rows(rows, width)


def preview_bitmap(bitmap: Bitmap) -> Image.Image:
    """Render a Bitmap as a greyscale image: dark dots black, the rest white."""
    img = Image.new('L', (bitmap.width, bitmap.height), 255)
    pixels = img.load()
    for y in range(bitmap.height):
        for x in range(bitmap.width):
            if bitmap.is_dark(x, y):
                pixels[x, y] = 0
    return img
