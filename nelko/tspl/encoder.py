"""
TSPL command stream builder for the P21.

Every command is an ASCII line terminated with CRLF. The BITMAP command
carries its raster inline: the printer reads exactly width_bytes * height
raw bytes after the header, so the payload is not escaped.
"""

import logging

from nelko.image.raster import Bitmap
from nelko.tspl.labels import LabelSize

logger = logging.getLogger(__name__)

CRLF = b"\r\n"

BATTERY_QUERY = "BATTERY?"
CONFIG_QUERY = "CONFIG?"

# ESC ! o clears a paused job, ESC ! ? asks for the status byte
CANCEL_PAUSE = b"\x1b!o"
STATUS_QUERY = b"\x1b!?"

DENSITY_MIN = 0
DENSITY_MAX = 15

LABEL_GAP_MM = 5.0
LABEL_GAP_OFFSET_MM = 0.0


def clamp_density(level: int) -> int:
    """Clamp a print darkness level into the printer's 0-15 range."""
    return max(DENSITY_MIN, min(DENSITY_MAX, int(level)))


class LabelCommand:
    """Fluent builder for a TSPL label job."""

    def __init__(self):
        self._buf = bytearray()

    def _line(self, text: str) -> "LabelCommand":
        self._buf += text.encode("ascii") + CRLF
        return self

    def size(self, width_mm: float, height_mm: float) -> "LabelCommand":
        return self._line(f"SIZE {width_mm:.1f} mm,{height_mm:.1f} mm")

    def gap(self, gap_mm: float, offset_mm: float) -> "LabelCommand":
        return self._line(f"GAP {gap_mm:.1f} mm,{offset_mm:.1f} mm")

    def direction(self, direction: int, mirror: int) -> "LabelCommand":
        return self._line(f"DIRECTION {direction},{mirror}")

    def density(self, level: int) -> "LabelCommand":
        return self._line(f"DENSITY {clamp_density(level)}")

    def cls(self) -> "LabelCommand":
        return self._line("CLS")

    def bitmap(self, x: int, y: int, width_bytes: int, height: int, data: bytes) -> "LabelCommand":
        """
        Append a BITMAP command with its raw raster.

        Args:
            x: Horizontal position in dots
            y: Vertical position in dots
            width_bytes: Row width in bytes (pixels / 8)
            height: Number of rows
            data: Packed 1-bit raster, width_bytes * height bytes
        """
        self._buf += f"BITMAP {x},{y},{width_bytes},{height},1,".encode("ascii")
        self._buf += data
        self._buf += CRLF
        return self

    def print_copies(self, copies: int) -> "LabelCommand":
        return self._line(f"PRINT {copies}")

    def to_bytes(self) -> bytes:
        return bytes(self._buf)

    def __bytes__(self):
        return self.to_bytes()

    def __len__(self):
        return len(self._buf)


def encode_job(label: LabelSize, density: int, bitmap: Bitmap, copies: int = 1) -> bytes:
    """
    Build the complete print job for one label.

    Geometry comes from the label; the bitmap is embedded as-is, so a bitmap
    rendered for a different label produces a malformed stream rather than
    an error.

    Args:
        label: Label size being printed
        density: Print darkness, clamped to 0-15
        bitmap: Packed raster for the label
        copies: Number of copies to print

    Returns:
        Raw bytes ready to be written to the printer
    """
    job = (
        LabelCommand()
        .size(label.width_mm, label.height_mm)
        .gap(LABEL_GAP_MM, LABEL_GAP_OFFSET_MM)
        .direction(0, 0)
        .density(density)
        .cls()
        .bitmap(0, 0, label.pixel_width // 8, label.pixel_height, bitmap.data)
        .print_copies(copies)
        .to_bytes()
    )
    logger.debug(f"[TSPL] Encoded {label.name} job: {len(job)} bytes, density={clamp_density(density)}, copies={copies}")
    return job
