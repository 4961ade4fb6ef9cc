"""
Supported label sizes for the P21 print head.
"""

from dataclasses import dataclass
from typing import List

from nelko.printer.exceptions import InvalidConfigurationError

DPI = 203
PRINTHEAD_DOTS = 96


@dataclass(frozen=True)
class LabelSize:
    """Physical label size and its pixel footprint at the printer's DPI."""

    name: str
    width_mm: float
    height_mm: float
    pixel_width: int
    pixel_height: int

    def __post_init__(self):
        if self.pixel_width % 8 != 0:
            raise ValueError(f"Label {self.name}: pixel width {self.pixel_width} is not a multiple of 8")

    @property
    def width_bytes(self) -> int:
        return self.pixel_width // 8


LABEL_12X40 = LabelSize("12x40mm", 12.0, 40.0, PRINTHEAD_DOTS, 284)
LABEL_14X40 = LabelSize("14x40mm", 14.0, 40.0, PRINTHEAD_DOTS, 284)
LABEL_14X50 = LabelSize("14x50mm", 14.0, 50.0, PRINTHEAD_DOTS, 355)
LABEL_14X75 = LabelSize("14x75mm", 14.0, 75.0, PRINTHEAD_DOTS, 532)
LABEL_15X30 = LabelSize("15x30mm", 15.0, 30.0, PRINTHEAD_DOTS, 213)

ALL_SIZES: List[LabelSize] = [LABEL_12X40, LABEL_14X40, LABEL_14X50, LABEL_14X75, LABEL_15X30]

DEFAULT_LABEL = LABEL_14X40


def get_label_size(name: str) -> LabelSize:
    """
    Look up a label size by name.

    Args:
        name: Catalog name, e.g. '14x40mm'

    Returns:
        The matching LabelSize

    Raises:
        InvalidConfigurationError: If no label has that name
    """
    for size in ALL_SIZES:
        if size.name == name:
            return size
    raise InvalidConfigurationError(
        f"Unknown label size: {name}",
        context={'available': ", ".join(s.name for s in ALL_SIZES)}
    )
