"""
Unit tests for the label size catalog.
"""

import pytest

from nelko.printer.exceptions import InvalidConfigurationError
from nelko.tspl.labels import ALL_SIZES, DEFAULT_LABEL, LabelSize, get_label_size


class TestLabelCatalog:
    """Test the static label sizes."""

    def test_every_width_packs_into_whole_bytes(self):
        """Every label's pixel width is a multiple of 8."""
        for size in ALL_SIZES:
            assert size.pixel_width % 8 == 0, size.name

    def test_widths_match_print_head(self):
        for size in ALL_SIZES:
            assert size.pixel_width == 96
            assert size.width_bytes == 12

    def test_names_are_unique(self):
        names = [s.name for s in ALL_SIZES]
        assert len(names) == len(set(names))

    def test_default_label(self):
        assert DEFAULT_LABEL.name == "14x40mm"
        assert (DEFAULT_LABEL.pixel_width, DEFAULT_LABEL.pixel_height) == (96, 284)


class TestLabelSize:

    def test_rejects_unpackable_width(self):
        with pytest.raises(ValueError):
            LabelSize("bad", 10.0, 10.0, 100, 80)

    def test_is_immutable(self):
        with pytest.raises(AttributeError):
            DEFAULT_LABEL.pixel_height = 10

    def test_lookup_by_name(self):
        size = get_label_size("14x75mm")
        assert size.pixel_height == 532

    def test_unknown_name(self):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            get_label_size("20x20mm")

        assert "20x20mm" in str(exc_info.value)
        assert "14x40mm" in str(exc_info.value)
