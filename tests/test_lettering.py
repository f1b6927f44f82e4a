"""
Tests for appendix lettering.

Appendices are lettered like spreadsheet columns: A..Z, AA..AZ, BA, ...
"""

import string

import pytest

from qualtrics_html_results import appendix_lettering


class TestAppendixLettering:
    """Test the bijective base-26 conversion."""

    @pytest.mark.parametrize("number, expected", [
        (1, "A"),
        (2, "B"),
        (26, "Z"),
        (27, "AA"),
        (52, "AZ"),
        (53, "BA"),
        (702, "ZZ"),
        (703, "AAA"),
        (1000, "ALL"),
    ])
    def test_known_values(self, number, expected):
        assert appendix_lettering(number) == expected

    def test_only_uses_capital_letters(self):
        for number in range(1, 2000):
            label = appendix_lettering(number)
            assert label
            assert all(letter in string.ascii_uppercase for letter in label)

    def test_labels_are_unique(self):
        labels = [appendix_lettering(number) for number in range(1, 2000)]
        assert len(set(labels)) == len(labels)

    def test_smaller_alphabet(self):
        """With a three letter alphabet, 4 is the first two letter label."""
        assert appendix_lettering(3, base=3) == "C"
        assert appendix_lettering(4, base=3) == "AA"
        assert appendix_lettering(12, base=3) == "CC"
        assert appendix_lettering(13, base=3) == "AAA"


class TestAppendixLetteringErrors:
    """Invalid arguments are reported, not silently mapped."""

    @pytest.mark.parametrize("number", [0, -1])
    def test_non_positive_number(self, number):
        with pytest.raises(ValueError):
            appendix_lettering(number)

    @pytest.mark.parametrize("base", [0, 27])
    def test_base_out_of_range(self, base):
        with pytest.raises(ValueError):
            appendix_lettering(5, base=base)
