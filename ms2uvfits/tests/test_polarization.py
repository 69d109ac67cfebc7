"""
Tests for polarization mapping.
"""

import numpy as np
import pytest

from ms2uvfits.core.polarization import (
    FEED_LINEAR, FEED_CIRCULAR, FEED_STOKES,
    detect_feed_type, map_polarizations, get_pol_labels,
)
from ms2uvfits.errors import UnsupportedLayout


class TestDetectFeedType:
    """Test feed type detection from CORR_TYPE."""

    def test_linear(self):
        assert detect_feed_type([9, 10, 11, 12]) == FEED_LINEAR

    def test_circular(self):
        assert detect_feed_type(np.array([5, 8])) == FEED_CIRCULAR

    def test_stokes(self):
        assert detect_feed_type([1]) == FEED_STOKES

    def test_mixed_basis(self):
        with pytest.raises(UnsupportedLayout):
            detect_feed_type([9, 5])

    def test_unknown_code(self):
        with pytest.raises(UnsupportedLayout):
            detect_feed_type([13])

    def test_empty(self):
        with pytest.raises(UnsupportedLayout):
            detect_feed_type([])


class TestMapPolarizations:
    """Test mapping onto a regular STOKES axis."""

    def test_full_linear(self):
        """MS order XX XY YX YY becomes XX YY XY YX."""
        layout = map_polarizations([9, 10, 11, 12])
        assert layout.order == (0, 3, 1, 2)
        assert layout.codes == (-5, -6, -7, -8)
        assert layout.labels == ("XX", "YY", "XY", "YX")
        assert layout.crval == -5.0
        assert layout.cdelt == -1.0
        assert layout.n_pol == 4

    def test_full_circular(self):
        layout = map_polarizations([5, 6, 7, 8])
        assert layout.labels == ("RR", "LL", "RL", "LR")
        assert layout.crval == -1.0

    def test_parallel_hands(self):
        layout = map_polarizations([9, 12])
        assert layout.order == (0, 1)
        assert layout.n_pol == 2

    def test_reversed_parallel_hands(self):
        layout = map_polarizations([12, 9])
        assert layout.order == (1, 0)
        assert layout.codes == (-5, -6)

    def test_single_stokes(self):
        layout = map_polarizations([1])
        assert layout.crval == 1.0
        assert layout.cdelt == 1.0

    def test_irregular_axis(self):
        """XX and XY do not form a step of -1."""
        with pytest.raises(UnsupportedLayout):
            map_polarizations([9, 10])

    def test_repeated(self):
        with pytest.raises(UnsupportedLayout):
            map_polarizations([9, 9])

    def test_also_value_error(self):
        with pytest.raises(ValueError):
            map_polarizations([9, 5])


class TestPolLabels:
    """Test feed labels."""

    def test_labels(self):
        assert get_pol_labels(FEED_LINEAR) == ("X", "Y")
        assert get_pol_labels(FEED_CIRCULAR) == ("R", "L")
        assert get_pol_labels(FEED_STOKES) == ("", "")

    def test_layout_feed_labels(self):
        assert map_polarizations([5, 8]).feed_labels() == ("R", "L")

    def test_unknown(self):
        with pytest.raises(ValueError):
            get_pol_labels("elliptical")
