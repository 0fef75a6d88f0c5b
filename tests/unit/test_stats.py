"""Unit tests for statistical helpers."""

import pytest
import numpy as np

from scrna_workflow.utils.stats import (
    MAD_SCALE,
    compute_percentiles,
    mad_bounds,
    median_mad,
    robust_zscore,
    shannon_entropy,
)


class TestMedianMad:
    """Tests for median_mad."""

    def test_values(self):
        """Test median and scaled MAD."""
        median, mad = median_mad([1, 2, 3, 4, 100])
        assert median == 3.0
        assert mad == pytest.approx(1.0 * MAD_SCALE)

    def test_ignores_non_finite(self):
        """Test that NaN and inf are dropped."""
        assert median_mad([1, 2, 3, np.nan, np.inf]) == median_mad([1, 2, 3])

    def test_empty(self):
        """Test NaN output for no finite values."""
        median, mad = median_mad([np.nan])
        assert np.isnan(median) and np.isnan(mad)


class TestRobustZscore:
    """Tests for robust_zscore."""

    def test_outlier_scored(self):
        """Test that an outlier gets a large score."""
        z = robust_zscore([1, 2, 3, 4, 100])
        assert z[2] == 0.0
        assert z[4] > 10

    def test_nan_preserved(self):
        """Test that non-finite inputs stay NaN."""
        z = robust_zscore([1.0, np.nan, 3.0])
        assert np.isnan(z[1])
        assert z.shape == (3,)

    def test_zero_mad(self):
        """Test zero scores for constant input."""
        np.testing.assert_array_equal(robust_zscore([5, 5, 5]), [0.0, 0.0, 0.0])


class TestMadBounds:
    """Tests for mad_bounds."""

    def test_linear(self):
        """Test symmetric bounds around the median."""
        lower, upper = mad_bounds([1, 2, 3, 4, 5], n_mads=2)
        assert lower == pytest.approx(3 - 2 * MAD_SCALE)
        assert upper == pytest.approx(3 + 2 * MAD_SCALE)

    def test_log10(self):
        """Test bounds computed on log10 values."""
        lower, upper = mad_bounds([10, 100, 1000, 0], n_mads=1, log10=True)
        assert lower == pytest.approx(10 ** (2 - MAD_SCALE))
        assert upper == pytest.approx(10 ** (2 + MAD_SCALE))


class TestMisc:
    """Tests for percentiles and entropy."""

    def test_percentiles(self):
        """Test percentiles with NaN ignored."""
        values = compute_percentiles([0, 50, 100, np.nan], [0, 50, 100])
        np.testing.assert_allclose(values, [0, 50, 100])

    def test_percentiles_empty(self):
        """Test NaN output for no finite values."""
        assert np.isnan(compute_percentiles([], [50])).all()

    def test_entropy(self):
        """Test entropy of uniform and degenerate counts."""
        assert shannon_entropy([10, 10]) == pytest.approx(np.log(2))
        assert shannon_entropy([5, 0]) == 0.0
        assert shannon_entropy([0, 0]) == 0.0
