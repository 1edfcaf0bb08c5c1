"""Tests for trend helpers."""

import pytest

from mobility_engine.analysis.trends import normalized_trend, population_std


def test_normalized_trend_is_slope_over_mean():
    """Test that a steady 2 W rise around a 24 W mean is about 8% per session."""
    assert normalized_trend([20.0, 22.0, 24.0, 26.0, 28.0]) == pytest.approx(2 / 24)


def test_falling_values_have_negative_trend():
    assert normalized_trend([30.0, 27.0, 24.0]) < 0


@pytest.mark.parametrize("values", [[], [25.0], [0.0, 0.0, 0.0], [-5.0, 5.0, -10.0]])
def test_normalized_trend_degenerate_inputs(values):
    """Test that short series and non-positive means report no trend."""
    assert normalized_trend(values) == 0.0


def test_population_std():
    assert population_std([20.0, 22.0, 24.0, 26.0, 28.0]) == pytest.approx(8**0.5)
    assert population_std([]) == 0.0
