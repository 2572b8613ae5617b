"""
Unit tests for chart and table helpers
"""
from datetime import timezone

import pytest

from app.presentation import (
    axis_labels,
    chart_points,
    current_position,
    display_height_range,
    format_height,
    table_rows,
)
from app.tide_models import ExtremePoint, SamplePoint, TideType


def samples_from(heights, start=0.0, step=600.0):
    return [SamplePoint(start + i * step, h) for i, h in enumerate(heights)]


class TestDisplayRange:
    """Tests for chart auto-ranging."""

    def test_empty_uses_default(self):
        assert display_height_range([]) == (-2.0, 2.0)

    def test_flat_series_uses_default(self):
        """A flat line has no span to scale to."""
        assert display_height_range(samples_from([0.7, 0.7, 0.7])) == (-2.0, 2.0)

    def test_non_finite_uses_default(self):
        assert display_height_range(samples_from([0.1, float('inf')])) == (-2.0, 2.0)

    def test_small_span_gets_minimum_padding(self):
        """Spans under 5m are padded by half a metre."""
        assert display_height_range(samples_from([-1.0, 2.0])) == pytest.approx((-1.5, 2.5))

    def test_large_span_gets_proportional_padding(self):
        """Spans over 5m are padded by 10%."""
        assert display_height_range(samples_from([-2.0, 8.0])) == pytest.approx((-3.0, 9.0))


class TestChartPoints:
    """Tests for projecting samples onto a drawing region."""

    def test_points_span_width(self):
        points = chart_points(samples_from([0.0, 1.0, 2.0]), width=100, height=50)
        assert [x for x, _ in points] == [0.0, 50.0, 100.0]

    def test_higher_tides_drawn_higher(self):
        """Screen y grows downwards, so rising water means falling y."""
        points = chart_points(samples_from([0.0, 1.0, 2.0]), width=100, height=50)
        ys = [y for _, y in points]
        assert ys[0] > ys[1] > ys[2]
        # range is (-0.5, 2.5): height 0.0 sits one sixth of the way up
        assert ys[0] == pytest.approx(50 - 50 / 6)

    def test_non_finite_samples_skipped(self):
        points = chart_points(samples_from([0.0, float('nan'), 2.0]), width=100, height=50)
        assert [x for x, _ in points] == [0.0, 100.0]

    def test_too_few_samples(self):
        assert chart_points(samples_from([1.0]), width=100, height=50) == []

    def test_current_position(self):
        """The marker sits at the first sample at or after now."""
        samples = samples_from([0.0, 1.0, 2.0])
        x, y = current_position(samples, 1.0, now=500.0, width=100, height=50)
        assert x == 50.0
        assert y == pytest.approx(25.0)

    def test_current_position_unavailable(self):
        samples = samples_from([0.0, 1.0, 2.0])
        assert current_position(samples, None, now=0.0, width=100, height=50) is None
        assert current_position(samples, 1.0, now=10_000.0, width=100, height=50) is None


class TestTable:
    """Tests for tide table formatting."""

    def test_format_height(self):
        assert format_height(1.26) == "1.3m"
        assert format_height(-0.04) == "-0.0m"
        assert format_height(2) == "2.0m"

    def test_table_rows(self):
        rows = table_rows(
            [ExtremePoint(0.0, 1.26, TideType.HIGH), ExtremePoint(6 * 3600 + 15 * 60, -0.71, TideType.LOW)],
            tz=timezone.utc,
        )
        assert rows == [
            {"time": "00:00", "date": "Jan 1, 1970", "height": "1.3m"},
            {"time": "06:15", "date": "Jan 1, 1970", "height": "-0.7m"},
        ]

    def test_axis_labels(self):
        assert axis_labels(samples_from([-1.0, 2.0])) == ["2.5m", "0.5m", "-1.5m"]
