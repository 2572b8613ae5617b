"""
Chart and table helpers for displaying a tide series.
"""
import math
from datetime import datetime, tzinfo
from typing import Dict, List, Optional, Sequence, Tuple

from .tide_models import SamplePoint

DEFAULT_RANGE = (-2.0, 2.0)
MIN_PADDING_METERS = 0.5
PADDING_FRACTION = 0.1


def format_height(height: float) -> str:
    """Height in metres with one decimal, e.g. '1.3m'."""
    return f"{height:.1f}m"


def display_height_range(samples: Sequence[SamplePoint]) -> Tuple[float, float]:
    """
    Vertical axis range for a tide chart.

    The data range is padded by 10% of the span (at least 0.5 m) on both
    sides. Empty, flat or non-finite data gets the default (-2.0, 2.0).
    """
    if not samples:
        return DEFAULT_RANGE

    heights = [s.height for s in samples]
    min_height = min(heights)
    max_height = max(heights)

    if not (math.isfinite(min_height) and math.isfinite(max_height)) or min_height == max_height:
        return DEFAULT_RANGE

    padding = max(MIN_PADDING_METERS, (max_height - min_height) * PADDING_FRACTION)
    return min_height - padding, max_height + padding


def _project(height: float, value_range: Tuple[float, float], chart_height: float) -> Optional[float]:
    low, high = value_range
    normalized = (height - low) / (high - low)
    if not math.isfinite(normalized) or normalized < 0 or normalized > 1:
        return None
    return chart_height - normalized * chart_height


def chart_points(samples: Sequence[SamplePoint], width: float, height: float) -> List[Tuple[float, float]]:
    """
    Project samples onto a width x height drawing region.

    x is spaced evenly by sample index, y grows downwards so higher tides
    are drawn higher. Samples that cannot be placed are skipped.
    """
    if len(samples) < 2:
        return []

    value_range = display_height_range(samples)
    step = width / (len(samples) - 1)

    points = []
    for index, sample in enumerate(samples):
        if not math.isfinite(sample.height):
            continue
        y = _project(sample.height, value_range, height)
        if y is None:
            continue
        points.append((index * step, y))

    if len(points) < 2:
        return []
    return points


def current_position(
    samples: Sequence[SamplePoint],
    height_now: Optional[float],
    now: float,
    width: float,
    height: float,
) -> Optional[Tuple[float, float]]:
    """Chart position of the current-height marker, or None when it cannot be placed."""
    if height_now is None or not math.isfinite(height_now) or len(samples) < 2:
        return None

    index = next((i for i, s in enumerate(samples) if s.timestamp >= now), None)
    if index is None:
        return None

    y = _project(height_now, display_height_range(samples), height)
    if y is None:
        return None
    return index * (width / (len(samples) - 1)), y


def axis_labels(samples: Sequence[SamplePoint]) -> List[str]:
    """Top, middle and bottom labels of the chart's height axis."""
    low, high = display_height_range(samples)
    return [format_height(high), format_height((high + low) / 2), format_height(low)]


def table_rows(samples: Sequence[SamplePoint], tz: Optional[tzinfo] = None) -> List[Dict[str, str]]:
    """
    Rows for the tide table: local time, date and height.

    Args:
        samples: Samples or extremes to list
        tz: Display timezone (system local if None)

    Returns:
        List of dicts with 'time' (HH:MM), 'date' (e.g. 'Oct 18, 2026') and 'height'
    """
    rows = []
    for sample in samples:
        local = datetime.fromtimestamp(sample.timestamp, tz)
        rows.append({
            "time": local.strftime("%H:%M"),
            "date": f"{local.strftime('%b')} {local.day}, {local.year}",
            "height": format_height(sample.height),
        })
    return rows
