"""
Read-only queries over a built TideSeries.

Every helper takes "now" explicitly as epoch seconds so results depend only
on the arguments.
"""
from datetime import datetime, tzinfo
from typing import List, Optional, Sequence, Tuple, TypeVar

from .tide_models import ExtremePoint, SamplePoint, TideSeries, TideType

SECONDS_PER_DAY = 24 * 60 * 60

T = TypeVar("T", SamplePoint, ExtremePoint)


def extreme_kind(extreme: ExtremePoint) -> Optional[TideType]:
    """
    Classify an extreme as high or low.

    Uses the explicit tag set at ingestion. Untagged extremes fall back to
    the sign of the height: positive is high, negative is low, zero is neither.
    """
    if extreme.tide_type is not None:
        return extreme.tide_type
    if extreme.height > 0:
        return TideType.HIGH
    if extreme.height < 0:
        return TideType.LOW
    return None


def current_height(series: TideSeries, now: float) -> Optional[float]:
    """Height of the first sample at or after `now`, or None if the series is in the past."""
    for sample in series.heights:
        if sample.timestamp >= now:
            return sample.height
    return None


def _next_extreme(series: TideSeries, now: float, kind: TideType) -> Optional[ExtremePoint]:
    for extreme in series.extremes:
        if extreme.timestamp > now and extreme_kind(extreme) == kind:
            return extreme
    return None


def next_high_extreme(series: TideSeries, now: float) -> Optional[ExtremePoint]:
    """First high tide strictly after `now`."""
    return _next_extreme(series, now, TideType.HIGH)


def next_low_extreme(series: TideSeries, now: float) -> Optional[ExtremePoint]:
    """First low tide strictly after `now`."""
    return _next_extreme(series, now, TideType.LOW)


def start_of_local_day(now: float, tz: Optional[tzinfo] = None) -> float:
    """
    Epoch seconds of the local midnight starting the calendar day of `now`.

    Args:
        now: Epoch seconds
        tz: Timezone of the observer (system local if None)
    """
    local = datetime.fromtimestamp(now, tz)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.timestamp()


def day_window(now: float, tz: Optional[tzinfo] = None) -> Tuple[float, float]:
    """Half-open window [local midnight, local midnight + 24h) containing `now`."""
    start = start_of_local_day(now, tz)
    return start, start + SECONDS_PER_DAY


def windowed_24h(points: Sequence[T], now: float, tz: Optional[tzinfo] = None) -> List[T]:
    """Keep the samples or extremes that fall within today's local 24 hour window."""
    start, end = day_window(now, tz)
    return [p for p in points if start <= p.timestamp < end]


def heights_for_24_hours(series: TideSeries, now: float, tz: Optional[tzinfo] = None) -> List[SamplePoint]:
    return windowed_24h(series.heights, now, tz)


def extremes_for_24_hours(series: TideSeries, now: float, tz: Optional[tzinfo] = None) -> List[ExtremePoint]:
    return windowed_24h(series.extremes, now, tz)
