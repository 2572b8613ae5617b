"""
Tide Curve Synthesis

Turns a sparse list of tide extremes (typically 2-4 highs and lows per day)
into a dense, smooth height series suitable for graphing and point-in-time
height lookups.

Between two consecutive extremes the height follows an eased curve:

    shape(t) = smooth_step(t) + 0.1 * sin(pi * t)

where smooth_step(t) = t^2 * (3 - 2t) has zero slope at both ends, so the
water level slows down approaching each high and low. The small sine term
adds a mid-segment bulge and may push the curve slightly past the target
height; real tide curves overshoot a little near their inflection points too.

When the upstream data source is unusable a synthetic semi-diurnal series is
generated instead. Both producers return a `TideSeries`, so callers can treat
them interchangeably and tell them apart through `TideSeries.source`.

Everything here is a pure function of its arguments: no I/O, no clock reads,
no logging.
"""
import math
from datetime import tzinfo
from typing import List, Optional, Sequence

import numpy as np

from .errors import MalformedInputError
from .tide_models import (
    ExtremePoint,
    Location,
    SamplePoint,
    TideSeries,
    TideSource,
    TideType,
    format_date,
)

# Interpolation density: at least 8 steps per segment, otherwise one every 5 minutes
MIN_SEGMENT_POINTS = 8
MINUTES_PER_SAMPLE = 5

# Amplitude of the sine perturbation added to the smooth step
SHAPE_SINE_AMPLITUDE = 0.1

# Synthetic fallback tide
FALLBACK_SAMPLE_COUNT = 96          # 24 hours
FALLBACK_INTERVAL_MINUTES = 15
FALLBACK_EXTREME_EVERY = 24         # samples per 6 hours
FALLBACK_M2_PERIOD_HOURS = 12.42    # principal lunar semidiurnal
FALLBACK_M2_AMPLITUDE = 1.5
FALLBACK_HARMONIC_PERIOD_HOURS = 24.84
FALLBACK_HARMONIC_AMPLITUDE = 0.2
FALLBACK_HIGH_HEIGHT = 2.5
FALLBACK_LOW_HEIGHT = -0.5

STORMGLASS_ATLAS = "Stormglass"
STORMGLASS_COPYRIGHT = "Stormglass API"
FALLBACK_ATLAS = "Demo"
FALLBACK_COPYRIGHT = "Mock Data (API Fallback)"


def smooth_step(t):
    """Cubic ease curve t^2 * (3 - 2t). Accepts floats or numpy arrays."""
    return t * t * (3.0 - 2.0 * t)


def curve_shape(t):
    """
    Map normalized segment time to normalized height progress.

    Args:
        t: Position within the segment, 0 at the first extreme and 1 at the next.
           Either a float or a numpy array.

    Returns:
        smooth_step(t) + 0.1 * sin(pi * t). Exactly 0.0 at t=0 and 1.0 at t=1;
        within 0.1 of smooth_step(t) on [0, 1]. Floats in, float out.
    """
    shaped = smooth_step(t) + SHAPE_SINE_AMPLITUDE * np.sin(np.pi * t)
    if np.ndim(shaped) == 0:
        return float(shaped)
    return shaped


def segment_points_count(delta_seconds: float) -> int:
    """Number of steps used to subdivide a segment lasting `delta_seconds`."""
    minutes_between = int(delta_seconds / 60)
    return max(MIN_SEGMENT_POINTS, minutes_between // MINUTES_PER_SAMPLE)


def validate_extremes(extremes: Sequence[ExtremePoint]) -> None:
    """
    Reject extremes that would produce a corrupt series.

    Raises:
        MalformedInputError: If a timestamp or height is not finite, or if
            timestamps are not strictly ascending.
    """
    previous = None
    for index, extreme in enumerate(extremes):
        if not math.isfinite(extreme.timestamp):
            raise MalformedInputError(f"Extreme {index} has a non-finite timestamp")
        if not math.isfinite(extreme.height):
            raise MalformedInputError(f"Extreme {index} has a non-finite height")
        if previous is not None and extreme.timestamp <= previous.timestamp:
            raise MalformedInputError(
                f"Extremes must be strictly ascending in time: extreme {index} "
                f"({extreme.timestamp}) is not after extreme {index - 1} ({previous.timestamp})"
            )
        previous = extreme


def interpolate_extremes(
    extremes: Sequence[ExtremePoint],
    tz: Optional[tzinfo] = None,
) -> List[SamplePoint]:
    """
    Densify an ordered list of extremes into a smooth height series.

    Each extreme is emitted as an anchor sample. Between consecutive extremes
    `points_count - 1` interior samples are inserted at ratios j / points_count,
    with the height eased by `curve_shape`. The final extreme is appended once,
    after all segments.

    Args:
        extremes: Extremes ordered strictly by timestamp
        tz: Timezone for the display date of interpolated samples (system local if None)

    Returns:
        Samples strictly increasing in time. Fewer than two extremes are
        returned unchanged as samples.

    Raises:
        MalformedInputError: If the extremes fail `validate_extremes`.
    """
    validate_extremes(extremes)

    if len(extremes) < 2:
        return [SamplePoint.from_extreme(e) for e in extremes]

    samples = []
    for current, following in zip(extremes[:-1], extremes[1:]):
        samples.append(SamplePoint.from_extreme(current))

        delta_t = following.timestamp - current.timestamp
        delta_h = following.height - current.height
        points_count = segment_points_count(delta_t)

        ratios = np.arange(1, points_count) / points_count
        timestamps = current.timestamp + delta_t * ratios
        heights = current.height + delta_h * curve_shape(ratios)

        for timestamp, height in zip(timestamps.tolist(), heights.tolist()):
            samples.append(SamplePoint(
                timestamp=timestamp,
                height=height,
                date=format_date(timestamp, tz),
            ))

    samples.append(SamplePoint.from_extreme(extremes[-1]))
    return samples


def build_tide_series(
    extremes: Sequence[ExtremePoint],
    location: Location,
    response_lat: Optional[float] = None,
    response_lon: Optional[float] = None,
    station: Optional[str] = None,
    call_count: int = 1,
    tz: Optional[tzinfo] = None,
) -> TideSeries:
    """
    Interpolate upstream extremes and attach provenance.

    Args:
        extremes: Extremes decoded from the upstream response
        location: The requested location
        response_lat: Latitude reported by the upstream (defaults to the request)
        response_lon: Longitude reported by the upstream (defaults to the request)
        station: Station name reported by the upstream (defaults to the location name)
        call_count: Upstream request counter
        tz: Timezone for display dates

    Returns:
        TideSeries with source STORMGLASS
    """
    heights = interpolate_extremes(extremes, tz)
    return TideSeries(
        heights=tuple(heights),
        extremes=tuple(extremes),
        source=TideSource.STORMGLASS,
        request_lat=location.latitude,
        request_lon=location.longitude,
        response_lat=location.latitude if response_lat is None else response_lat,
        response_lon=location.longitude if response_lon is None else response_lon,
        station=station or location.name,
        atlas=STORMGLASS_ATLAS,
        copyright=STORMGLASS_COPYRIGHT,
        status=200,
        call_count=call_count,
    )


def fallback_height(hours):
    """Synthetic semi-diurnal tide height `hours` after the series start."""
    return (FALLBACK_M2_AMPLITUDE * np.sin(2 * np.pi * hours / FALLBACK_M2_PERIOD_HOURS)
            + FALLBACK_HARMONIC_AMPLITUDE * np.sin(2 * np.pi * hours / FALLBACK_HARMONIC_PERIOD_HOURS))


def generate_fallback_series(
    location: Location,
    now: float,
    tz: Optional[tzinfo] = None,
) -> TideSeries:
    """
    Build a synthetic 24 hour tide series without any upstream data.

    96 samples at 15 minute spacing starting at `now`. Extremes are marked
    every 6 hours at fixed heights (+2.5 high, -0.5 low) and are not taken
    from the curve itself, which is good enough for a degraded display.

    Args:
        location: Used only for provenance fields
        now: Series start, epoch seconds
        tz: Timezone for display dates

    Returns:
        TideSeries with source FALLBACK
    """
    indices = np.arange(FALLBACK_SAMPLE_COUNT)
    offsets = indices * FALLBACK_INTERVAL_MINUTES * 60
    heights = fallback_height(indices * (FALLBACK_INTERVAL_MINUTES / 60.0))

    samples = []
    extremes = []
    for i, offset, height in zip(indices.tolist(), offsets.tolist(), heights.tolist()):
        timestamp = now + offset
        date = format_date(timestamp, tz)
        samples.append(SamplePoint(timestamp=timestamp, height=height, date=date))

        position = i % FALLBACK_EXTREME_EVERY
        if position == 0:
            extremes.append(ExtremePoint(timestamp, FALLBACK_HIGH_HEIGHT, TideType.HIGH, date))
        elif position == FALLBACK_EXTREME_EVERY // 2:
            extremes.append(ExtremePoint(timestamp, FALLBACK_LOW_HEIGHT, TideType.LOW, date))

    return TideSeries(
        heights=tuple(samples),
        extremes=tuple(extremes),
        source=TideSource.FALLBACK,
        request_lat=location.latitude,
        request_lon=location.longitude,
        response_lat=location.latitude,
        response_lon=location.longitude,
        station=location.name,
        atlas=FALLBACK_ATLAS,
        copyright=FALLBACK_COPYRIGHT,
        status=200,
        call_count=1,
    )
