"""
Data model for tide extremes, interpolated samples and tide series.

Timestamps are float seconds since the Unix epoch. Heights are metres
relative to the station datum and may be negative.
"""
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from enum import Enum
from typing import Any, Dict, Optional, Tuple

DATE_FORMAT = "%Y-%m-%d %H:%M"


class TideType(str, Enum):
    """Explicit high/low tag of an extreme, taken from the upstream `type` field."""
    HIGH = "high"
    LOW = "low"


class TideSource(str, Enum):
    """
    Where a tide series came from.

    - STORMGLASS: interpolated from extremes returned by the Stormglass API.
    - FALLBACK: synthetic semi-diurnal curve used when the upstream is unusable.
    """
    STORMGLASS = "stormglass"
    FALLBACK = "fallback"


def format_date(timestamp: float, tz: Optional[tzinfo] = None) -> str:
    """Format an epoch timestamp as 'YYYY-MM-DD HH:MM' in `tz` (system local if None)."""
    return datetime.fromtimestamp(timestamp, tz).strftime(DATE_FORMAT)


@dataclass(frozen=True)
class ExtremePoint:
    """A single high or low tide event."""
    timestamp: float
    height: float
    tide_type: Optional[TideType] = None
    date: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dt": self.timestamp,
            "date": self.date,
            "height": self.height,
            "type": self.tide_type.value if self.tide_type is not None else None,
        }


@dataclass(frozen=True)
class SamplePoint:
    """A single point on the dense tide curve."""
    timestamp: float
    height: float
    date: str = ""

    @classmethod
    def from_extreme(cls, extreme: ExtremePoint) -> "SamplePoint":
        """Anchor sample reproducing an extreme's timestamp and height exactly."""
        return cls(timestamp=extreme.timestamp, height=extreme.height, date=extreme.date)

    def to_dict(self) -> Dict[str, Any]:
        return {"dt": self.timestamp, "date": self.date, "height": self.height}


@dataclass(frozen=True)
class Location:
    """A coastal location. Two locations are equal when their coordinates match."""
    name: str = field(compare=False)
    latitude: float
    longitude: float
    country: str = field(default="", compare=False)

    @property
    def id(self) -> str:
        return f"{self.latitude}_{self.longitude}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "lat": self.latitude,
            "lon": self.longitude,
            "country": self.country,
        }


@dataclass(frozen=True)
class TideSeries:
    """
    Result of densifying extremes (or of the synthetic fallback).

    `heights` is ordered by timestamp and, when there are at least two
    extremes, starts and ends exactly on the first and last extreme.
    Instances are never mutated; a refresh builds a new one.
    """
    heights: Tuple[SamplePoint, ...]
    extremes: Tuple[ExtremePoint, ...]
    source: TideSource
    request_lat: float
    request_lon: float
    response_lat: float
    response_lon: float
    station: str
    atlas: str
    copyright: str
    status: int = 200
    call_count: int = 1

    @property
    def is_fallback(self) -> bool:
        return self.source == TideSource.FALLBACK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.value,
            "status": self.status,
            "call_count": self.call_count,
            "copyright": self.copyright,
            "request_lat": self.request_lat,
            "request_lon": self.request_lon,
            "response_lat": self.response_lat,
            "response_lon": self.response_lon,
            "atlas": self.atlas,
            "station": self.station,
            "heights": [h.to_dict() for h in self.heights],
            "extremes": [e.to_dict() for e in self.extremes],
        }
