"""
Tide Service - orchestration around the tide curve core

Fetches extremes from Stormglass, densifies them into a TideSeries and, if
the upstream fails or returns unusable data, substitutes the synthetic
fallback series. Callers can tell the two apart through `TideSeries.source`.

Also holds the small amount of state an interactive client needs:

- LocationStore: the selected location, with change callbacks
- TideForecast: the latest series plus derived values (current height,
  next high/low). A newer refresh always wins over an older one that
  finishes later; state is replaced as a whole, never merged.
"""
import logging
import threading
import time
from datetime import tzinfo
from typing import Any, Callable, Dict, List, Optional

from .config import Settings
from .errors import MalformedInputError, UpstreamUnavailableError
from .stormglass_client import StormglassClient
from .tide_curve import build_tide_series, generate_fallback_series
from .tide_models import ExtremePoint, Location, TideSeries
from .tide_queries import current_height, next_high_extreme, next_low_extreme

logger = logging.getLogger(__name__)


class TideResult:
    """A tide series together with the upstream error that forced a fallback, if any."""

    def __init__(self, series: TideSeries, error_message: Optional[str] = None):
        self.series = series
        self.error_message = error_message


class TideService:
    """Produces a TideSeries for a location, falling back to synthetic data on failure."""

    def __init__(self, settings: Settings, client: Optional[StormglassClient] = None):
        self.settings = settings
        self.client = client or StormglassClient(settings)

    def get_tide_result(
        self,
        location: Location,
        now: Optional[float] = None,
        tz: Optional[tzinfo] = None,
    ) -> TideResult:
        """
        Fetch and interpolate tides for `location`.

        Args:
            location: Location to forecast
            now: Start of the forecast window, epoch seconds (current time if None)
            tz: Timezone for display dates (system local if None)

        Returns:
            TideResult whose series is either interpolated from Stormglass
            extremes or the synthetic fallback, with the reason for the fallback
        """
        if now is None:
            now = time.time()

        try:
            response = self.client.fetch_extremes(location, now, tz)
            series = build_tide_series(
                response.extremes,
                location,
                response_lat=response.response_lat,
                response_lon=response.response_lon,
                station=response.station,
                call_count=response.request_count,
                tz=tz,
            )
            return TideResult(series)
        except UpstreamUnavailableError as e:
            logger.warning(f"Upstream unavailable for {location.name}, using fallback tides: {e.message}")
            return TideResult(generate_fallback_series(location, now, tz), e.message)
        except MalformedInputError as e:
            logger.warning(f"Malformed extremes for {location.name}, using fallback tides: {e}")
            return TideResult(generate_fallback_series(location, now, tz), str(e))

    def get_tide_series(
        self,
        location: Location,
        now: Optional[float] = None,
        tz: Optional[tzinfo] = None,
    ) -> TideSeries:
        """Like `get_tide_result`, returning only the series."""
        return self.get_tide_result(location, now, tz).series


LocationListener = Callable[[Location], None]


class LocationStore:
    """In-memory list of locations and the currently selected one."""

    def __init__(self):
        self._lock = threading.Lock()
        self.saved_locations: List[Location] = []
        self.current_location: Optional[Location] = None
        self._listeners: List[LocationListener] = []

    def subscribe(self, listener: LocationListener) -> Callable[[], None]:
        """Register a callback invoked with the new current location. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def add_location(self, location: Location) -> None:
        """Save a location; the first one saved becomes current."""
        with self._lock:
            if location not in self.saved_locations:
                self.saved_locations.append(location)
            make_current = self.current_location is None
        if make_current:
            self.set_current_location(location)

    def set_current_location(self, location: Location) -> None:
        with self._lock:
            if location not in self.saved_locations:
                self.saved_locations.append(location)
            self.current_location = location
        for listener in list(self._listeners):
            listener(location)

    def remove_location(self, location: Location) -> None:
        """Forget a location; removing the current one selects the first remaining."""
        with self._lock:
            self.saved_locations = [saved for saved in self.saved_locations if saved != location]
            if self.current_location != location:
                return
            self.current_location = self.saved_locations[0] if self.saved_locations else None
            replacement = self.current_location
        if replacement is not None:
            for listener in list(self._listeners):
                listener(replacement)


class TideForecast:
    """
    Latest tide forecast for the selected location.

    `refresh` may be called concurrently. Each call takes a generation number;
    only the newest generation may publish, so a slow, superseded fetch never
    overwrites a newer result.
    """

    def __init__(
        self,
        service: TideService,
        clock: Callable[[], float] = time.time,
        tz: Optional[tzinfo] = None,
    ):
        self.service = service
        self.clock = clock
        self.tz = tz
        self._lock = threading.Lock()
        self._generation = 0
        self._requested: Optional[Location] = None
        self.location: Optional[Location] = None
        self.series: Optional[TideSeries] = None
        self.error_message: Optional[str] = None
        self.current_height: Optional[float] = None
        self.next_high: Optional[ExtremePoint] = None
        self.next_low: Optional[ExtremePoint] = None
        self.updated_at: Optional[float] = None

    def attach(self, store: LocationStore, settings: Settings) -> None:
        """Refresh whenever the current location or the API key changes."""
        store.subscribe(self.refresh)
        settings.subscribe(lambda _key: self._refresh_current())

    def _refresh_current(self) -> None:
        with self._lock:
            location = self._requested
        if location is not None:
            self.refresh(location)

    def refresh(self, location: Location) -> bool:
        """
        Fetch a new forecast for `location`.

        Returns:
            True if this refresh published its result, False if a newer
            refresh started in the meantime
        """
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._requested = location
            tz = self.tz

        now = self.clock()
        result = self.service.get_tide_result(location, now, tz)
        series = result.series

        with self._lock:
            if generation != self._generation:
                logger.debug(f"Discarding superseded forecast for {location.name}")
                return False
            self.location = location
            self.series = series
            self.error_message = result.error_message
            self.current_height = current_height(series, now)
            self.next_high = next_high_extreme(series, now)
            self.next_low = next_low_extreme(series, now)
            self.updated_at = now
        return True

    def snapshot(self) -> Dict[str, Any]:
        """Consistent copy of the published state."""
        with self._lock:
            return {
                "location": self.location.to_dict() if self.location else None,
                "is_fallback": self.series.is_fallback if self.series else None,
                "error_message": self.error_message,
                "current_height": self.current_height,
                "next_high": self.next_high.to_dict() if self.next_high else None,
                "next_low": self.next_low.to_dict() if self.next_low else None,
                "updated_at": self.updated_at,
                "series": self.series.to_dict() if self.series else None,
            }
