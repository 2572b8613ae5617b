"""
Stormglass Tide Extremes Client

Fetches high/low tide events for a location from the Stormglass marine API
(https://docs.stormglass.io/#/tide) and decodes them into ExtremePoints.

Any failure (missing key, network error, HTTP error status, unparseable
body) is raised as UpstreamUnavailableError so the caller can switch to the
synthetic fallback curve.
"""
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Dict, List, Optional

from .config import Settings
from .errors import UpstreamUnavailableError
from .tide_models import ExtremePoint, Location, TideType, format_date

logger = logging.getLogger(__name__)

FETCH_WINDOW = timedelta(days=1)

STATUS_MESSAGES = {
    401: "Invalid API key. Please check your Stormglass API key.",
    402: ("Payment required. Your API key may have expired or hit usage limits. "
          "Please check your Stormglass account."),
    403: ("Access forbidden. This could be due to: 1) Account not verified, "
          "2) IP restrictions, 3) Account suspended. Please check your Stormglass account status."),
    429: ("Rate limit exceeded. You've used all free requests for today. "
          "Try again tomorrow or upgrade your plan."),
}


def safe_read_response(response, max_size: int) -> bytes:
    """
    Safely read HTTP response with size limit to prevent memory exhaustion.

    Args:
        response: urllib response object
        max_size: Maximum allowed response size in bytes

    Returns:
        Response body as bytes

    Raises:
        ValueError: If response exceeds size limit
    """
    # Check Content-Length header if available
    content_length = response.headers.get('Content-Length')
    if content_length and int(content_length) > max_size:
        raise ValueError(f"Response too large: {content_length} bytes (max: {max_size})")

    # Read with size limit (read one extra byte to detect overflow)
    data = response.read(max_size + 1)
    if len(data) > max_size:
        raise ValueError(f"Response exceeded size limit of {max_size} bytes")

    return data


def _format_utc(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def parse_time(time_str: str) -> float:
    """Parse an ISO 8601 time ('Z' suffix allowed) to epoch seconds. Naive times are UTC."""
    dt = datetime.fromisoformat(time_str.replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


class StormglassExtremes:
    """Decoded Stormglass response: the extremes plus response metadata."""

    def __init__(
        self,
        extremes: List[ExtremePoint],
        response_lat: Optional[float] = None,
        response_lon: Optional[float] = None,
        station: Optional[str] = None,
        request_count: int = 1,
    ):
        self.extremes = extremes
        self.response_lat = response_lat
        self.response_lon = response_lon
        self.station = station
        self.request_count = request_count


def decode_extremes(payload: Dict, tz: Optional[tzinfo] = None) -> StormglassExtremes:
    """
    Decode a Stormglass tide extremes payload.

    Extremes are kept in upstream order; ordering is validated later, before
    interpolation.

    Raises:
        UpstreamUnavailableError: If the payload does not have the expected shape
    """
    if not isinstance(payload, dict) or not isinstance(payload.get('data'), list):
        raise UpstreamUnavailableError("Unexpected Stormglass response: missing 'data' list")

    extremes = []
    for index, entry in enumerate(payload['data']):
        if not isinstance(entry, dict):
            raise UpstreamUnavailableError(f"Unparseable tide extreme at index {index}: not an object")
        try:
            timestamp = parse_time(entry['time'])
            height = float(entry['height'])
            tide_type = TideType(str(entry['type']).lower())
            date = format_date(timestamp, tz)
        except (KeyError, TypeError, ValueError, AttributeError, OverflowError, OSError) as e:
            raise UpstreamUnavailableError(f"Unparseable tide extreme at index {index}: {e}")

        extremes.append(ExtremePoint(
            timestamp=timestamp,
            height=height,
            tide_type=tide_type,
            date=date,
        ))

    meta = payload.get('meta') or {}
    if not isinstance(meta, dict):
        raise UpstreamUnavailableError("Unparseable Stormglass metadata: 'meta' is not an object")
    station = meta.get('station') or {}
    try:
        response_lat = float(meta['lat']) if meta.get('lat') is not None else None
        response_lon = float(meta['lng']) if meta.get('lng') is not None else None
        request_count = int(meta.get('requestCount', 1))
    except (TypeError, ValueError, OverflowError) as e:
        raise UpstreamUnavailableError(f"Unparseable Stormglass metadata: {e}")

    return StormglassExtremes(
        extremes=extremes,
        response_lat=response_lat,
        response_lon=response_lon,
        station=station.get('name') if isinstance(station, dict) else None,
        request_count=request_count,
    )


class StormglassClient:
    """Client for the Stormglass tide extremes endpoint."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def build_url(self, location: Location, now: float) -> str:
        start = datetime.fromtimestamp(now, timezone.utc)
        end = start + FETCH_WINDOW
        query = urllib.parse.urlencode({
            'lat': location.latitude,
            'lng': location.longitude,
            'start': _format_utc(start),
            'end': _format_utc(end),
        })
        return f"{self.settings.base_url}/tide/extremes/point?{query}"

    def fetch_extremes(
        self,
        location: Location,
        now: float,
        tz: Optional[tzinfo] = None,
    ) -> StormglassExtremes:
        """
        Fetch tide extremes for the 24 hours starting at `now`.

        Args:
            location: Location to query
            now: Window start, epoch seconds
            tz: Timezone for display dates

        Returns:
            Decoded extremes and response metadata

        Raises:
            UpstreamUnavailableError: On any fetch or decode failure
        """
        api_key = self.settings.api_key
        if not api_key:
            raise UpstreamUnavailableError("No Stormglass API key configured")

        url = self.build_url(location, now)
        logger.debug(
            f"Stormglass request for {location.name} ({location.latitude}, {location.longitude}) "
            f"with key {self.settings.masked_api_key}"
        )

        try:
            req = urllib.request.Request(url, headers={'Authorization': api_key})
            with urllib.request.urlopen(req, timeout=self.settings.timeout_seconds) as response:
                body = safe_read_response(response, self.settings.max_response_size)
        except urllib.error.HTTPError as e:
            message = STATUS_MESSAGES.get(e.code, f"API error: {e.code}")
            logger.warning(f"Stormglass returned HTTP {e.code} for {location.name}")
            raise UpstreamUnavailableError(message, status_code=e.code)
        except (urllib.error.URLError, OSError, ValueError) as e:
            logger.warning(f"Stormglass fetch failed: {e}")
            raise UpstreamUnavailableError(f"Stormglass fetch failed: {e}")

        try:
            payload = json.loads(body.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Stormglass response is not valid JSON: {e}")
            raise UpstreamUnavailableError("Failed to decode response")

        return decode_extremes(payload, tz)
