import logging
import time
import uuid
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

from .config import Settings
from .presentation import axis_labels, chart_points, current_position, display_height_range, table_rows
from .tide_models import Location, TideSeries, TideSource
from .tide_queries import (
    current_height,
    extremes_for_24_hours,
    heights_for_24_hours,
    next_high_extreme,
    next_low_extreme,
)
from .tide_service import LocationStore, TideForecast, TideService

# 2100-01-01T00:00:00Z
MAX_TIMESTAMP = 4_102_444_800

DEFAULT_CHART_WIDTH = 360.0
DEFAULT_CHART_HEIGHT = 200.0


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        return response


class LocationIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    country: str = ""


app = FastAPI(
    title="Tide Times API",
    description="24 hour tide curves interpolated from Stormglass high/low tides",
    version="1.0.0",
)

settings = Settings.from_env()

# Set up rate limiter
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add security headers middleware
app.add_middleware(SecurityHeadersMiddleware)

# Initialize services
tide_service = TideService(settings)
location_store = LocationStore()
forecast = TideForecast(tide_service)
forecast.attach(location_store, settings)


def _parse_timezone(tz: Optional[str]) -> Optional[ZoneInfo]:
    if tz is None:
        return None
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        raise HTTPException(400, f"Unknown timezone: {tz}")


def _series_response(
    series: TideSeries,
    now: float,
    tz: Optional[ZoneInfo],
    chart_width: float = DEFAULT_CHART_WIDTH,
    chart_height: float = DEFAULT_CHART_HEIGHT,
) -> dict:
    """Series plus the derived values a tide screen shows."""
    height_now = current_height(series, now)
    next_high = next_high_extreme(series, now)
    next_low = next_low_extreme(series, now)
    today_heights = heights_for_24_hours(series, now, tz)
    today_extremes = extremes_for_24_hours(series, now, tz)

    response = series.to_dict()
    response.update({
        "current_height": height_now,
        "next_high": next_high.to_dict() if next_high else None,
        "next_low": next_low.to_dict() if next_low else None,
        "today": {
            "heights": [h.to_dict() for h in today_heights],
            "extremes": [e.to_dict() for e in today_extremes],
        },
        "display_range": list(display_height_range(today_heights)),
        "axis_labels": axis_labels(today_heights),
        "table": table_rows(today_extremes, tz),
        "chart": {
            "width": chart_width,
            "height": chart_height,
            "points": chart_points(today_heights, chart_width, chart_height),
            "current": current_position(today_heights, height_now, now, chart_width, chart_height),
        },
    })
    return response


@app.get("/api/v1/tides")
@limiter.limit(settings.rate_limit)
async def get_tides(
    request: Request,
    lat: float = Query(..., ge=-90, le=90, description="Latitude in degrees"),
    lon: float = Query(..., ge=-180, le=180, description="Longitude in degrees"),
    name: str = Query("Selected location", max_length=200, description="Display name of the location"),
    tz: Optional[str] = Query(
        None,
        description="IANA timezone for dates and the daily window (e.g. 'Europe/London'). Defaults to server local time.",
    ),
    now: Optional[float] = Query(
        None,
        ge=0,
        le=MAX_TIMESTAMP,
        description="Forecast start as Unix epoch seconds. Defaults to the current time.",
    ),
    chart_width: float = Query(DEFAULT_CHART_WIDTH, gt=0, le=10000, description="Chart width in pixels"),
    chart_height: float = Query(DEFAULT_CHART_HEIGHT, gt=0, le=10000, description="Chart height in pixels"),
):
    """
    Get a 24 hour tide forecast for a location.

    High/low tides come from Stormglass and are interpolated into a smooth
    curve. When Stormglass is unavailable (no API key, quota exhausted,
    network failure, unparseable data) a synthetic semi-diurnal curve is
    returned instead with `source` set to "fallback".
    """
    try:
        zone = _parse_timezone(tz)
        if now is None:
            now = time.time()

        location = Location(name=name, latitude=lat, longitude=lon)
        series = await run_in_threadpool(tide_service.get_tide_series, location, now, zone)
        return _series_response(series, now, zone, chart_width, chart_height)
    except ValueError as e:
        raise HTTPException(400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        error_id = uuid.uuid4().hex[:8]
        logger.exception(f"Error {error_id} in get_tides")
        raise HTTPException(500, detail=f"Internal error (ref: {error_id})")


@app.put("/api/v1/location")
async def set_location(body: LocationIn):
    """
    Select the current location.

    Selecting a location refreshes the forecast; the new forecast state is
    returned.
    """
    try:
        location = Location(name=body.name, latitude=body.lat, longitude=body.lon, country=body.country)
        await run_in_threadpool(location_store.set_current_location, location)
        return forecast.snapshot()
    except Exception as e:
        error_id = uuid.uuid4().hex[:8]
        logger.exception(f"Error {error_id} in set_location")
        raise HTTPException(500, detail=f"Internal error (ref: {error_id})")


def _locations_response() -> dict:
    current = location_store.current_location
    return {
        "current": current.to_dict() if current else None,
        "saved": [saved.to_dict() for saved in location_store.saved_locations],
    }


@app.get("/api/v1/locations")
async def list_locations():
    """Saved locations and the current selection."""
    return _locations_response()


@app.post("/api/v1/locations")
async def add_location(body: LocationIn):
    """Save a location. The first saved location becomes current."""
    location = Location(name=body.name, latitude=body.lat, longitude=body.lon, country=body.country)
    await run_in_threadpool(location_store.add_location, location)
    return _locations_response()


@app.delete("/api/v1/locations")
async def remove_location(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
):
    """Forget a saved location. Removing the current one selects the first remaining."""
    location = Location(name="", latitude=lat, longitude=lon)
    if location not in location_store.saved_locations:
        raise HTTPException(404, "Location not saved")
    await run_in_threadpool(location_store.remove_location, location)
    return _locations_response()


@app.get("/api/v1/forecast")
async def get_forecast():
    """Latest forecast for the current location."""
    state = forecast.snapshot()
    if state["series"] is None:
        raise HTTPException(404, "No location selected")
    return state


@app.get("/health")
async def health():
    return {"status": "healthy", "source": TideSource.STORMGLASS.value}
