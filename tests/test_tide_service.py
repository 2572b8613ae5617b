"""
Unit tests for the tide service, location store and forecast state
"""
import threading

import pytest

from app.config import Settings
from app.errors import UpstreamUnavailableError
from app.stormglass_client import StormglassExtremes, decode_extremes
from app.tide_models import ExtremePoint, Location, TideSource, TideType
from app.tide_service import LocationStore, TideForecast, TideService

NOW = 1_700_000_000.0
HOUR = 3600.0


def day_of_extremes(start=NOW):
    return [
        ExtremePoint(start + 1 * HOUR, 1.1, TideType.HIGH),
        ExtremePoint(start + 7 * HOUR, -0.4, TideType.LOW),
        ExtremePoint(start + 13 * HOUR, 1.3, TideType.HIGH),
        ExtremePoint(start + 19 * HOUR, -0.2, TideType.LOW),
    ]


class FakeClient:
    """Stands in for StormglassClient."""

    def __init__(self, extremes=None, error=None):
        self.extremes = extremes if extremes is not None else day_of_extremes()
        self.error = error
        self.calls = []

    def fetch_extremes(self, location, now, tz=None):
        self.calls.append((location, now))
        if self.error is not None:
            raise self.error
        return StormglassExtremes(
            self.extremes, response_lat=location.latitude, response_lon=location.longitude,
            station='Test Station', request_count=2,
        )


@pytest.fixture
def malibu():
    return Location(name='Malibu, California', latitude=34.032023, longitude=-118.678676)


@pytest.fixture
def pipeline():
    return Location(name='Pipeline, Hawaii', latitude=21.665312, longitude=-158.053881)


@pytest.fixture
def settings():
    return Settings(api_key='test-key')


class TestTideService:
    """Tests for choosing between interpolated and fallback data."""

    def test_interpolates_upstream_extremes(self, settings, malibu):
        """Upstream extremes are densified into a stormglass series."""
        service = TideService(settings, client=FakeClient())
        result = service.get_tide_result(malibu, NOW)

        assert result.error_message is None
        series = result.series
        assert series.source == TideSource.STORMGLASS
        assert series.station == 'Test Station'
        assert series.call_count == 2
        assert len(series.extremes) == 4
        assert series.heights[0].timestamp == NOW + HOUR
        assert series.heights[-1].height == -0.2

    def test_upstream_failure_falls_back(self, settings, malibu):
        """Upstream errors produce the synthetic series and keep the reason."""
        error = UpstreamUnavailableError("Invalid API key. Please check your Stormglass API key.", 401)
        service = TideService(settings, client=FakeClient(error=error))
        result = service.get_tide_result(malibu, NOW)

        assert result.series.source == TideSource.FALLBACK
        assert len(result.series.heights) == 96
        assert result.series.heights[0].timestamp == NOW
        assert 'Invalid API key' in result.error_message

    def test_malformed_extremes_fall_back(self, settings, malibu):
        """Out of order extremes are rejected and replaced by the fallback."""
        extremes = list(reversed(day_of_extremes()))
        service = TideService(settings, client=FakeClient(extremes=extremes))
        result = service.get_tide_result(malibu, NOW)

        assert result.series.is_fallback
        assert 'strictly ascending' in result.error_message

    def test_fallback_logs_warning(self, settings, malibu, caplog):
        """Falling back is logged."""
        service = TideService(settings, client=FakeClient(error=UpstreamUnavailableError("boom")))
        with caplog.at_level('WARNING', logger='app.tide_service'):
            service.get_tide_series(malibu, NOW)
        assert 'using fallback tides' in caplog.text

    def test_single_extreme_is_degenerate_not_error(self, settings, malibu):
        """One extreme is passed through, not treated as a failure."""
        extremes = [ExtremePoint(NOW + HOUR, 1.0, TideType.HIGH)]
        series = TideService(settings, client=FakeClient(extremes=extremes)).get_tide_series(malibu, NOW)
        assert series.source == TideSource.STORMGLASS
        assert [(h.timestamp, h.height) for h in series.heights] == [(NOW + HOUR, 1.0)]

    def test_missing_key_falls_back_without_client_error(self, malibu):
        """With the real client and no key the service still returns data."""
        series = TideService(Settings(api_key='')).get_tide_series(malibu, NOW)
        assert series.is_fallback

    @pytest.mark.parametrize("payload", [
        {"data": [{"height": 1.0, "time": 1700000000, "type": "high"}]},
        {"data": [{"height": 10 ** 400, "time": "2023-11-15T02:40:00Z", "type": "high"}]},
        {"data": [], "meta": "oops"},
    ])
    def test_unparseable_payload_falls_back(self, settings, malibu, payload):
        """Payloads of the wrong shape are served as fallback, not raised."""

        class DecodingClient:
            def fetch_extremes(self, location, now, tz=None):
                return decode_extremes(payload, tz)

        result = TideService(settings, client=DecodingClient()).get_tide_result(malibu, NOW)
        assert result.series.is_fallback
        assert result.error_message.startswith("Unparseable")


class TestLocationStore:
    """Tests for location selection and change notification."""

    def test_first_location_becomes_current(self, malibu, pipeline):
        store = LocationStore()
        store.add_location(malibu)
        store.add_location(pipeline)
        assert store.current_location == malibu
        assert store.saved_locations == [malibu, pipeline]

    def test_duplicate_locations_not_saved_twice(self, malibu):
        """Locations with the same coordinates are the same location."""
        store = LocationStore()
        store.add_location(malibu)
        store.add_location(Location(name='Malibu again', latitude=malibu.latitude, longitude=malibu.longitude))
        assert len(store.saved_locations) == 1

    def test_listeners_notified(self, malibu, pipeline):
        store = LocationStore()
        seen = []
        store.subscribe(seen.append)
        store.add_location(malibu)
        store.set_current_location(pipeline)
        assert seen == [malibu, pipeline]

    def test_unsubscribe(self, malibu):
        store = LocationStore()
        seen = []
        unsubscribe = store.subscribe(seen.append)
        unsubscribe()
        store.set_current_location(malibu)
        assert seen == []

    def test_removing_current_selects_next(self, malibu, pipeline):
        store = LocationStore()
        store.add_location(malibu)
        store.add_location(pipeline)
        seen = []
        store.subscribe(seen.append)
        store.remove_location(malibu)
        assert store.current_location == pipeline
        assert seen == [pipeline]

    def test_removing_last_clears_current(self, malibu):
        store = LocationStore()
        store.add_location(malibu)
        store.remove_location(malibu)
        assert store.current_location is None
        assert store.saved_locations == []


class TestTideForecast:
    """Tests for the published forecast state."""

    def test_refresh_publishes_derived_values(self, settings, malibu):
        """Current height and next high/low are computed at refresh time."""
        forecast = TideForecast(TideService(settings, client=FakeClient()), clock=lambda: NOW + 2 * HOUR)
        assert forecast.refresh(malibu) is True

        assert forecast.location == malibu
        assert forecast.current_height is not None
        assert forecast.next_high.timestamp == NOW + 13 * HOUR
        assert forecast.next_low.timestamp == NOW + 7 * HOUR
        assert forecast.updated_at == NOW + 2 * HOUR

    def test_fallback_state_keeps_error(self, settings, malibu):
        """A degraded forecast is recognisable."""
        client = FakeClient(error=UpstreamUnavailableError("Rate limit exceeded.", 429))
        forecast = TideForecast(TideService(settings, client=client), clock=lambda: NOW)
        forecast.refresh(malibu)

        state = forecast.snapshot()
        assert state['is_fallback'] is True
        assert state['error_message'] == "Rate limit exceeded."
        assert state['next_low']['height'] == -0.5
        assert state['location']['name'] == malibu.name

    def test_new_refresh_clears_previous_error(self, settings, malibu):
        """A successful refresh replaces the whole state."""
        client = FakeClient(error=UpstreamUnavailableError("down"))
        forecast = TideForecast(TideService(settings, client=client), clock=lambda: NOW)
        forecast.refresh(malibu)
        client.error = None
        forecast.refresh(malibu)
        assert forecast.error_message is None
        assert not forecast.series.is_fallback

    def test_newer_refresh_wins(self, settings, malibu, pipeline):
        """A slow refresh that finishes last must not overwrite a newer one."""
        entered = threading.Event()
        release = threading.Event()

        class SlowForMalibu(FakeClient):
            def fetch_extremes(self, location, now, tz=None):
                if location == malibu:
                    entered.set()
                    release.wait(timeout=5)
                return super().fetch_extremes(location, now, tz)

        forecast = TideForecast(TideService(settings, client=SlowForMalibu()), clock=lambda: NOW)
        outcome = []
        slow = threading.Thread(target=lambda: outcome.append(forecast.refresh(malibu)))
        slow.start()
        assert entered.wait(timeout=5)

        assert forecast.refresh(pipeline) is True
        release.set()
        slow.join(timeout=5)

        assert outcome == [False]
        assert forecast.location == pipeline
        assert forecast.series.request_lat == pipeline.latitude

    def test_location_change_triggers_refresh(self, settings, malibu, pipeline):
        """Attached forecasts follow the selected location."""
        client = FakeClient()
        forecast = TideForecast(TideService(settings, client=client), clock=lambda: NOW)
        store = LocationStore()
        forecast.attach(store, settings)

        store.add_location(malibu)
        store.set_current_location(pipeline)

        assert [c[0] for c in client.calls] == [malibu, pipeline]
        assert forecast.location == pipeline

    def test_api_key_change_triggers_refresh(self, settings, malibu):
        """Updating the API key refetches the current location."""
        client = FakeClient()
        forecast = TideForecast(TideService(settings, client=client), clock=lambda: NOW)
        store = LocationStore()
        forecast.attach(store, settings)
        store.set_current_location(malibu)

        settings.update_api_key('  new-key  ')

        assert settings.api_key == 'new-key'
        assert len(client.calls) == 2

    def test_api_key_change_without_location_does_nothing(self, settings):
        client = FakeClient()
        forecast = TideForecast(TideService(settings, client=client))
        forecast.attach(LocationStore(), settings)
        settings.update_api_key('other')
        assert client.calls == []

    def test_api_key_change_during_first_refresh(self, settings, malibu):
        """A key change while the first fetch is running refetches with the new key."""
        entered = threading.Event()
        release = threading.Event()

        class SlowFirstCall(FakeClient):
            def fetch_extremes(self, location, now, tz=None):
                if not self.calls:
                    self.calls.append((location, now))
                    entered.set()
                    release.wait(timeout=5)
                    raise UpstreamUnavailableError("Invalid API key. Please check your Stormglass API key.", 401)
                return super().fetch_extremes(location, now, tz)

        client = SlowFirstCall()
        forecast = TideForecast(TideService(settings, client=client), clock=lambda: NOW)
        store = LocationStore()
        forecast.attach(store, settings)

        first = threading.Thread(target=store.set_current_location, args=(malibu,))
        first.start()
        assert entered.wait(timeout=5)

        settings.update_api_key('new-key')
        release.set()
        first.join(timeout=5)

        assert len(client.calls) == 2
        assert forecast.location == malibu
        assert not forecast.series.is_fallback
        assert forecast.error_message is None
