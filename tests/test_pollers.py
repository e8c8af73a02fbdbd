"""
Tests for the source pollers: refresh lifecycle, in-flight guard, failure
handling, late-result discard and diff subscriptions.

Run with:
    python -m pytest tests/test_pollers.py -v
"""

import asyncio
import unittest
from datetime import datetime, timedelta, timezone

import config
from geofeed_service.errors import HttpStatusError, TransportError
from geofeed_service.models import Camera, Satellite
from geofeed_service.pollers import (
    EARTHQUAKE_FEEDS,
    CameraPoller,
    EarthquakePoller,
    FlightPoller,
    SatellitePoller,
    WeatherPoller,
)
from geofeed_service.static_data import BUILTIN_CAMERAS, NEXRAD_STATIONS
from geofeed_service.weather_frames import WeatherFrameService
from tests.fakes import (
    ISS_LINE1,
    ISS_LINE2,
    ISS_NAME,
    VANGUARD_LINE1,
    VANGUARD_LINE2,
    VANGUARD_NAME,
    FakeFetcher,
    tle_text,
    with_query,
)

QUAKE_URL = config.USGS_FEED_URL.format(feed=config.DEFAULT_EARTHQUAKE_FEED)


def quake_payload(*event_ids):
    return {"type": "FeatureCollection", "features": [
        {"id": event_id, "properties": {"mag": 2.0, "place": f"near {event_id}"},
         "geometry": {"type": "Point", "coordinates": [-120.0, 36.0, 5.0]}}
        for event_id in event_ids
    ]}


def ids(entities):
    return [entity.id for entity in entities]


async def wait_until(predicate, attempts: int = 200):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


class TestSourcePoller(unittest.IsolatedAsyncioTestCase):
    """Shared refresh behavior, exercised through the earthquake poller."""

    def setUp(self):
        self.fetcher = FakeFetcher({QUAKE_URL: quake_payload("a", "b")})
        self.poller = EarthquakePoller(self.fetcher)

    async def test_inactive_refresh_does_nothing(self):
        self.assertFalse(await self.poller.refresh())
        self.assertEqual(self.fetcher.calls, [])

    async def test_refresh_publishes_snapshot(self):
        self.poller.enable()
        self.assertTrue(await self.poller.refresh())

        status = self.poller.status()
        self.assertEqual(ids(self.poller.entities), ["a", "b"])
        self.assertEqual(status.entity_count, 2)
        self.assertIsNotNone(status.last_update)
        self.assertFalse(status.is_loading)
        self.assertIsNone(status.last_error)

    async def test_second_refresh_while_in_flight_is_skipped(self):
        self.fetcher.gate = asyncio.Event()
        self.poller.enable()

        first = asyncio.ensure_future(self.poller.refresh())
        await wait_until(lambda: self.fetcher.calls)
        self.assertTrue(self.poller.status().is_loading)

        self.assertFalse(await self.poller.refresh())
        self.fetcher.gate.set()
        self.assertTrue(await first)

        self.assertEqual(len(self.fetcher.calls), 1)
        self.assertEqual(self.fetcher.max_in_flight, 1)

    async def test_failure_keeps_previous_snapshot(self):
        self.poller.enable()
        await self.poller.refresh()
        updated = self.poller.status().last_update

        self.fetcher.responses[QUAKE_URL] = TransportError("connection reset", QUAKE_URL)
        self.assertFalse(await self.poller.refresh())
        self.assertFalse(await self.poller.refresh())

        status = self.poller.status()
        self.assertEqual(ids(self.poller.entities), ["a", "b"])
        self.assertEqual(status.last_update, updated)
        self.assertEqual(status.last_error, "connection reset")
        self.assertEqual(status.consecutive_failures, 2)

        self.fetcher.responses[QUAKE_URL] = quake_payload("c")
        self.assertTrue(await self.poller.refresh())
        self.assertEqual(self.poller.status().consecutive_failures, 0)
        self.assertIsNone(self.poller.status().last_error)

    async def test_malformed_payload_is_a_failure(self):
        self.fetcher.responses[QUAKE_URL] = {"type": "FeatureCollection"}
        self.poller.enable()
        self.assertFalse(await self.poller.refresh())
        self.assertIn("features", self.poller.last_error)

    async def test_unexpected_error_recorded(self):
        self.fetcher.responses[QUAKE_URL] = lambda: RuntimeError("boom")
        self.poller.enable()
        self.assertFalse(await self.poller.refresh())
        self.assertEqual(self.poller.last_error, "boom")
        self.assertFalse(self.poller.is_in_flight)

    async def test_timeout_maps_to_failure(self):
        poller = EarthquakePoller(self.fetcher, timeout=0.05)
        self.fetcher.gate = asyncio.Event()
        poller.enable()

        self.assertFalse(await poller.refresh())
        self.assertIn("timed out", poller.last_error)
        self.assertFalse(poller.is_in_flight)
        self.assertEqual(self.fetcher.in_flight, 0)

    async def test_result_discarded_after_disable(self):
        self.fetcher.gate = asyncio.Event()
        self.poller.enable()
        pending = asyncio.ensure_future(self.poller.refresh())
        await wait_until(lambda: self.fetcher.calls)

        self.poller.disable()
        self.fetcher.gate.set()

        self.assertFalse(await pending)
        self.assertEqual(self.poller.entities, [])
        self.assertIsNone(self.poller.last_success_at)
        self.assertIsNone(self.poller.last_error)

    async def test_reenable_during_stale_fetch_refreshes_again(self):
        self.fetcher.gate = asyncio.Event()
        self.poller.enable()
        pending = asyncio.ensure_future(self.poller.refresh())
        await wait_until(lambda: self.fetcher.calls)

        self.poller.disable()
        self.poller.enable()
        self.fetcher.gate.set()

        self.assertFalse(await pending)
        await wait_until(lambda: self.poller.entities)
        self.assertEqual(len(self.fetcher.calls), 2)
        self.assertEqual(ids(self.poller.entities), ["a", "b"])

    async def test_duplicate_ids_in_payload_deduplicated(self):
        self.fetcher.responses[QUAKE_URL] = quake_payload("a", "b", "a")
        self.poller.enable()
        await self.poller.refresh()
        self.assertEqual(ids(self.poller.entities), ["a", "b"])

    async def test_polling_timer_refreshes_until_stopped(self):
        poller = EarthquakePoller(self.fetcher, interval=0.01)
        poller.enable()
        poller.start_polling()
        self.assertTrue(poller.is_polling)

        for _ in range(100):
            if len(self.fetcher.calls) >= 2:
                break
            await asyncio.sleep(0.01)
        poller.stop_polling()

        self.assertGreaterEqual(len(self.fetcher.calls), 2)
        self.assertFalse(poller.is_polling)

    async def test_timer_faster_than_fetch_never_overlaps(self):
        self.fetcher.gate = asyncio.Event()
        poller = EarthquakePoller(self.fetcher, interval=0.005)
        poller.enable()
        poller.start_polling()

        await asyncio.sleep(0.05)
        self.assertEqual(len(self.fetcher.calls), 1)
        self.assertEqual(self.fetcher.max_in_flight, 1)

        self.fetcher.gate.set()
        await wait_until(lambda: poller.entities)
        await asyncio.sleep(0.02)
        poller.stop_polling()

        self.assertEqual(self.fetcher.max_in_flight, 1)
        self.assertEqual(ids(poller.entities), ["a", "b"])


class TestDiffSubscription(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.fetcher = FakeFetcher({QUAKE_URL: quake_payload("a", "b")})
        self.poller = EarthquakePoller(self.fetcher)
        self.poller.enable()

    async def test_diffs_follow_snapshots(self):
        diffs = []
        subscription = self.poller.subscribe(diffs.append)
        self.assertEqual(diffs, [])

        await self.poller.refresh()
        self.assertEqual(ids(diffs[-1].to_add), ["a", "b"])

        self.fetcher.responses[QUAKE_URL] = quake_payload("b", "c")
        await self.poller.refresh()
        self.assertEqual(ids(diffs[-1].to_add), ["c"])
        self.assertEqual(diffs[-1].to_remove, ["a"])

        await self.poller.refresh()
        self.assertEqual(len(diffs), 2)

        self.poller.disable()
        self.assertEqual(diffs[-1].to_remove, ["b", "c"])
        self.assertEqual(len(subscription.rendered), 0)

    async def test_late_subscriber_receives_current_snapshot(self):
        await self.poller.refresh()
        diffs = []
        self.poller.subscribe(diffs.append)
        self.assertEqual(len(diffs), 1)
        self.assertEqual(ids(diffs[0].to_add), ["a", "b"])

    async def test_disposed_subscription_receives_nothing(self):
        diffs = []
        subscription = self.poller.subscribe(diffs.append)
        subscription.dispose()
        await self.poller.refresh()
        self.assertEqual(diffs, [])

    async def test_failing_subscriber_does_not_affect_others(self):
        def broken(diff):
            raise RuntimeError("renderer crashed")

        diffs = []
        self.poller.subscribe(broken)
        self.poller.subscribe(diffs.append)

        self.assertTrue(await self.poller.refresh())
        self.assertEqual(len(diffs), 1)


class TestFlightPoller(unittest.IsolatedAsyncioTestCase):

    async def test_bounding_box_query(self):
        row = ["abc123", "DAL42 ", "United States", None, 1709294400,
               -97.7, 30.2, 3000.0, False, 120.0, 180.0, 0.0, None, 3050.0, None, False, 0]
        url = with_query(config.OPENSKY_STATES_URL, lamin=29.0, lomin=-99.0, lamax=31.0, lomax=-96.0)
        fetcher = FakeFetcher({url: {"time": 1709294400, "states": [row]}})

        poller = FlightPoller(fetcher, bbox=(29.0, -99.0, 31.0, -96.0))
        poller.enable()
        self.assertTrue(await poller.refresh())

        self.assertEqual(fetcher.calls, [url])
        self.assertEqual(poller.entities[0].display_callsign, "DAL42")


def satellite_key(group):
    return with_query(config.CELESTRAK_GP_URL, GROUP=group, FORMAT="tle")


class TestSatellitePoller(unittest.IsolatedAsyncioTestCase):

    NOW = datetime(2023, 9, 16, 14, 30, tzinfo=timezone.utc)

    def setUp(self):
        self.fetcher = FakeFetcher({
            satellite_key("stations"): tle_text((ISS_NAME, ISS_LINE1, ISS_LINE2)),
            satellite_key("visual"): tle_text(
                ("ISS (VISUAL LIST)", ISS_LINE1, ISS_LINE2),
                (VANGUARD_NAME, VANGUARD_LINE1, VANGUARD_LINE2),
            ),
        })
        self.poller = SatellitePoller(self.fetcher, groups=["stations", "visual"],
                                      clock=lambda: self.NOW)
        self.poller.enable()

    async def test_groups_merged_first_group_wins(self):
        self.assertTrue(await self.poller.refresh())

        satellites = self.poller.entities
        self.assertEqual(ids(satellites), ["25544", "5"])
        iss, vanguard = satellites
        self.assertEqual((iss.name, iss.group), (ISS_NAME, "stations"))
        self.assertEqual(vanguard.group, "visual")

    async def test_satellite_fields(self):
        await self.poller.refresh()
        iss = self.poller.entities[0]

        self.assertIsInstance(iss, Satellite)
        self.assertEqual(iss.catalog_number, 25544)
        self.assertEqual(iss.position_time, self.NOW)
        self.assertAlmostEqual(iss.period_minutes, 1440.0 / 15.49541986, places=6)
        self.assertGreater(iss.altitude_km, 380.0)
        self.assertLess(iss.altitude_km, 470.0)
        self.assertNotIn("element", iss.model_dump())

    async def test_one_failing_group_is_skipped(self):
        self.fetcher.responses[satellite_key("visual")] = TransportError("celestrak down")
        self.assertTrue(await self.poller.refresh())
        self.assertEqual(ids(self.poller.entities), ["25544"])

    async def test_all_groups_failing_fails_refresh(self):
        self.fetcher.responses[satellite_key("stations")] = HttpStatusError(503)
        self.fetcher.responses[satellite_key("visual")] = TransportError("celestrak down")
        self.assertFalse(await self.poller.refresh())
        self.assertEqual(self.poller.last_error, "HTTP error: 503")

    async def test_positions_at_repropagates_without_fetching(self):
        await self.poller.refresh()
        calls = len(self.fetcher.calls)
        later = self.NOW + timedelta(minutes=20)

        moved = self.poller.positions_at(later)

        self.assertEqual(len(self.fetcher.calls), calls)
        self.assertEqual(ids(moved), ["25544", "5"])
        self.assertTrue(all(s.position_time == later for s in moved))
        self.assertNotAlmostEqual(moved[0].longitude, self.poller.entities[0].longitude, places=2)
        self.assertEqual([e.catalog_number for e in self.poller.elements], [25544, 5])


class TestEarthquakePoller(unittest.TestCase):

    def test_feed_catalog(self):
        self.assertEqual(len(EARTHQUAKE_FEEDS), 20)
        self.assertIn("significant_month", EARTHQUAKE_FEEDS)

    def test_feed_url(self):
        poller = EarthquakePoller(FakeFetcher(), feed="4.5_week")
        self.assertTrue(poller.url.endswith("/summary/4.5_week.geojson"))

    def test_unknown_feed_rejected(self):
        with self.assertRaises(ValueError):
            EarthquakePoller(FakeFetcher(), feed="7.0_day")


STATIONS_PAYLOAD = {"features": [{
    "geometry": {"type": "Point", "coordinates": [-97.3, 30.7]},
    "properties": {"id": "KGRK", "name": "Fort Hood", "stationType": "WSR-88D",
                   "rda": {"properties": {"status": "Operate"}}},
}]}
ALERTS_PAYLOAD = {"features": [{
    "id": "urn:alert:1",
    "properties": {"event": "Flood Watch", "severity": "Moderate"},
    "geometry": {"type": "Point", "coordinates": [-97.7, 30.3]},
}]}
FRAMES_PAYLOAD = {"host": "https://tilecache.rainviewer.com",
                  "radar": {"past": [{"time": 1709293200}]}}


class TestWeatherPoller(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.fetcher = FakeFetcher({
            config.NWS_RADAR_STATIONS_URL: STATIONS_PAYLOAD,
            config.NWS_ALERTS_URL: ALERTS_PAYLOAD,
            config.RAINVIEWER_MAPS_URL: FRAMES_PAYLOAD,
        })

    async def test_radars_and_alerts_combined(self):
        frames = WeatherFrameService(self.fetcher)
        poller = WeatherPoller(self.fetcher, frame_service=frames)
        poller.enable()

        self.assertTrue(await poller.refresh())
        self.assertEqual(ids(poller.entities), ["KGRK", "urn:alert:1"])
        self.assertEqual(frames.frames.latest_radar, 1709293200)

    async def test_alert_failure_fails_refresh(self):
        self.fetcher.responses[config.NWS_ALERTS_URL] = HttpStatusError(503, config.NWS_ALERTS_URL)
        poller = WeatherPoller(self.fetcher)
        poller.enable()

        self.assertFalse(await poller.refresh())
        self.assertEqual(poller.entities, [])
        self.assertEqual(poller.last_error, "HTTP error: 503")

    async def test_frame_failure_is_not_fatal(self):
        self.fetcher.responses[config.RAINVIEWER_MAPS_URL] = TransportError("rainviewer down")
        frames = WeatherFrameService(self.fetcher)
        poller = WeatherPoller(self.fetcher, frame_service=frames)
        poller.enable()

        self.assertTrue(await poller.refresh())
        self.assertIsNone(frames.frames)
        self.assertEqual(frames.last_error, "rainviewer down")

    async def test_bundled_stations(self):
        poller = WeatherPoller(self.fetcher, live_stations=False)
        poller.enable()

        await poller.refresh()
        self.assertNotIn(config.NWS_RADAR_STATIONS_URL, self.fetcher.calls)
        self.assertEqual(len(poller.entities), len(NEXRAD_STATIONS) + 1)


DIRECTORY_URL = "https://cams.example.org/list"
DIRECTORY_HTML = """
<div data-camera-id="tx-101" data-lat="30.27" data-lon="-97.74" data-name="Scraped Congress"></div>
<div data-camera-id="tx-102" data-lat="30.25" data-lon="-97.75" data-name="Lady Bird Lake"></div>
"""


class TestCameraPoller(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.now = [1000.0]
        self.builtin = [
            Camera(id="cam-1", latitude=40.7, longitude=-74.0, name="Times Square"),
            Camera(id="tx-101", latitude=30.27, longitude=-97.74, name="Congress Ave"),
        ]
        self.fetcher = FakeFetcher({DIRECTORY_URL: DIRECTORY_HTML})
        self.poller = CameraPoller(self.fetcher, directory_urls=[DIRECTORY_URL], builtin=self.builtin,
                                   scrape_min_interval=60, clock=lambda: self.now[0])
        self.poller.enable()

    async def test_builtin_wins_on_collision(self):
        await self.poller.refresh()
        cameras = {c.id: c for c in self.poller.entities}

        self.assertEqual(ids(self.poller.entities), ["cam-1", "tx-101", "tx-102"])
        self.assertEqual(cameras["tx-101"].name, "Congress Ave")
        self.assertEqual(cameras["tx-102"].origin, "directory")

    async def test_scrape_failure_leaves_builtin(self):
        self.fetcher.responses[DIRECTORY_URL] = TransportError("directory unreachable")
        self.assertTrue(await self.poller.refresh())
        self.assertEqual(ids(self.poller.entities), ["cam-1", "tx-101"])

    async def test_scrape_rate_limited(self):
        await self.poller.refresh()
        await self.poller.refresh()
        self.assertEqual(len(self.fetcher.calls), 1)
        self.assertEqual(len(self.poller.entities), 3)

        self.now[0] += 61
        await self.poller.refresh()
        self.assertEqual(len(self.fetcher.calls), 2)

    async def test_pages_fail_independently(self):
        second_url = "https://cams.example.org/list?page=2"
        third_url = "https://cams.example.org/list?page=3"
        self.fetcher.responses[second_url] = TransportError("page 2 unreachable")
        self.fetcher.responses[third_url] = (
            '<div data-camera-id="tx-102" data-lat="1.0" data-lon="2.0" data-name="Duplicate"></div>'
            '<div data-camera-id="wa-7" data-lat="47.6" data-lon="-122.3" data-name="Pike Place"></div>'
        )
        poller = CameraPoller(self.fetcher, directory_urls=[DIRECTORY_URL, second_url, third_url],
                              builtin=self.builtin)
        poller.enable()

        self.assertTrue(await poller.refresh())
        cameras = {c.id: c for c in poller.entities}

        self.assertEqual(ids(poller.entities), ["cam-1", "tx-101", "tx-102", "wa-7"])
        self.assertEqual(cameras["tx-102"].name, "Lady Bird Lake")
        self.assertEqual(sorted(self.fetcher.calls), sorted([DIRECTORY_URL, second_url, third_url]))

    async def test_bundled_directory_only(self):
        poller = CameraPoller(self.fetcher)
        poller.enable()
        await poller.refresh()
        self.assertEqual(self.fetcher.calls, [])
        self.assertEqual(len(poller.entities), len(BUILTIN_CAMERAS))


if __name__ == '__main__':
    unittest.main()
