"""Live signal adapters: GTFS-Realtime train arrivals, service alerts, weather."""

import logging
import os
import ssl
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple
from urllib.request import Request, urlopen

import requests
from google.transit import gtfs_realtime_pb2

from .models import Alert, Disruption, LiveSignalSnapshot, WeatherCondition
from .stations import StationDirectory

logger = logging.getLogger(__name__)

# MTA GTFS-Realtime feed URLs (subway only)
MTA_FEEDS = {
    "123456S": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs",
    "ACE": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-ace",
    "BDFM": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-bdfm",
    "G": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-g",
    "JZ": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-jz",
    "L": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-l",
    "NQRW": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-nqrw",
    "SIR": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-si",
}
ALERTS_URL = "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/camsys%2Fsubway-alerts"

OPEN_METEO_URL = "https://api.open-meteo.com/v1/forecast"
NYC_LAT = 40.7128
NYC_LON = -74.0060

ALERT_CAUSE = {
    1: "Unknown",
    2: "Other",
    3: "Technical Problem",
    4: "Strike",
    5: "Demonstration",
    6: "Accident",
    7: "Holiday",
    8: "Weather",
    9: "Maintenance",
    10: "Construction",
    11: "Police Activity",
    12: "Medical Emergency",
}

ALERT_EFFECT = {
    1: "No Service",
    2: "Reduced Service",
    3: "Significant Delays",
    4: "Detour",
    5: "Additional Service",
    6: "Modified Service",
    7: "Other",
    8: "Unknown",
    9: "Stop Moved",
}

# Lower is more severe; used to pick one effect per station
_EFFECT_RANK = {"No Service": 0, "Significant Delays": 1, "Reduced Service": 2, "Detour": 3}

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}


def alert_severity(effect: int, route_count: int) -> str:
    if effect == 1:
        return "critical"
    if effect == 3:
        return "high"
    if effect in (2, 4):
        return "medium"
    if route_count > 3:
        return "medium"
    return "low"


class FeedClient:
    """Fetches and decodes GTFS-Realtime feeds with a short-lived cache."""

    def __init__(self, api_key: Optional[str] = None, cache_ttl: float = 25):
        self.api_key = api_key or os.getenv("MTA_API_KEY")
        self._cache: Dict[str, Tuple[gtfs_realtime_pb2.FeedMessage, float]] = {}  # url -> (feed, timestamp)
        self._cache_ttl = cache_ttl
        self._ssl_context = ssl.create_default_context()

    def fetch_feed(self, feed_url: str) -> gtfs_realtime_pb2.FeedMessage:
        """
        Fetch, decode and cache a GTFS-Realtime feed.

        Args:
            feed_url: Full URL to the feed.

        Returns:
            Decoded FeedMessage.
        """
        now = time.time()
        if feed_url in self._cache:
            feed, timestamp = self._cache[feed_url]
            if now - timestamp < self._cache_ttl:
                logger.debug(f"Using cached data for {feed_url}")
                return feed

        headers = {"x-api-key": self.api_key} if self.api_key else {}
        logger.debug(f"Fetching {feed_url}")
        try:
            with urlopen(Request(feed_url, headers=headers), timeout=10, context=self._ssl_context) as response:
                feed = gtfs_realtime_pb2.FeedMessage()
                feed.ParseFromString(response.read())
        except Exception as e:
            logger.error(f"Failed to fetch {feed_url}: {e}")
            raise

        self._cache[feed_url] = (feed, now)
        return feed

    def fetch_all(self, feed_urls: Optional[List[str]] = None) -> List[gtfs_realtime_pb2.FeedMessage]:
        """Fetch every feed, skipping ones that fail."""
        feeds = []
        for feed_url in feed_urls or list(MTA_FEEDS.values()):
            try:
                feeds.append(self.fetch_feed(feed_url))
            except Exception as e:
                logger.warning(f"Skipping feed {feed_url}: {e}")
        return feeds

    def clear_cache(self) -> None:
        self._cache.clear()


def count_arrivals_by_complex(
    feeds: List[gtfs_realtime_pb2.FeedMessage],
    directory: StationDirectory,
    now: float,
    window_seconds: int = 300,
) -> Dict[str, int]:
    """
    Count predicted arrivals within +/- window_seconds of now per station complex.

    Args:
        feeds: Decoded GTFS-Realtime feeds.
        directory: Station directory used to map stop ids to complexes.
        now: Current Unix timestamp.
        window_seconds: Half-width of the arrival window.

    Returns:
        Dictionary of complex_id -> arrival count.
    """
    counts: Dict[str, int] = {}
    for feed in feeds:
        if feed is None:
            continue
        for entity in feed.entity:
            if not entity.HasField("trip_update"):
                continue
            for stu in entity.trip_update.stop_time_update:
                arrival = stu.arrival.time if stu.HasField("arrival") else 0
                if not (now - window_seconds < arrival < now + window_seconds):
                    continue
                complex_id = directory.complex_for_stop(stu.stop_id)
                if complex_id:
                    counts[complex_id] = counts.get(complex_id, 0) + 1
    return counts


def _alert_active(alert, now: float) -> bool:
    if not alert.active_period:
        return True
    for period in alert.active_period:
        start = period.start or 0
        end = period.end or float("inf")
        if start <= now <= end:
            return True
    return False


def extract_disruptions(
    feed: Optional[gtfs_realtime_pb2.FeedMessage],
    directory: StationDirectory,
    now: Optional[float] = None,
) -> Dict[str, Disruption]:
    """
    Map active service alerts to the station complexes they name.

    When several alerts touch one station the most severe effect wins and
    the affected routes are combined.
    """
    disruptions: Dict[str, Disruption] = {}
    if feed is None:
        return disruptions
    now = now if now is not None else time.time()

    for entity in feed.entity:
        if not entity.HasField("alert"):
            continue
        alert = entity.alert
        if not _alert_active(alert, now):
            continue

        effect = ALERT_EFFECT.get(alert.effect, "Unknown")
        routes: List[str] = []
        complexes: List[str] = []
        for informed in alert.informed_entity:
            if informed.route_id and informed.route_id not in routes:
                routes.append(informed.route_id)
            complex_id = directory.complex_for_stop(informed.stop_id)
            if complex_id and complex_id not in complexes:
                complexes.append(complex_id)

        for complex_id in complexes:
            existing = disruptions.get(complex_id)
            if existing is None:
                disruptions[complex_id] = Disruption(effect=effect, routes=list(routes))
                continue
            merged_routes = existing.routes + [r for r in routes if r not in existing.routes]
            if _EFFECT_RANK.get(effect, 99) < _EFFECT_RANK.get(existing.effect, 99):
                strongest = effect
            else:
                strongest = existing.effect
            disruptions[complex_id] = Disruption(effect=strongest, routes=merged_routes)

    logger.debug(f"Parsed disruptions for {len(disruptions)} station complexes")
    return disruptions


def _translated_text(translated) -> str:
    for translation in translated.translation:
        if translation.text:
            return translation.text
    return ""


def extract_alerts(feed: Optional[gtfs_realtime_pb2.FeedMessage]) -> List[Alert]:
    """
    List every alert in the feed, most severe first.

    Args:
        feed: Decoded subway alerts feed, or None.

    Returns:
        List of Alert objects; alerts of equal severity keep feed order.
    """
    alerts: List[Alert] = []
    if feed is None:
        return alerts

    for entity in feed.entity:
        if not entity.HasField("alert"):
            continue
        alert = entity.alert

        routes: List[str] = []
        stops: List[str] = []
        for informed in alert.informed_entity:
            if informed.route_id and informed.route_id not in routes:
                routes.append(informed.route_id)
            if informed.stop_id and informed.stop_id not in stops:
                stops.append(informed.stop_id)

        period = alert.active_period[0] if alert.active_period else None
        alerts.append(Alert(
            alert_id=entity.id,
            header=_translated_text(alert.header_text),
            description=_translated_text(alert.description_text),
            cause=ALERT_CAUSE.get(alert.cause, "Unknown"),
            effect=ALERT_EFFECT.get(alert.effect, "Unknown"),
            severity=alert_severity(alert.effect, len(routes)),
            affected_routes=routes,
            affected_stops=stops,
            start_time=(period.start or None) if period else None,
            end_time=(period.end or None) if period else None,
        ))

    alerts.sort(key=lambda a: SEVERITY_ORDER[a.severity])
    logger.debug(f"Parsed {len(alerts)} service alerts")
    return alerts


def weather_from_open_meteo(payload: dict) -> Optional[WeatherCondition]:
    """
    Translate an Open-Meteo "current" block into a WeatherCondition.

    WMO weather codes: 51-67 and 80-82 are rain, 71-77 and 85-86 are snow,
    95-99 are thunderstorms (treated as rain).
    """
    current = payload.get("current") or {}
    code = current.get("weather_code")
    if code is None:
        return None
    code = int(code)
    temperature = current.get("temperature_2m")
    wind = current.get("wind_speed_10m")

    is_snow = 71 <= code <= 77 or code in (85, 86)
    is_rain = 51 <= code <= 67 or 80 <= code <= 82 or code >= 95
    is_extreme = (
        (temperature is not None and (temperature <= -10 or temperature >= 35))
        or (wind is not None and wind >= 50)
    )

    if is_snow:
        condition = "snow"
    elif is_rain:
        condition = "rain"
    elif is_extreme:
        condition = "extreme"
    elif code == 0:
        condition = "clear"
    else:
        condition = "cloudy"
    return WeatherCondition(condition=condition, is_rain=is_rain, is_snow=is_snow, is_extreme=is_extreme)


def fetch_weather(lat: float = NYC_LAT, lon: float = NYC_LON) -> Optional[WeatherCondition]:
    """Fetch current conditions from Open-Meteo."""
    params = {
        "latitude": lat,
        "longitude": lon,
        "current": "temperature_2m,weather_code,wind_speed_10m",
        "temperature_unit": "celsius",
        "wind_speed_unit": "kmh",
        "timezone": "America/New_York",
    }
    resp = requests.get(OPEN_METEO_URL, params=params, timeout=15)
    resp.raise_for_status()
    return weather_from_open_meteo(resp.json())


class LiveSignalProvider:
    """
    Assembles a LiveSignalSnapshot each cycle.

    Each signal degrades on its own: a failed fetch reuses the last value
    that was fetched successfully, or leaves the signal absent.
    """

    def __init__(
        self,
        directory: StationDirectory,
        feed_client: Optional[FeedClient] = None,
        weather_fetcher: Optional[Callable[[], Optional[WeatherCondition]]] = fetch_weather,
        window_seconds: int = 300,
    ):
        self.directory = directory
        self.feed_client = feed_client or FeedClient()
        self.weather_fetcher = weather_fetcher
        self.window_seconds = window_seconds
        self._last_trains: Dict[str, int] = {}
        self._last_disruptions: Dict[str, Disruption] = {}
        self._last_weather: Optional[WeatherCondition] = None

    def _trains(self, now: float) -> Dict[str, int]:
        try:
            feeds = self.feed_client.fetch_all()
            if feeds:
                self._last_trains = count_arrivals_by_complex(feeds, self.directory, now, self.window_seconds)
        except Exception as e:
            logger.warning(f"Train arrivals unavailable, using last known: {e}")
        return self._last_trains

    def _disruptions(self, now: float) -> Dict[str, Disruption]:
        try:
            feed = self.feed_client.fetch_feed(ALERTS_URL)
            self._last_disruptions = extract_disruptions(feed, self.directory, now)
        except Exception as e:
            logger.warning(f"Service alerts unavailable, using last known: {e}")
        return self._last_disruptions

    def _weather(self) -> Optional[WeatherCondition]:
        if self.weather_fetcher is None:
            return None
        try:
            weather = self.weather_fetcher()
            if weather is not None:
                self._last_weather = weather
        except Exception as e:
            logger.warning(f"Weather unavailable, using last known: {e}")
        return self._last_weather

    def alerts(self) -> List[Alert]:
        """Current service alerts, most severe first; empty if the feed is unavailable."""
        try:
            return extract_alerts(self.feed_client.fetch_feed(ALERTS_URL))
        except Exception as e:
            logger.warning(f"Failed to fetch alerts: {e}")
            return []

    def snapshot(self, now: Optional[datetime] = None) -> LiveSignalSnapshot:
        now = now or datetime.now()
        ts = now.timestamp()
        trains = self._trains(ts)
        if trains:
            logger.info(f"Train modulation: {sum(trains.values())} arrivals across {len(trains)} station complexes")
        return LiveSignalSnapshot(
            trains_by_complex=dict(trains),
            weather=self._weather(),
            disruptions=dict(self._disruptions(ts)),
            fetched_at=now,
        )
