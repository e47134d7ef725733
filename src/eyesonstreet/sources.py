"""Historical data sources: NYC Open Data (Socrata) and bulk CSV exports."""

import logging
import os
import time
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

import pandas as pd
import requests

from .geo import valid_coordinates
from .models import Incident, RidershipEvent

logger = logging.getLogger(__name__)

# MTA Subway Hourly Ridership
RIDERSHIP_URL = "https://data.ny.gov/resource/5wq4-mkjj.json"
# NYPD Complaint Data Current (Year To Date)
COMPLAINTS_URL = "https://data.cityofnewyork.us/resource/5uac-w243.json"

PAGE_SIZE = 50000


class SocrataClient:
    """Paginated reader for Socrata open data endpoints."""

    def __init__(self, app_token: Optional[str] = None, page_size: int = PAGE_SIZE, timeout: int = 120, max_retries: int = 3):
        self.app_token = app_token or os.getenv("SOCRATA_APP_TOKEN")
        self.page_size = page_size
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = requests.Session()
        if self.app_token:
            self.session.headers["X-App-Token"] = self.app_token

    def fetch_page(self, url: str, params: Dict[str, str], offset: int) -> List[dict]:
        page_params = dict(params)
        page_params["$limit"] = str(self.page_size)
        page_params["$offset"] = str(offset)

        for attempt in range(self.max_retries):
            try:
                resp = self.session.get(url, params=page_params, timeout=self.timeout)
                resp.raise_for_status()
                return resp.json()
            except requests.RequestException as e:
                logger.warning(f"Fetch {url} offset={offset} failed (attempt {attempt + 1}/{self.max_retries}): {e}")
                if attempt == self.max_retries - 1:
                    raise
                time.sleep(2 ** attempt)
        return []

    def fetch_all(self, url: str, params: Dict[str, str]) -> List[dict]:
        """Fetch every row matching the query, one page at a time."""
        rows: List[dict] = []
        offset = 0
        while True:
            logger.info(f"  fetching offset={offset}...")
            page = self.fetch_page(url, params, offset)
            if not page:
                break
            rows.extend(page)
            logger.info(f"  total rows: {len(rows)}")
            if len(page) < self.page_size:
                break
            offset += self.page_size
        return rows


def _parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", ""))
    except ValueError:
        pass
    # Bulk exports use "05/01/2024 01:00:00 PM"
    try:
        return pd.to_datetime(value).to_pydatetime()
    except (ValueError, TypeError):
        return None


def ridership_event_from_row(row: dict) -> Optional[RidershipEvent]:
    """Convert a ridership dataset row; None if the row is unusable."""
    station_id = row.get("station_complex_id")
    timestamp = _parse_timestamp(row.get("transit_timestamp"))
    if not station_id or timestamp is None:
        return None
    if not valid_coordinates(row.get("latitude"), row.get("longitude")):
        return None
    try:
        riders = int(float(row.get("ridership") or 0))
    except (TypeError, ValueError):
        riders = 0
    return RidershipEvent(
        station_id=str(station_id),
        timestamp=timestamp,
        rider_count=riders,
        latitude=float(row["latitude"]),
        longitude=float(row["longitude"]),
        name=row.get("station_complex") or None,
    )


def incident_from_row(row: dict) -> Optional[Incident]:
    """Convert a complaint row; None if date, time or coordinates are missing."""
    date = _parse_timestamp(row.get("cmplnt_fr_dt"))
    time_str = row.get("cmplnt_fr_tm")
    if date is None or not time_str:
        return None
    try:
        hours, minutes, *rest = (int(part) for part in str(time_str).split(":"))
        seconds = rest[0] if rest else 0
        occurred_at = date.replace(hour=hours % 24, minute=minutes, second=seconds)
    except ValueError:
        return None
    if not valid_coordinates(row.get("latitude"), row.get("longitude")):
        return None
    return Incident(
        category=row.get("ofns_desc") or "OTHER",
        occurred_at=occurred_at,
        latitude=float(row["latitude"]),
        longitude=float(row["longitude"]),
    )


def _convert(rows: Iterable[dict], converter) -> list:
    converted = []
    dropped = 0
    for row in rows:
        item = converter(row)
        if item is None:
            dropped += 1
            continue
        converted.append(item)
    if dropped:
        logger.debug(f"Dropped {dropped} malformed rows")
    return converted


def fetch_ridership_events(client: SocrataClient, weeks: int = 4, now: Optional[datetime] = None) -> List[RidershipEvent]:
    """Fetch the trailing `weeks` of hourly ridership."""
    since = ((now or datetime.now()) - timedelta(weeks=weeks)).strftime("%Y-%m-%d")
    logger.info(f"Fetching ridership data since {since}...")
    rows = client.fetch_all(RIDERSHIP_URL, {
        "$where": f"transit_timestamp >= '{since}'",
        "$order": "transit_timestamp ASC",
    })
    return _convert(rows, ridership_event_from_row)


def fetch_incidents(
    client: SocrataClient,
    categories: Optional[Iterable[str]],
    months: int = 6,
    now: Optional[datetime] = None,
) -> List[Incident]:
    """Fetch complaints for the trailing `months`, limited to `categories` unless it is empty or None."""
    since = ((now or datetime.now()) - timedelta(days=30 * months)).strftime("%Y-%m-%d")
    clauses = [f"cmplnt_fr_dt >= '{since}'"]
    if categories:
        type_filter = ",".join(f"'{c}'" for c in categories)
        clauses.append(f"ofns_desc in ({type_filter})")
    clauses.append("latitude IS NOT NULL")
    logger.info(f"Fetching crime data since {since}...")
    rows = client.fetch_all(COMPLAINTS_URL, {
        "$where": " AND ".join(clauses),
        "$select": "cmplnt_fr_dt,cmplnt_fr_tm,ofns_desc,latitude,longitude",
        "$order": "cmplnt_fr_dt ASC",
    })
    return _convert(rows, incident_from_row)


def _frame_rows(path: str) -> List[dict]:
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [c.strip().lower().replace(" ", "_") for c in df.columns]
    return df.to_dict(orient="records")


def load_ridership_csv(path: str) -> List[RidershipEvent]:
    """Read a ridership CSV export (same columns as the API)."""
    logger.info(f"Loading ridership events from {path}")
    return _convert(_frame_rows(path), ridership_event_from_row)


def load_incidents_csv(path: str) -> List[Incident]:
    """Read a complaint CSV export (same columns as the API)."""
    logger.info(f"Loading incidents from {path}")
    return _convert(_frame_rows(path), incident_from_row)
