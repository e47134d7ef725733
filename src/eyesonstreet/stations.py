"""MTA station list loader and GTFS stop to station complex mapping."""

import csv
import io
import logging
from typing import Dict, List, Optional
from urllib.request import urlopen

from .geo import valid_coordinates

logger = logging.getLogger(__name__)

# MTA Subway Stations (data.ny.gov)
MTA_STATIONS_URL = "https://data.ny.gov/resource/39hk-dx4f.csv?$limit=5000"


class StationDirectory:
    """Indexes subway stops and the station complexes they belong to."""

    def __init__(self):
        self.stops: Dict[str, dict] = {}  # stop_id -> {name, lat, lon}
        self.stop_to_complex: Dict[str, str] = {}
        self.stops_by_name: Dict[str, List[str]] = {}  # name -> [stop_ids]

    def load_from_url(self, url: str = MTA_STATIONS_URL) -> None:
        """Download and load the MTA station list."""
        logger.info(f"Downloading station list from {url}")
        try:
            with urlopen(url, timeout=30) as response:
                self._load_stations(response.read().decode("utf-8"))
            logger.info(f"Loaded {len(self.stops)} stops, {len(self.stop_to_complex)} stop-to-complex mappings")
        except Exception as e:
            logger.error(f"Failed to load station list: {e}")
            raise

    def load_from_file(self, path: str) -> None:
        """Load the station list from a local CSV file."""
        logger.info(f"Loading station list from {path}")
        with open(path, "r", encoding="utf-8") as f:
            self._load_stations(f.read())
        logger.info(f"Loaded {len(self.stops)} stops, {len(self.stop_to_complex)} stop-to-complex mappings")

    def _load_stations(self, csv_content: str) -> None:
        """Parse the station CSV, registering each stop and its N/S platforms."""
        reader = csv.DictReader(io.StringIO(csv_content))
        for row in reader:
            row = {k.strip().lower().replace(" ", "_"): (v or "").strip() for k, v in row.items() if k}
            stop_id = row.get("gtfs_stop_id")
            lat = row.get("gtfs_latitude")
            lon = row.get("gtfs_longitude")
            if not stop_id or not valid_coordinates(lat, lon):
                continue

            stop = {"name": row.get("stop_name", stop_id), "lat": float(lat), "lon": float(lon)}
            complex_id = row.get("complex_id")
            for platform_id in (stop_id, stop_id + "N", stop_id + "S"):
                self.stops[platform_id] = stop
                if complex_id:
                    self.stop_to_complex[platform_id] = complex_id

            self.stops_by_name.setdefault(stop["name"], []).append(stop_id)

    def complex_for_stop(self, stop_id: str) -> Optional[str]:
        """Map a raw feed stop id (e.g. "127N") to its station complex id."""
        if not stop_id:
            return None
        complex_id = self.stop_to_complex.get(stop_id)
        if complex_id is None and stop_id[-1:] in ("N", "S"):
            complex_id = self.stop_to_complex.get(stop_id[:-1])
        return complex_id

    def find_stops_by_name(self, name: str) -> List[str]:
        """Find stop IDs by name (partial match)."""
        name_lower = name.lower()
        results = []
        for stop_name, stop_ids in self.stops_by_name.items():
            if name_lower in stop_name.lower():
                results.extend(stop_ids)
        return results

    def get_stop(self, stop_id: str) -> dict:
        if stop_id not in self.stops:
            raise ValueError(f"Stop {stop_id} not found")
        return self.stops[stop_id]
