"""Model persistence and the serving handle for the current model generation."""

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Mapping, Optional, Tuple

from .models import DAY_NAMES, TIME_WINDOWS, StationCrimeRisk, StationProfile

logger = logging.getLogger(__name__)


def _write_json(path: str, payload: dict) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    tmp_path = path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(payload, f)
    os.replace(tmp_path, path)
    size_mb = os.path.getsize(path) / 1024 / 1024
    logger.info(f"Wrote {path} ({size_mb:.2f} MB)")


def save_ridership_model(path: str, profiles: Mapping[str, StationProfile], weeks: int) -> None:
    stations = {
        station_id: {
            "name": p.name,
            "lat": p.latitude,
            "lon": p.longitude,
            "hourly": {day: p.hourly[i] for i, day in enumerate(DAY_NAMES)},
            "stddev": {day: p.stddev[i] for i, day in enumerate(DAY_NAMES)},
        }
        for station_id, p in profiles.items()
    }
    _write_json(path, {
        "stations": stations,
        "metadata": {
            "weeks": weeks,
            "generated": datetime.now().date().isoformat(),
            "stationCount": len(stations),
        },
    })


def load_ridership_model(path: str) -> Tuple[Dict[str, StationProfile], dict]:
    """Load profiles; a missing file yields an empty model so serving can continue."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        logger.warning(f"Ridership model not found at {path}; run scripts/build_ridership_model.py")
        return {}, {}

    profiles: Dict[str, StationProfile] = {}
    for station_id, s in raw.get("stations", {}).items():
        hourly = s.get("hourly", {})
        stddev = s.get("stddev", {})
        if any(day not in hourly for day in DAY_NAMES):
            logger.debug(f"Skipping station {station_id}: incomplete hourly grid")
            continue
        profiles[station_id] = StationProfile(
            station_id=station_id,
            name=s.get("name", f"Station {station_id}"),
            latitude=s["lat"],
            longitude=s["lon"],
            hourly=[list(hourly[day]) for day in DAY_NAMES],
            stddev=[list(stddev.get(day, [0] * 24)) for day in DAY_NAMES],
        )
    logger.info(f"Loaded ridership model for {len(profiles)} stations")
    return profiles, raw.get("metadata", {})


def save_crime_model(path: str, risk: Mapping[str, StationCrimeRisk], metadata: dict) -> None:
    station_risk = {}
    for station_id, r in risk.items():
        entry = {
            "name": r.name,
            "total": r.total,
            "totalWeighted": r.total_weighted,
            "topCrimeType": r.top_crime_type,
            "riskTier": r.risk_tier,
            "overallRisk": r.overall_risk,
        }
        for window, value in r.window_sums.items():
            entry[window] = value
            entry[window + "Risk"] = r.window_risk.get(window, 0.0)
        if r.hourly_risk:
            entry["hourlyRisk"] = r.hourly_risk
        station_risk[station_id] = entry

    meta = dict(metadata)
    meta.setdefault("generated", datetime.now().date().isoformat())
    _write_json(path, {"stationRisk": station_risk, "metadata": meta})


def load_crime_model(path: str) -> Tuple[Dict[str, StationCrimeRisk], dict]:
    """Load crime risk; a missing file yields an empty model."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        logger.warning(f"Crime model not found at {path}; run scripts/build_crime_model.py")
        return {}, {}

    risk: Dict[str, StationCrimeRisk] = {}
    for station_id, entry in raw.get("stationRisk", {}).items():
        risk[station_id] = StationCrimeRisk(
            station_id=station_id,
            name=entry.get("name", station_id),
            window_sums={w: entry.get(w, 0.0) for w in TIME_WINDOWS},
            window_risk={w: entry.get(w + "Risk", 0.0) for w in TIME_WINDOWS},
            total=entry.get("total", 0),
            total_weighted=entry.get("totalWeighted", 0.0),
            top_crime_type=entry.get("topCrimeType"),
            risk_tier=entry.get("riskTier", "low"),
            overall_risk=entry.get("overallRisk", 0.0),
            hourly_risk=entry.get("hourlyRisk"),
        )
    logger.info(f"Loaded crime risk for {len(risk)} stations")
    return risk, raw.get("metadata", {})


@dataclass(frozen=True)
class ModelGeneration:
    """One immutable pair of offline models served together."""
    profiles: Mapping[str, StationProfile] = field(default_factory=dict)
    crime_risk: Mapping[str, StationCrimeRisk] = field(default_factory=dict)
    loaded_at: Optional[datetime] = None


class ModelStore:
    """
    Holds the current ModelGeneration.

    Readers call current() and keep the returned handle for the whole
    computation. Rebuilds publish a new generation with swap(); readers
    never see a half-replaced model.
    """

    def __init__(self, generation: Optional[ModelGeneration] = None):
        self._generation = generation or ModelGeneration()
        self._swap_lock = threading.Lock()

    def current(self) -> ModelGeneration:
        return self._generation

    def swap(self, generation: ModelGeneration) -> ModelGeneration:
        """Publish a new generation and return the one it replaced."""
        with self._swap_lock:
            previous = self._generation
            self._generation = generation
        logger.info(
            f"Swapped model generation: {len(generation.profiles)} stations, "
            f"{len(generation.crime_risk)} with crime risk"
        )
        return previous

    def reload(self, ridership_path: str, crime_path: str) -> ModelGeneration:
        """Load both models from disk and swap them in."""
        profiles, _ = load_ridership_model(ridership_path)
        crime_risk, _ = load_crime_model(crime_path)
        generation = ModelGeneration(profiles=profiles, crime_risk=crime_risk, loaded_at=datetime.now())
        self.swap(generation)
        return generation
