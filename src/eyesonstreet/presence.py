"""Online presence computation.

Joins the offline ridership profiles and crime risk with the live signal
snapshot to estimate how many people are at each station right now, and
classifies each station's safety level. Nothing here writes to the inputs,
so concurrent computations over the same profiles are safe.
"""

import logging
from datetime import datetime
from typing import Mapping, Optional, Tuple

from .config import PresenceConfig
from .models import (
    DAY_NAMES,
    LiveSignalSnapshot,
    PresenceRecord,
    PresenceSnapshot,
    StationCrimeRisk,
    StationProfile,
    WeatherCondition,
    is_night_hour,
)
from .ridership_builder import round_half_up
from .safety import apply_disruption, classify, safety_stats

logger = logging.getLogger(__name__)


def train_modulation(baseline: int, train_count: int, config: PresenceConfig) -> float:
    """
    Multiplier on the baseline from live train activity.

    Ridership never drops below the floor from a quiet window alone, and a
    single busy window can at most reach the cap.
    """
    if train_count <= 0 or baseline <= 0:
        return 1.0
    expected = config.expected_trains(baseline)
    modulation = config.modulation_floor + (1 - config.modulation_floor) * (train_count / expected)
    return min(modulation, config.modulation_cap)


def weather_multiplier(weather: Optional[WeatherCondition], config: PresenceConfig) -> float:
    if weather is None:
        return 1.0
    if weather.is_snow:
        return config.snow_multiplier
    if weather.is_rain:
        return config.rain_multiplier
    if weather.is_extreme:
        return config.extreme_multiplier
    return 1.0


def detect_anomaly(
    ridership: int,
    baseline: int,
    stddev: float,
    config: PresenceConfig,
) -> Tuple[bool, float, Optional[float]]:
    """
    Flag ridership that deviates from the historical baseline.

    Uses a z-score when the slot has spread information, otherwise a
    percentage test. Both are gated on a minimum baseline volume.

    Returns:
        (is_anomaly, anomaly_score, z_score or None)
    """
    anomaly_score = (ridership - baseline) / baseline if baseline > 0 else 0.0
    if baseline <= config.min_volume:
        return False, anomaly_score, None

    if stddev > 0:
        z = (ridership - baseline) / stddev
        return abs(z) > config.z_threshold, anomaly_score, z

    return abs(anomaly_score) > config.pct_threshold, anomaly_score, None


def estimate_station(
    profile: StationProfile,
    crime: Optional[StationCrimeRisk],
    signals: LiveSignalSnapshot,
    day: int,
    hour: int,
    config: PresenceConfig,
) -> Optional[PresenceRecord]:
    """Build the presence record for one station, or None if it has no baseline."""
    baseline = profile.baseline(day, hour)
    if baseline is None:
        return None

    train_count = signals.trains_by_complex.get(profile.station_id, 0)
    factor = train_modulation(baseline, train_count, config) * weather_multiplier(signals.weather, config)
    ridership = max(0, round_half_up(baseline * factor))

    is_anomaly, anomaly_score, z_score = detect_anomaly(
        ridership, baseline, profile.deviation(day, hour), config
    )

    crime_risk = crime.risk_for_hour(hour) if crime else 0.0
    level = classify(ridership, crime_risk, hour)

    record = PresenceRecord(
        station_id=profile.station_id,
        name=profile.name,
        latitude=profile.latitude,
        longitude=profile.longitude,
        ridership=ridership,
        baseline=baseline,
        anomaly_score=round(anomaly_score, 3),
        is_anomaly=is_anomaly,
        train_count=train_count,
        crime_risk=round(crime_risk, 3),
        crime_total=crime.total if crime else 0,
        safety_level=level,
        z_score=round(z_score, 3) if z_score is not None else None,
        top_crime_type=crime.top_crime_type if crime else None,
        risk_tier=crime.risk_tier if crime else None,
    )
    return apply_disruption(record, signals.disruptions.get(profile.station_id), hour)


def compute_presence(
    profiles: Mapping[str, StationProfile],
    crime_risk: Optional[Mapping[str, StationCrimeRisk]],
    signals: Optional[LiveSignalSnapshot],
    now: datetime,
    config: Optional[PresenceConfig] = None,
) -> PresenceSnapshot:
    """
    Estimate presence and safety for every profiled station.

    Args:
        profiles: Station ridership profiles (read-only).
        crime_risk: Station crime risk (read-only); may be empty.
        signals: Live signals; any missing signal falls back to the baseline.
        now: Current local time.
        config: Presence settings; defaults to PresenceConfig().

    Returns:
        PresenceSnapshot with stations sorted busiest first.
    """
    config = config or PresenceConfig()
    signals = signals or LiveSignalSnapshot()
    crime_risk = crime_risk or {}
    day = now.weekday()
    hour = now.hour

    records = []
    for station_id, profile in profiles.items():
        record = estimate_station(profile, crime_risk.get(station_id), signals, day, hour, config)
        if record is not None:
            records.append(record)

    records.sort(key=lambda r: r.ridership, reverse=True)

    if signals.trains_by_complex:
        logger.debug(
            f"Train modulation: {sum(signals.trains_by_complex.values())} arrivals "
            f"across {len(signals.trains_by_complex)} station complexes"
        )

    return PresenceSnapshot(
        timestamp=now,
        hour=hour,
        day_of_week=DAY_NAMES[day],
        total_presence=sum(r.ridership for r in records),
        anomaly_count=sum(1 for r in records if r.is_anomaly),
        is_night_mode=is_night_hour(hour),
        safety_stats=dict(safety_stats(r.safety_level for r in records)),
        stations=records,
        disruption_count=sum(1 for r in records if r.disrupted),
    )
