"""Builds per-station crime risk from the historical incident log."""

import logging
import math
from concurrent.futures import ProcessPoolExecutor
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .config import CrimeRiskConfig
from .geo import haversine_meters, valid_coordinates, within_box
from .models import HOURS_PER_DAY, TIME_WINDOWS, Incident, StationCrimeRisk, time_window_for_hour

logger = logging.getLogger(__name__)

_StationPoint = Tuple[str, float, float]


class EmptyIncidentLogError(RuntimeError):
    """The incident source returned nothing, which points to an upstream outage."""


def recency_weight(days_ago: float, half_life_days: float = 30.0) -> float:
    """Exponential decay: 1.0 today, 0.5 after one half-life."""
    return math.exp(-math.log(2) * max(0.0, days_ago) / half_life_days)


def absolute_risk_tier(weighted_total: float, thresholds: Sequence[Tuple[str, float]]) -> str:
    for tier, minimum in thresholds:
        if weighted_total >= minimum:
            return tier
    return "low"


class _RiskAccumulator:
    __slots__ = ("windows", "hours", "total", "total_weighted", "crime_types")

    def __init__(self):
        self.windows = {w: 0.0 for w in TIME_WINDOWS}
        self.hours = [0.0] * HOURS_PER_DAY
        self.total = 0
        self.total_weighted = 0.0
        self.crime_types: Dict[str, float] = {}

    def add(self, hour: int, category: str, weight: float) -> None:
        self.windows[time_window_for_hour(hour)] += weight
        self.hours[hour] += weight
        self.total += 1
        self.total_weighted += weight
        self.crime_types[category] = self.crime_types.get(category, 0.0) + weight

    def merge(self, other: "_RiskAccumulator") -> None:
        for window, value in other.windows.items():
            self.windows[window] += value
        for hour in range(HOURS_PER_DAY):
            self.hours[hour] += other.hours[hour]
        self.total += other.total
        self.total_weighted += other.total_weighted
        for category, value in other.crime_types.items():
            self.crime_types[category] = self.crime_types.get(category, 0.0) + value

    def top_crime_type(self) -> Optional[str]:
        # Strict comparison keeps the first-seen category on ties
        top, top_weight = None, 0.0
        for category, weight in self.crime_types.items():
            if weight > top_weight:
                top, top_weight = category, weight
        return top


def _accumulate_partition(
    stations: List[_StationPoint],
    incidents: List[Incident],
    config: CrimeRiskConfig,
    now: datetime,
) -> Tuple[Dict[str, _RiskAccumulator], int]:
    """Spatially join one partition of incidents to every station in range."""
    accumulators = {station_id: _RiskAccumulator() for station_id, _, _ in stations}
    matched = 0

    for incident in incidents:
        if not valid_coordinates(incident.latitude, incident.longitude):
            continue
        lat = float(incident.latitude)
        lon = float(incident.longitude)
        days_ago = (now - incident.occurred_at).total_seconds() / 86400
        weight = recency_weight(days_ago, config.half_life_days)
        category = incident.category or "OTHER"
        hour = incident.occurred_at.hour

        for station_id, s_lat, s_lon in stations:
            if not within_box(s_lat, s_lon, lat, lon, config.bbox_degrees):
                continue
            if haversine_meters(s_lat, s_lon, lat, lon) <= config.radius_meters:
                accumulators[station_id].add(hour, category, weight)
                matched += 1

    return accumulators, matched


def _partition(items: List[Incident], count: int) -> List[List[Incident]]:
    size = math.ceil(len(items) / count)
    return [items[i:i + size] for i in range(0, len(items), size)]


def _normalize(values: Dict[str, float]) -> Dict[str, float]:
    """Scale values into [0, 1] relative to the largest, rounded to 3 decimals."""
    max_val = max(values.values(), default=0.0)
    if max_val <= 0:
        return {key: 0.0 for key in values}
    return {key: min(1.0, max(0.0, round(value / max_val, 3))) for key, value in values.items()}


def build_crime_risk(
    stations: Mapping,
    incidents: Sequence[Incident],
    config: Optional[CrimeRiskConfig] = None,
    now: Optional[datetime] = None,
) -> Dict[str, StationCrimeRisk]:
    """
    Compute recency-weighted, time-of-day crime risk for each station.

    Args:
        stations: Mapping of station_id -> object with name, latitude and longitude
            (typically the StationProfile map from the ridership builder).
        incidents: Incident log. Must not be empty.
        config: Builder settings; defaults to CrimeRiskConfig().
        now: Reference time for recency decay; defaults to datetime.now().

    Returns:
        Dictionary of station_id -> StationCrimeRisk.

    Raises:
        EmptyIncidentLogError: If there are no incidents to work with.
    """
    config = config or CrimeRiskConfig()
    now = now or datetime.now()

    if not incidents:
        raise EmptyIncidentLogError("Incident source returned no rows; refusing to build an all-zero model")

    incidents = list(incidents)
    if config.categories:
        allowed = set(config.categories)
        incidents = [i for i in incidents if i.category in allowed]
        if not incidents:
            raise EmptyIncidentLogError("No incidents matched the configured categories")

    located = [i for i in incidents if valid_coordinates(i.latitude, i.longitude)]
    if not located:
        raise EmptyIncidentLogError(f"None of {len(incidents)} incidents have usable coordinates")
    if len(located) < len(incidents):
        logger.warning(f"Dropped {len(incidents) - len(located)} incidents with missing or invalid coordinates")
    incidents = located

    points: List[_StationPoint] = [
        (station_id, float(s.latitude), float(s.longitude)) for station_id, s in stations.items()
    ]
    logger.info(f"Joining {len(incidents)} incidents to {len(points)} stations within {config.radius_meters}m")

    if config.workers > 1 and len(incidents) > 1:
        partitions = _partition(incidents, config.workers)
        with ProcessPoolExecutor(max_workers=config.workers) as executor:
            results = list(
                executor.map(
                    _accumulate_partition,
                    [points] * len(partitions),
                    partitions,
                    [config] * len(partitions),
                    [now] * len(partitions),
                )
            )
    else:
        results = [_accumulate_partition(points, incidents, config, now)]

    # Merge in partition order so first-seen crime types are stable
    accumulators, matched = results[0]
    for partial, partial_matched in results[1:]:
        for station_id, acc in partial.items():
            accumulators[station_id].merge(acc)
        matched += partial_matched
    logger.info(f"{matched} crime-station matches")

    window_risk = {
        window: _normalize({sid: acc.windows[window] for sid, acc in accumulators.items()})
        for window in TIME_WINDOWS
    }
    overall = _normalize({
        sid: sum(acc.windows[w] * config.window_weights.get(w, 0.0) for w in TIME_WINDOWS)
        for sid, acc in accumulators.items()
    })
    hourly = None
    if config.hourly_curve:
        hourly = [
            _normalize({sid: acc.hours[hour] for sid, acc in accumulators.items()})
            for hour in range(HOURS_PER_DAY)
        ]

    risk: Dict[str, StationCrimeRisk] = {}
    for station_id, acc in accumulators.items():
        risk[station_id] = StationCrimeRisk(
            station_id=station_id,
            name=getattr(stations[station_id], "name", station_id),
            window_sums={w: round(v, 4) for w, v in acc.windows.items()},
            window_risk={w: window_risk[w][station_id] for w in TIME_WINDOWS},
            total=acc.total,
            total_weighted=round(acc.total_weighted, 4),
            top_crime_type=acc.top_crime_type(),
            risk_tier=absolute_risk_tier(acc.total_weighted, config.tier_thresholds),
            overall_risk=overall[station_id],
            hourly_risk=[hourly[h][station_id] for h in range(HOURS_PER_DAY)] if hourly else None,
        )

    with_crime = sum(1 for r in risk.values() if r.total > 0)
    logger.info(f"Stations with nearby crimes: {with_crime}")
    return risk


def top_risk_stations(risk: Mapping[str, StationCrimeRisk], limit: int = 10) -> List[StationCrimeRisk]:
    """Stations ordered by overall risk, highest first."""
    return sorted(risk.values(), key=lambda r: r.overall_risk, reverse=True)[:limit]
