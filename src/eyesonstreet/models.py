"""Data models for the presence estimation engine."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional

DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
HOURS_PER_DAY = 24

TIME_WINDOWS = ("morning", "afternoon", "evening", "latenight")

SAFE = "safe"
CAUTION = "caution"
AVOID = "avoid"
SAFETY_LEVELS = (SAFE, CAUTION, AVOID)

NO_SERVICE = "No Service"
SIGNIFICANT_DELAYS = "Significant Delays"


def empty_grid() -> List[List[int]]:
    """Return a 7x24 grid of zeros indexed by weekday then hour."""
    return [[0] * HOURS_PER_DAY for _ in DAY_NAMES]


@dataclass
class RidershipEvent:
    """One row of the historical hourly ridership log."""
    station_id: str
    timestamp: datetime
    rider_count: int
    latitude: float
    longitude: float
    name: Optional[str] = None


@dataclass
class Incident:
    """One row of the historical incident log."""
    category: str
    occurred_at: datetime
    latitude: float
    longitude: float


@dataclass(frozen=True)
class StationProfile:
    """Historical ridership statistics for a station complex."""
    station_id: str
    name: str
    latitude: float
    longitude: float
    hourly: List[List[int]]  # [weekday][hour] -> mean ridership
    stddev: List[List[int]]  # [weekday][hour] -> population std deviation

    def baseline(self, day: int, hour: int) -> Optional[int]:
        """Mean ridership for the slot, or None when the grid has no such slot."""
        try:
            return self.hourly[day][hour]
        except IndexError:
            return None

    def deviation(self, day: int, hour: int) -> int:
        try:
            return self.stddev[day][hour]
        except IndexError:
            return 0


@dataclass(frozen=True)
class StationCrimeRisk:
    """Recency-weighted crime risk around a station complex."""
    station_id: str
    name: str
    window_sums: Dict[str, float]  # raw weighted sums per time window
    window_risk: Dict[str, float]  # normalized to [0, 1] within this build
    total: int  # unweighted incident count
    total_weighted: float
    top_crime_type: Optional[str]
    risk_tier: str
    overall_risk: float = 0.0
    hourly_risk: Optional[List[float]] = None

    def risk_for_hour(self, hour: int) -> float:
        """Prefer the hourly curve, else the coarse window figure."""
        if self.hourly_risk:
            return self.hourly_risk[hour]
        return self.window_risk.get(time_window_for_hour(hour), 0.0)


@dataclass(frozen=True)
class WeatherCondition:
    """Current weather as reported by the weather adapter."""
    condition: str
    is_rain: bool = False
    is_snow: bool = False
    is_extreme: bool = False


@dataclass(frozen=True)
class Disruption:
    """Active service disruption affecting a station complex."""
    effect: str
    routes: List[str] = field(default_factory=list)


@dataclass
class Alert:
    """A subway service alert as published in the alerts feed."""
    alert_id: str
    header: str
    description: str
    cause: str
    effect: str
    severity: str  # "critical", "high", "medium" or "low"
    affected_routes: List[str] = field(default_factory=list)
    affected_stops: List[str] = field(default_factory=list)
    start_time: Optional[int] = None  # Unix seconds, first active period
    end_time: Optional[int] = None


@dataclass(frozen=True)
class LiveSignalSnapshot:
    """Live inputs for one presence computation cycle."""
    trains_by_complex: Mapping[str, int] = field(default_factory=dict)
    weather: Optional[WeatherCondition] = None
    disruptions: Mapping[str, Disruption] = field(default_factory=dict)
    fetched_at: Optional[datetime] = None


@dataclass
class PresenceRecord:
    """Estimated presence and safety level for a single station."""
    station_id: str
    name: str
    latitude: float
    longitude: float
    ridership: int
    baseline: int
    anomaly_score: float
    is_anomaly: bool
    train_count: int
    crime_risk: float
    crime_total: int
    safety_level: str
    z_score: Optional[float] = None
    base_safety_level: Optional[str] = None  # before disruption escalation
    top_crime_type: Optional[str] = None
    risk_tier: Optional[str] = None
    disrupted: bool = False
    disruption_effect: Optional[str] = None
    disruption_routes: List[str] = field(default_factory=list)


@dataclass
class PresenceSnapshot:
    """Aggregate result of a presence computation cycle."""
    timestamp: datetime
    hour: int
    day_of_week: str
    total_presence: int
    anomaly_count: int
    is_night_mode: bool
    safety_stats: Dict[str, int]
    stations: List[PresenceRecord]
    disruption_count: int = 0

    def anomalies(self) -> List[PresenceRecord]:
        return [s for s in self.stations if s.is_anomaly]

    def stations_at(self, level: str) -> List[PresenceRecord]:
        """Stations classified at the given safety level, busiest first."""
        if level not in SAFETY_LEVELS:
            raise ValueError(f"Unknown safety level '{level}'")
        return [s for s in self.stations if s.safety_level == level]


def time_window_for_hour(hour: int) -> str:
    """Map an hour of day to one of the four crime time windows."""
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    if 18 <= hour < 22:
        return "evening"
    return "latenight"


def is_night_hour(hour: int) -> bool:
    return hour >= 22 or hour < 6
