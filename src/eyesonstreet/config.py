"""Tunable constants for the model builders and presence computation.

The crime thresholds and overall-risk window weights were calibrated against
six months of NYPD complaint data (roughly 1.3 weighted incidents per month
marks a critical station). They are empirical and should be re-tuned if the
incident source or radius changes.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

# Personal safety offense categories (NYPD ofns_desc values)
DEFAULT_CRIME_CATEGORIES = (
    "ROBBERY",
    "FELONY ASSAULT",
    "GRAND LARCENY OF PERSON",
    "RAPE",
    "MURDER & NON-NEGL. MANSLAUGHTER",
    "KIDNAPPING & RELATED OFFENSES",
)


@dataclass(frozen=True)
class RidershipConfig:
    """Settings for the ridership profile builder."""
    weeks: int = 4


@dataclass(frozen=True)
class CrimeRiskConfig:
    """Settings for the crime risk builder."""
    categories: Optional[Tuple[str, ...]] = DEFAULT_CRIME_CATEGORIES
    half_life_days: float = 30.0
    radius_meters: float = 400.0
    bbox_degrees: float = 0.004  # ~400m at NYC latitude
    months_back: int = 6
    # (tier, minimum weighted total), checked in order
    tier_thresholds: Tuple[Tuple[str, float], ...] = (
        ("critical", 8.0),
        ("elevated", 4.0),
        ("moderate", 1.5),
    )
    window_weights: Dict[str, float] = field(
        default_factory=lambda: {
            "morning": 0.5,
            "afternoon": 0.5,
            "evening": 1.0,
            "latenight": 2.0,
        }
    )
    hourly_curve: bool = False
    workers: int = 1

    def __post_init__(self):
        if self.half_life_days <= 0:
            raise ValueError("half_life_days must be positive")
        if self.radius_meters <= 0:
            raise ValueError("radius_meters must be positive")
        if self.workers < 1:
            raise ValueError("workers must be at least 1")


@dataclass(frozen=True)
class PresenceConfig:
    """Settings for the online presence computation."""
    # (baseline above, expected trains), checked in order
    train_tiers: Tuple[Tuple[int, int], ...] = ((5000, 12), (2000, 8), (500, 5))
    default_expected_trains: int = 3
    modulation_floor: float = 0.7
    modulation_cap: float = 2.0
    snow_multiplier: float = 0.70
    rain_multiplier: float = 0.80
    extreme_multiplier: float = 0.85
    z_threshold: float = 2.0
    pct_threshold: float = 0.3
    min_volume: int = 50

    def expected_trains(self, baseline: int) -> int:
        for above, expected in self.train_tiers:
            if baseline > above:
                return expected
        return self.default_expected_trains
