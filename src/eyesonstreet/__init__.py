"""Eyes on the Street - subway station presence estimation and safety levels."""

__version__ = "0.1.0"

from .models import (
    StationProfile,
    StationCrimeRisk,
    LiveSignalSnapshot,
    WeatherCondition,
    Disruption,
    Alert,
    PresenceRecord,
    PresenceSnapshot,
)
from .config import CrimeRiskConfig, PresenceConfig, RidershipConfig
from .ridership_builder import build_ridership_profiles, RidershipProfileBuilder
from .crime_builder import build_crime_risk, EmptyIncidentLogError
from .presence import compute_presence
from .safety import apply_disruption, classify, escalate_for_disruption
from .storage import ModelStore, ModelGeneration

__all__ = [
    "build_ridership_profiles",
    "build_crime_risk",
    "compute_presence",
    "classify",
    "escalate_for_disruption",
    "apply_disruption",
    "RidershipProfileBuilder",
    "EmptyIncidentLogError",
    "CrimeRiskConfig",
    "PresenceConfig",
    "RidershipConfig",
    "ModelStore",
    "ModelGeneration",
    "StationProfile",
    "StationCrimeRisk",
    "LiveSignalSnapshot",
    "WeatherCondition",
    "Disruption",
    "Alert",
    "PresenceRecord",
    "PresenceSnapshot",
]
