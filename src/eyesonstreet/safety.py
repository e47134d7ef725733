"""Safety classification policy.

A station is only escalated when low foot traffic and elevated crime risk
occur together. Crime risk is the build-relative figure in [0, 1], where
1.0 is the most crime-affected station for the time window.
"""

from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from .models import (
    AVOID,
    CAUTION,
    NO_SERVICE,
    SAFE,
    SIGNIFICANT_DELAYS,
    Disruption,
    PresenceRecord,
    is_night_hour,
)

DAYTIME = "daytime"
EVENING = "evening"
LATE_NIGHT = "late_night"


@dataclass(frozen=True)
class SafetyRule:
    """A row of the decision table: crime_risk >= min_risk and ridership < max_ridership."""
    period: str
    min_risk: float
    max_ridership: int
    level: str

    def matches(self, ridership: int, crime_risk: float) -> bool:
        return crime_risk >= self.min_risk and ridership < self.max_ridership


# Evaluated top-down per period, first match wins; no match means safe
SAFETY_RULES: Tuple[SafetyRule, ...] = (
    SafetyRule(DAYTIME, 0.8, 15, CAUTION),
    SafetyRule(EVENING, 0.7, 25, AVOID),
    SafetyRule(EVENING, 0.5, 15, CAUTION),
    SafetyRule(LATE_NIGHT, 0.5, 15, AVOID),
    SafetyRule(LATE_NIGHT, 0.3, 25, CAUTION),
    SafetyRule(LATE_NIGHT, 0.15, 5, CAUTION),
)

_ESCALATION = {SAFE: CAUTION, CAUTION: AVOID, AVOID: AVOID}


def period_for_hour(hour: int) -> str:
    if 6 <= hour < 18:
        return DAYTIME
    if 18 <= hour < 22:
        return EVENING
    return LATE_NIGHT


def classify(ridership: int, crime_risk: float, hour: int, rules: Tuple[SafetyRule, ...] = SAFETY_RULES) -> str:
    """
    Classify a station as safe, caution or avoid.

    Args:
        ridership: Estimated riders at the station this hour.
        crime_risk: Normalized crime risk for the current hour.
        hour: Hour of day (0-23).
        rules: Decision table to evaluate.

    Returns:
        One of "safe", "caution", "avoid".
    """
    period = period_for_hour(hour)
    for rule in rules:
        if rule.period == period and rule.matches(ridership, crime_risk):
            return rule.level
    return SAFE


def escalate_for_disruption(level: str, disruption: Optional[Disruption], hour: int) -> str:
    """
    Raise the safety level for an active service disruption.

    No service escalates one tier at any hour. Significant delays only turn
    safe into caution at night. Never lowers a level.
    """
    if disruption is None:
        return level
    if disruption.effect == NO_SERVICE:
        return _ESCALATION[level]
    if disruption.effect == SIGNIFICANT_DELAYS and is_night_hour(hour) and level == SAFE:
        return CAUTION
    return level


def apply_disruption(record: PresenceRecord, disruption: Optional[Disruption], hour: int) -> PresenceRecord:
    """
    Set the record's disruption fields and escalate from its base classification.

    Use this rather than escalate_for_disruption on a record: it always starts
    from base_safety_level, so applying the same disruption again leaves the
    record unchanged.
    """
    if record.base_safety_level is None:
        record.base_safety_level = record.safety_level
    record.safety_level = escalate_for_disruption(record.base_safety_level, disruption, hour)
    record.disrupted = disruption is not None
    record.disruption_effect = disruption.effect if disruption else None
    record.disruption_routes = list(disruption.routes) if disruption else []
    return record


def safety_stats(levels) -> Mapping[str, int]:
    """Count stations per safety level."""
    stats = {SAFE: 0, CAUTION: 0, AVOID: 0}
    for level in levels:
        stats[level] += 1
    return stats
