"""Builds per-station ridership profiles from the historical hourly log."""

import logging
import math
from typing import Dict, Iterable, List, Optional

from .geo import valid_coordinates
from .models import DAY_NAMES, HOURS_PER_DAY, RidershipEvent, StationProfile

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class _StationAccumulator:
    """Running sum, sum of squares and count per (weekday, hour) bucket."""

    __slots__ = ("name", "latitude", "longitude", "sums", "sum_sq", "counts")

    def __init__(self, name: str, latitude: float, longitude: float):
        self.name = name
        self.latitude = latitude
        self.longitude = longitude
        self.sums = [[0.0] * HOURS_PER_DAY for _ in DAY_NAMES]
        self.sum_sq = [[0.0] * HOURS_PER_DAY for _ in DAY_NAMES]
        self.counts = [[0] * HOURS_PER_DAY for _ in DAY_NAMES]

    def add(self, day: int, hour: int, riders: int) -> None:
        self.sums[day][hour] += riders
        self.sum_sq[day][hour] += riders * riders
        self.counts[day][hour] += 1

    def merge(self, other: "_StationAccumulator") -> None:
        for day in range(len(DAY_NAMES)):
            for hour in range(HOURS_PER_DAY):
                self.sums[day][hour] += other.sums[day][hour]
                self.sum_sq[day][hour] += other.sum_sq[day][hour]
                self.counts[day][hour] += other.counts[day][hour]


class RidershipProfileBuilder:
    """
    Aggregates raw ridership events into 7x24 mean and standard deviation grids.

    Events can be fed in any order. Independent builders may be filled in
    parallel and combined with merge(); the result does not depend on how
    the events were partitioned.
    """

    def __init__(self):
        self._stations: Dict[str, _StationAccumulator] = {}
        self.events_seen = 0
        self.events_skipped = 0

    def add_event(self, event: RidershipEvent) -> bool:
        """Add one event. Returns False if the event was dropped."""
        self.events_seen += 1
        if not event.station_id or not valid_coordinates(event.latitude, event.longitude):
            self.events_skipped += 1
            return False

        acc = self._stations.get(event.station_id)
        if acc is None:
            acc = _StationAccumulator(
                name=event.name or f"Station {event.station_id}",
                latitude=float(event.latitude),
                longitude=float(event.longitude),
            )
            self._stations[event.station_id] = acc

        riders = max(0, int(event.rider_count or 0))
        acc.add(event.timestamp.weekday(), event.timestamp.hour, riders)
        return True

    def add_events(self, events: Iterable[RidershipEvent]) -> None:
        for event in events:
            self.add_event(event)

    def merge(self, other: "RidershipProfileBuilder") -> None:
        """Fold another builder's accumulators into this one."""
        for station_id, acc in other._stations.items():
            mine = self._stations.get(station_id)
            if mine is None:
                # Copy so later merges don't mutate the other builder
                mine = _StationAccumulator(acc.name, acc.latitude, acc.longitude)
                self._stations[station_id] = mine
            mine.merge(acc)
        self.events_seen += other.events_seen
        self.events_skipped += other.events_skipped

    def build(self) -> Dict[str, StationProfile]:
        """Compute mean and population standard deviation for every bucket."""
        profiles: Dict[str, StationProfile] = {}
        for station_id, acc in self._stations.items():
            hourly = [[0] * HOURS_PER_DAY for _ in DAY_NAMES]
            stddev = [[0] * HOURS_PER_DAY for _ in DAY_NAMES]
            for day in range(len(DAY_NAMES)):
                for hour in range(HOURS_PER_DAY):
                    count = acc.counts[day][hour]
                    if count == 0:
                        continue
                    mean = acc.sums[day][hour] / count
                    variance = acc.sum_sq[day][hour] / count - mean * mean
                    hourly[day][hour] = round_half_up(mean)
                    stddev[day][hour] = round_half_up(math.sqrt(max(0.0, variance)))

            profiles[station_id] = StationProfile(
                station_id=station_id,
                name=acc.name,
                latitude=acc.latitude,
                longitude=acc.longitude,
                hourly=hourly,
                stddev=stddev,
            )

        if self.events_skipped:
            logger.debug(f"Skipped {self.events_skipped} events with missing id or coordinates")
        logger.info(f"Built ridership profiles for {len(profiles)} stations from {self.events_seen} events")
        return profiles


def build_ridership_profiles(
    events: Iterable[RidershipEvent],
    partitions: Optional[List[Iterable[RidershipEvent]]] = None,
) -> Dict[str, StationProfile]:
    """
    Build station profiles from an event log.

    Args:
        events: Raw ridership events. An empty source yields an empty mapping.
        partitions: Optional additional event partitions accumulated separately
            and merged in order after `events`.

    Returns:
        Dictionary of station_id -> StationProfile.
    """
    builder = RidershipProfileBuilder()
    builder.add_events(events)
    for partition in partitions or []:
        part_builder = RidershipProfileBuilder()
        part_builder.add_events(partition)
        builder.merge(part_builder)

    if builder.events_seen == 0:
        logger.warning("Ridership source was empty; emitting an empty profile set")
    return builder.build()
