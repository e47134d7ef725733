"""Tests for the crime risk builder."""

import unittest
from dataclasses import replace
from datetime import datetime, timedelta
import sys
from pathlib import Path

# Add src to path so we can import eyesonstreet
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from eyesonstreet.config import CrimeRiskConfig
from eyesonstreet.crime_builder import (
    EmptyIncidentLogError,
    absolute_risk_tier,
    build_crime_risk,
    recency_weight,
    top_risk_stations,
)
from eyesonstreet.models import Incident, StationProfile, empty_grid

NOW = datetime(2024, 6, 1, 12, 0)
# Effectively no decay, so weights are ~1.0 regardless of incident age
NO_DECAY = CrimeRiskConfig(half_life_days=1e12)


def station(station_id, lat, lon, name=None):
    return StationProfile(
        station_id=station_id,
        name=name or f"Station {station_id}",
        latitude=lat,
        longitude=lon,
        hourly=empty_grid(),
        stddev=empty_grid(),
    )


def incident(lat, lon, hour=23, category="ROBBERY", days_ago=1):
    occurred = (NOW - timedelta(days=days_ago)).replace(hour=hour, minute=0)
    return Incident(category=category, occurred_at=occurred, latitude=lat, longitude=lon)


class TestRecencyWeight(unittest.TestCase):
    """Test exponential recency decay."""

    def test_today_weighs_one(self):
        self.assertEqual(recency_weight(0), 1.0)

    def test_half_life(self):
        self.assertAlmostEqual(recency_weight(30), 0.5, places=6)
        self.assertAlmostEqual(recency_weight(60), 0.25, places=6)

    def test_strictly_decreasing_and_positive(self):
        weights = [recency_weight(d) for d in (0, 1, 10, 100, 1000)]
        for newer, older in zip(weights, weights[1:]):
            self.assertGreater(newer, older)
        self.assertGreater(weights[-1], 0.0)

    def test_future_timestamps_clamp_to_one(self):
        self.assertEqual(recency_weight(-3), 1.0)


class TestRiskTier(unittest.TestCase):
    """Test absolute tier thresholds."""

    def test_thresholds(self):
        thresholds = CrimeRiskConfig().tier_thresholds
        self.assertEqual(absolute_risk_tier(8.0, thresholds), "critical")
        self.assertEqual(absolute_risk_tier(4.0, thresholds), "elevated")
        self.assertEqual(absolute_risk_tier(1.5, thresholds), "moderate")
        self.assertEqual(absolute_risk_tier(1.49, thresholds), "low")
        self.assertEqual(absolute_risk_tier(0.0, thresholds), "low")


class TestSpatialJoin(unittest.TestCase):
    """Test radius inclusion around stations."""

    def setUp(self):
        self.stations = {"A": station("A", 40.7500, -73.9900)}

    def test_incident_at_station_is_included(self):
        risk = build_crime_risk(self.stations, [incident(40.7500, -73.9900)], NO_DECAY, now=NOW)
        self.assertEqual(risk["A"].total, 1)

    def test_incident_inside_radius_is_included(self):
        # ~390m north
        risk = build_crime_risk(self.stations, [incident(40.7535, -73.9900)], NO_DECAY, now=NOW)
        self.assertEqual(risk["A"].total, 1)

    def test_incident_in_box_but_outside_radius_is_excluded(self):
        # ~433m north, still inside the 0.004 degree box; needs a second
        # station so the build is not all-zero by construction
        stations = dict(self.stations, B=station("B", 40.7539, -73.9900))
        risk = build_crime_risk(stations, [incident(40.7539, -73.9900)], NO_DECAY, now=NOW)
        self.assertEqual(risk["A"].total, 0)
        self.assertEqual(risk["B"].total, 1)

    def test_far_incident_is_excluded(self):
        # ~1.1km away
        risk = build_crime_risk(self.stations, [incident(40.7600, -73.9900)], NO_DECAY, now=NOW)
        self.assertEqual(risk["A"].total, 0)
        self.assertEqual(risk["A"].window_risk["latenight"], 0.0)

    def test_overlapping_catchments_count_for_each_station(self):
        stations = {
            "A": station("A", 40.7500, -73.9900),
            "B": station("B", 40.7520, -73.9900),
        }
        risk = build_crime_risk(stations, [incident(40.7510, -73.9900)], NO_DECAY, now=NOW)
        self.assertEqual(risk["A"].total, 1)
        self.assertEqual(risk["B"].total, 1)

    def test_incident_with_bad_coordinates_is_dropped(self):
        risk = build_crime_risk(
            self.stations,
            [incident(0.0, 0.0), incident(float("nan"), -73.99), incident(40.75, -73.99)],
            NO_DECAY,
            now=NOW,
        )
        self.assertEqual(risk["A"].total, 1)


class TestNormalization(unittest.TestCase):
    """Test per-window normalization and overall risk."""

    def setUp(self):
        self.stations = {
            "A": station("A", 40.7500, -73.9900),
            "B": station("B", 40.7000, -73.9000),
            "C": station("C", 40.6500, -73.9500),
        }

    def test_max_station_is_one_and_all_in_range(self):
        incidents = [incident(40.7500, -73.9900) for _ in range(4)] + [incident(40.7000, -73.9000)]
        risk = build_crime_risk(self.stations, incidents, NO_DECAY, now=NOW)

        self.assertEqual(risk["A"].window_risk["latenight"], 1.0)
        self.assertEqual(risk["B"].window_risk["latenight"], 0.25)
        self.assertEqual(risk["C"].window_risk["latenight"], 0.0)
        for r in risk.values():
            for value in r.window_risk.values():
                self.assertGreaterEqual(value, 0.0)
                self.assertLessEqual(value, 1.0)

    def test_windows_normalize_independently(self):
        incidents = [
            incident(40.7500, -73.9900, hour=23),
            incident(40.7500, -73.9900, hour=23),
            incident(40.7000, -73.9000, hour=9),
        ]
        risk = build_crime_risk(self.stations, incidents, NO_DECAY, now=NOW)

        self.assertEqual(risk["A"].window_risk["latenight"], 1.0)
        self.assertEqual(risk["B"].window_risk["morning"], 1.0)
        self.assertEqual(risk["A"].window_risk["morning"], 0.0)
        self.assertEqual(risk["C"].window_risk["afternoon"], 0.0)

    def test_overall_risk_weights_late_night(self):
        """One late-night incident counts four times a morning incident."""
        incidents = [
            incident(40.7500, -73.9900, hour=2),
            incident(40.7000, -73.9000, hour=8),
        ]
        risk = build_crime_risk(self.stations, incidents, NO_DECAY, now=NOW)

        self.assertEqual(risk["A"].overall_risk, 1.0)
        self.assertEqual(risk["B"].overall_risk, 0.25)
        self.assertEqual(top_risk_stations(risk, limit=1)[0].station_id, "A")

    def test_recency_lowers_older_incidents(self):
        incidents = [
            incident(40.7500, -73.9900, days_ago=1),
            incident(40.7000, -73.9000, days_ago=31),
        ]
        risk = build_crime_risk(self.stations, incidents, now=NOW)

        self.assertEqual(risk["A"].window_risk["latenight"], 1.0)
        self.assertAlmostEqual(risk["B"].window_risk["latenight"], 0.5, places=2)

    def test_total_is_unweighted(self):
        incidents = [incident(40.7500, -73.9900, days_ago=90) for _ in range(3)]
        risk = build_crime_risk(self.stations, incidents, now=NOW)

        self.assertEqual(risk["A"].total, 3)
        self.assertLess(risk["A"].total_weighted, 1.0)
        self.assertEqual(risk["A"].risk_tier, "low")


class TestCrimeRiskDetails(unittest.TestCase):
    """Test crime types, tiers, hourly curve and failure modes."""

    def setUp(self):
        self.stations = {"A": station("A", 40.7500, -73.9900), "B": station("B", 40.7000, -73.9000)}

    def test_top_crime_type_by_weight(self):
        incidents = [
            incident(40.75, -73.99, category="FELONY ASSAULT"),
            incident(40.75, -73.99, category="ROBBERY"),
            incident(40.75, -73.99, category="ROBBERY"),
        ]
        risk = build_crime_risk(self.stations, incidents, NO_DECAY, now=NOW)
        self.assertEqual(risk["A"].top_crime_type, "ROBBERY")
        self.assertIsNone(risk["B"].top_crime_type)

    def test_top_crime_type_tie_keeps_first_seen(self):
        incidents = [
            incident(40.75, -73.99, category="FELONY ASSAULT"),
            incident(40.75, -73.99, category="ROBBERY"),
        ]
        risk = build_crime_risk(self.stations, incidents, NO_DECAY, now=NOW)
        self.assertEqual(risk["A"].top_crime_type, "FELONY ASSAULT")

    def test_risk_tier_from_weighted_total(self):
        incidents = [incident(40.75, -73.99) for _ in range(9)]
        risk = build_crime_risk(self.stations, incidents, NO_DECAY, now=NOW)
        self.assertEqual(risk["A"].risk_tier, "critical")
        self.assertEqual(risk["B"].risk_tier, "low")

    def test_empty_incident_log_raises(self):
        with self.assertRaises(EmptyIncidentLogError):
            build_crime_risk(self.stations, [], now=NOW)

    def test_no_whitelisted_incidents_raises(self):
        with self.assertRaises(EmptyIncidentLogError):
            build_crime_risk(self.stations, [incident(40.75, -73.99, category="PETIT LARCENY")], now=NOW)

    def test_no_located_incidents_raises(self):
        incidents = [incident(float("nan"), -73.99), incident(0.0, 0.0)]
        with self.assertRaises(EmptyIncidentLogError):
            build_crime_risk(self.stations, incidents, now=NOW)

    def test_categories_filter(self):
        incidents = [
            incident(40.75, -73.99, category="PETIT LARCENY"),
            incident(40.75, -73.99, category="ROBBERY"),
        ]
        risk = build_crime_risk(self.stations, incidents, NO_DECAY, now=NOW)
        self.assertEqual(risk["A"].total, 1)

        everything = replace(NO_DECAY, categories=None)
        risk = build_crime_risk(self.stations, incidents, everything, now=NOW)
        self.assertEqual(risk["A"].total, 2)

    def test_hourly_curve(self):
        config = replace(NO_DECAY, hourly_curve=True)
        incidents = [incident(40.75, -73.99, hour=1), incident(40.70, -73.90, hour=20)]
        risk = build_crime_risk(self.stations, incidents, config, now=NOW)

        self.assertEqual(len(risk["A"].hourly_risk), 24)
        self.assertEqual(risk["A"].hourly_risk[1], 1.0)
        self.assertEqual(risk["A"].hourly_risk[20], 0.0)
        self.assertEqual(risk["A"].risk_for_hour(1), 1.0)
        self.assertEqual(risk["B"].risk_for_hour(20), 1.0)

    def test_window_lookup_without_hourly_curve(self):
        risk = build_crime_risk(self.stations, [incident(40.75, -73.99, hour=23)], NO_DECAY, now=NOW)
        self.assertIsNone(risk["A"].hourly_risk)
        self.assertEqual(risk["A"].risk_for_hour(3), 1.0)
        self.assertEqual(risk["A"].risk_for_hour(14), 0.0)

    def test_parallel_build_matches_sequential(self):
        incidents = [
            incident(40.75 + (i % 5) * 0.0005, -73.99, hour=i % 24, days_ago=i % 40,
                     category=("ROBBERY", "FELONY ASSAULT")[i % 2])
            for i in range(40)
        ] + [incident(40.70, -73.90, hour=i % 24) for i in range(10)]

        sequential = build_crime_risk(self.stations, incidents, now=NOW)
        parallel = build_crime_risk(self.stations, incidents, replace(CrimeRiskConfig(), workers=3), now=NOW)

        for station_id in sequential:
            s, p = sequential[station_id], parallel[station_id]
            self.assertEqual(s.total, p.total)
            self.assertEqual(s.window_risk, p.window_risk)
            self.assertEqual(s.top_crime_type, p.top_crime_type)
            self.assertAlmostEqual(s.total_weighted, p.total_weighted, places=3)

    def test_invalid_config(self):
        with self.assertRaises(ValueError):
            CrimeRiskConfig(half_life_days=0)
        with self.assertRaises(ValueError):
            CrimeRiskConfig(workers=0)


if __name__ == "__main__":
    unittest.main()
