"""Example: print a presence and safety report for the whole subway system."""

import logging
import sys
from datetime import datetime
from pathlib import Path

# Add src to path so we can import eyesonstreet
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from eyesonstreet.live import LiveSignalProvider
from eyesonstreet.models import AVOID, CAUTION
from eyesonstreet.presence import compute_presence
from eyesonstreet.stations import StationDirectory
from eyesonstreet.storage import ModelStore

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def print_report(data_dir: str = "data"):
    """
    Compute presence for the current hour and print the busiest and flagged stations.

    Args:
        data_dir: Directory holding ridership-model.json and crime-model.json
    """
    store = ModelStore()
    store.reload(f"{data_dir}/ridership-model.json", f"{data_dir}/crime-model.json")
    models = store.current()
    if not models.profiles:
        print("No ridership model loaded. Run scripts/build_ridership_model.py first.")
        sys.exit(1)

    directory = StationDirectory()
    try:
        directory.load_from_url()
    except Exception as e:
        logger.warning(f"Station list unavailable, continuing without live trains: {e}")

    provider = LiveSignalProvider(directory)
    signals = provider.snapshot()
    snapshot = compute_presence(models.profiles, models.crime_risk, signals, datetime.now())

    print(f"\n{'=' * 70}")
    print(f"{snapshot.day_of_week} {snapshot.hour:02d}:00{'  [NIGHT MODE]' if snapshot.is_night_mode else ''}")
    print(f"Estimated presence: {snapshot.total_presence:,}")
    if signals.weather:
        print(f"Weather: {signals.weather.condition}")
    stats = snapshot.safety_stats
    print(f"Safety: {stats['safe']} safe, {stats['caution']} caution, {stats['avoid']} avoid")
    print(f"{'=' * 70}\n")

    print("BUSIEST STATIONS:")
    print("-" * 70)
    for s in snapshot.stations[:10]:
        sign = "+" if s.anomaly_score > 0 else ""
        print(f"  {s.name}: {s.ridership:,} riders (baseline {s.baseline:,}, {sign}{round(s.anomaly_score * 100)}%)")

    anomalies = snapshot.anomalies()
    print(f"\nANOMALIES ({len(anomalies)}):")
    print("-" * 70)
    for s in anomalies[:5]:
        print(f"  {s.name}: {s.ridership:,} vs {s.baseline:,}")

    for level in (AVOID, CAUTION):
        flagged = snapshot.stations_at(level)
        print(f"\n{level.upper()} ({len(flagged)}):")
        print("-" * 70)
        for s in flagged[:8]:
            crime = f" ({s.top_crime_type.lower()})" if s.top_crime_type else ""
            disruption = f" [{s.disruption_effect}]" if s.disrupted else ""
            print(f"  {s.name}: {s.ridership} riders/hr, crime risk {round(s.crime_risk * 100)}%{crime}{disruption}")

    alerts = provider.alerts()
    print(f"\nSERVICE ALERTS ({len(alerts)}):")
    print("-" * 70)
    for alert in alerts[:5]:
        routes = ", ".join(alert.affected_routes) or "system"
        print(f"  [{alert.severity.upper()}] {routes}: {alert.header or alert.effect}")

    print("\n" + "=" * 70 + "\n")


if __name__ == "__main__":
    print_report(sys.argv[1] if len(sys.argv) > 1 else "data")
