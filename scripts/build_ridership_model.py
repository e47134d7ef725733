"""Build the ridership model from MTA Subway Hourly Ridership data."""

import argparse
import logging
import sys
from pathlib import Path

# Add src to path so we can import eyesonstreet
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from eyesonstreet.config import RidershipConfig
from eyesonstreet.ridership_builder import build_ridership_profiles
from eyesonstreet.sources import SocrataClient, fetch_ridership_events, load_ridership_csv
from eyesonstreet.storage import save_ridership_model

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--output", default="data/ridership-model.json")
    parser.add_argument("--csv", help="Read events from a CSV export instead of the API")
    parser.add_argument("--weeks", type=int, default=RidershipConfig().weeks)
    args = parser.parse_args()

    try:
        if args.csv:
            events = load_ridership_csv(args.csv)
        else:
            events = fetch_ridership_events(SocrataClient(), weeks=args.weeks)
    except Exception as e:
        logger.error(f"Failed to load ridership data: {e}")
        return 1

    logger.info(f"Total events: {len(events)}")
    if not events:
        logger.error("No data returned. Check API availability.")
        return 1

    profiles = build_ridership_profiles(events)
    save_ridership_model(args.output, profiles, weeks=args.weeks)
    return 0


if __name__ == "__main__":
    sys.exit(main())
