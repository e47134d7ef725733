"""Build the station crime risk model from NYPD complaint data."""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

# Add src to path so we can import eyesonstreet
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from eyesonstreet.config import CrimeRiskConfig
from eyesonstreet.crime_builder import EmptyIncidentLogError, build_crime_risk, top_risk_stations
from eyesonstreet.sources import SocrataClient, fetch_incidents, load_incidents_csv
from eyesonstreet.storage import load_ridership_model, save_crime_model

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--ridership", default="data/ridership-model.json", help="Ridership model with station locations")
    parser.add_argument("--output", default="data/crime-model.json")
    parser.add_argument("--csv", help="Read incidents from a CSV export instead of the API")
    parser.add_argument("--workers", type=int, default=1)
    parser.add_argument("--hourly", action="store_true", help="Also build the per-hour risk curve")
    args = parser.parse_args()

    config = replace(CrimeRiskConfig(), workers=args.workers, hourly_curve=args.hourly)

    stations, _ = load_ridership_model(args.ridership)
    if not stations:
        logger.error("No stations in the ridership model; build it first")
        return 1

    try:
        if args.csv:
            incidents = load_incidents_csv(args.csv)
        else:
            incidents = fetch_incidents(SocrataClient(), config.categories, months=config.months_back)
        logger.info(f"Total crimes fetched: {len(incidents)}")
        risk = build_crime_risk(stations, incidents, config)
    except EmptyIncidentLogError as e:
        logger.error(f"{e}. Check API availability.")
        return 1
    except Exception as e:
        logger.error(f"Failed to build crime model: {e}", exc_info=True)
        return 1

    logger.info("Top 10 highest risk stations:")
    for r in top_risk_stations(risk):
        logger.info(
            f"  {r.name}: risk={r.overall_risk}, total={r.total}, "
            f"latenight={r.window_sums['latenight']:.2f}, top={r.top_crime_type}"
        )

    save_crime_model(args.output, risk, {
        "monthsBack": config.months_back,
        "crimeTypes": list(config.categories or []),
        "radiusMeters": config.radius_meters,
        "halfLifeDays": config.half_life_days,
        "totalCrimes": len(incidents),
    })
    return 0


if __name__ == "__main__":
    sys.exit(main())
