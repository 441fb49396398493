# WORKFLOW: Seed the reference tables a fresh installation needs before the first TARIC sync.
# Used by: Initial setup, development setup, offline demos
# Functions:
# 1. setup_directories() - Create the TARIC data and log directories
# 2. setup_database() - Initialize database schema and tables
# 3. seed_overrides() - Load country-specific anti-dumping overrides (CN by default)
# 4. seed_common_rates() - Load common third-country rates into the local tariff mirror
# 5. validate_setup() - Verify connectivity and report row counts
#
# Bootstrap flow: Directories -> Database setup -> Overrides -> Common rates -> Validation -> Ready
# Seeded mirror rows are marked data_source="reference_seed"; a later TARIC sync coalesces over them.

"""
Reference data bootstrap for the Tariff Engine API.
"""

import sys
import json
import logging
import argparse
from pathlib import Path
from typing import Any, Dict, List

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy.orm import Session  # noqa: E402

from core.config import settings  # noqa: E402
from db import repository  # noqa: E402
from db.session import check_db_connection, get_session_factory, init_db  # noqa: E402

logger = logging.getLogger(__name__)

SEED_DIR = project_root / "data" / "seed"
OVERRIDES_FILE = "anti_dumping_overrides.json"
COMMON_RATES_FILE = "common_duty_rates.json"
SEED_SOURCE = "reference_seed"


def setup_directories() -> None:
    """Create necessary data directories if they don't exist."""
    for directory in (settings.taric_data_dir, "logs"):
        Path(directory).mkdir(parents=True, exist_ok=True)
        logger.info(f"Created directory: {directory}")


def setup_database() -> None:
    try:
        logger.info("Setting up database schema")
        init_db()
        logger.info("Database setup completed")
    except Exception as e:
        logger.error(f"Failed to setup database: {e}")
        raise


def load_seed_file(name: str, seed_dir: Path = SEED_DIR) -> List[Dict[str, Any]]:
    path = seed_dir / name
    with path.open(encoding="utf-8") as f:
        return json.load(f)


def override_rows(entries: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Flatten heading entries into override rows grouped by origin.

    Each measure inherits the heading code and the heading descriptions of its entry.
    """
    rows: Dict[str, List[Dict[str, Any]]] = {}
    for entry in entries:
        origin = entry["origin_country_code"].upper()
        for measure in entry.get("measures", []):
            rows.setdefault(origin, []).append({
                "heading": entry["heading"],
                "heading_description": entry.get("heading_description"),
                "heading_description_cn": entry.get("heading_description_cn"),
                **measure,
            })
    return rows


def common_rate_records(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Heading rows (4-digit hs_code) and their 8-digit sub-codes as origin-less mirror records."""
    records = []
    for entry in entries:
        codes = [(entry["heading"], entry)] + [(sub["hs_code"], sub) for sub in entry.get("sub_codes", [])]
        for code, item in codes:
            records.append({
                "hs_code": code,
                "hs_code_10": code.ljust(10, "0"),
                "goods_description": item["description"],
                "goods_description_cn": item.get("description_cn"),
                "duty_rate": item["rate"],
                "third_country_duty": item["rate"],
                "vat_rate": settings.vat_standard_rate,
                "measure_type": "Third country duty",
                "measure_code": "103",
                "data_source": SEED_SOURCE,
                "is_active": True,
            })
    return records


def seed_overrides(db: Session, seed_dir: Path = SEED_DIR) -> int:
    total = 0
    for origin, rows in override_rows(load_seed_file(OVERRIDES_FILE, seed_dir)).items():
        count = repository.replace_overrides(db, origin, rows)
        logger.info(f"Loaded {count} anti-dumping overrides for {origin}")
        total += count
    return total


def seed_common_rates(db: Session, seed_dir: Path = SEED_DIR) -> Dict[str, int]:
    counts = repository.upsert_tariff_rates(db, common_rate_records(load_seed_file(COMMON_RATES_FILE, seed_dir)))
    logger.info(
        f"Common duty rates: {counts['inserted']} inserted, {counts['updated']} updated, {counts['failed']} failed"
    )
    return counts


def validate_setup() -> bool:
    """
    Validate that all components are working correctly.

    Returns:
        True if validation passes, False otherwise
    """
    try:
        logger.info("Validating setup")

        if not check_db_connection():
            logger.error("Database connection validation failed")
            return False
        logger.info("Database connection validated")

        with get_session_factory()() as db:
            stats = repository.get_tariff_stats(db)
            overrides = len(repository.list_overrides(db))

        logger.info(f"Database contains {stats['total']} tariff rows and {overrides} anti-dumping overrides")
        if stats["total"] == 0:
            logger.warning("No tariff rows found, run a TARIC sync or seed common rates")
        if overrides == 0:
            logger.warning("No anti-dumping overrides found")

        logger.info("Setup validation completed successfully")
        return True

    except Exception as e:
        logger.error(f"Setup validation failed: {e}")
        return False


def main():
    parser = argparse.ArgumentParser(description='Seed Tariff Engine reference data')
    parser.add_argument('--skip-rates', action='store_true', help='Only load anti-dumping overrides')
    parser.add_argument('--validate-only', action='store_true', help='Only validate existing setup')
    parser.add_argument('--seed-dir', type=Path, default=SEED_DIR, help='Directory holding the seed JSON files')

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    try:
        logger.info("Starting Tariff Engine reference data bootstrap")

        if args.validate_only:
            return 0 if validate_setup() else 1

        setup_directories()
        setup_database()

        with get_session_factory()() as db:
            seed_overrides(db, args.seed_dir)
            if not args.skip_rates:
                seed_common_rates(db, args.seed_dir)

        return 0 if validate_setup() else 1

    except Exception as e:
        logger.error(f"Bootstrap failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
