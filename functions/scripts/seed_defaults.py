"""
Seeds the default departments, auto-assignment rules and automation rules.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.dependencies import get_db_client
from triage import assignment, automation

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed default civic routing data")
    parser.add_argument(
        "--assign",
        action="store_true",
        help="Also route every currently unassigned issue",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    db = get_db_client()
    departments = assignment.seed_default_departments(db)
    rules = assignment.seed_default_rules(db)
    automation_rules = automation.seed_default_automation_rules(db)
    logger.info(
        "Seeded %d departments, %d assignment rules, %d automation rules",
        departments,
        rules,
        automation_rules,
    )

    if args.assign:
        assigned = assignment.run_bulk_auto_assign(db)
        logger.info("Assigned %d issues", assigned)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
