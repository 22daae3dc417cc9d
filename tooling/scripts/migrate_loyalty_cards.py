#!/usr/bin/env python3
"""Upgrade loyalty cards created before rewards were tracked separately.

Intended usage: run once per environment after adding the ``availableRewards``,
``totalRedeemed`` and ``schemaVersion`` attributes to the cards collection.

Example:
    python tooling/scripts/migrate_loyalty_cards.py --dry-run

Use ``--dry-run`` to report what would change without writing to the store.
``--validate`` only checks that every card already carries reward counters.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Migrate loyalty cards to the reward schema")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute the migration without updating any card.",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Only report cards that still need migrating.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of cards to load (defaults to STORE_LIST_LIMIT).",
    )
    return parser.parse_args()


async def _run(dry_run: bool, validate: bool, limit: int | None) -> int:
    repo_root = Path(__file__).resolve().parents[2]
    package_src = repo_root / "src"
    if str(package_src) not in sys.path:
        sys.path.insert(0, str(package_src))

    from cafe_cards.core.logging import configure_logging  # type: ignore import-position
    from cafe_cards.services.cards.migration import (  # type: ignore import-position
        migrate_loyalty_cards,
        validate_migration,
    )
    from cafe_cards.services.store import AppwriteDocumentStore, StoreError  # type: ignore import-position

    configure_logging(service_name="cafe-cards-migration")

    async with AppwriteDocumentStore.from_settings() as store:
        try:
            if validate:
                report = await validate_migration(store, limit=limit)
                logger.success(
                    "Loyalty card validation completed",
                    valid=report.valid_count,
                    invalid=report.invalid_count,
                )
                return 0 if report.valid else 1

            summary = await migrate_loyalty_cards(store, limit=limit, dry_run=dry_run)
        except StoreError as exc:
            logger.error("Could not load loyalty cards", code=exc.code, error=exc.message)
            return 1

    logger.success("Loyalty card migration completed", **summary.as_dict())
    return 1 if summary.error_count else 0


def main() -> int:
    args = parse_args()
    if args.limit is not None and args.limit <= 0:
        logger.error("Limit must be positive", limit=args.limit)
        return 1
    return asyncio.run(_run(args.dry_run, args.validate, args.limit))


if __name__ == "__main__":
    sys.exit(main())
