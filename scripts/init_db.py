#!/usr/bin/env python3
"""
Database initialization script for the mailing list.

Creates the SQLite subscriber table.

Usage:
    python scripts/init_db.py [--db-path PATH] [--seed EMAIL ...]

Options:
    --db-path PATH    Path to SQLite database file (default: MAILINGLIST_DB or list.db)
    --seed EMAIL      Subscribe these addresses (existing ones are skipped)

This script is idempotent - safe to run multiple times.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from mailinglist.config import get_settings
from mailinglist.storage.database import DuplicateEmailError, EmailDatabase, StorageError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def init_database(db_path: str, seed: list[str]) -> bool:
    """
    Initialize subscriber database schema and optionally seed addresses.

    Args:
        db_path: Path to SQLite database file
        seed: Addresses to subscribe

    Returns:
        bool: True if initialization succeeded
    """
    db = EmailDatabase(db_path=db_path)
    try:
        logger.info(f"Initializing subscriber database at {db_path}")
        await db.initialize()

        created = 0
        for email in seed:
            try:
                await db.create_email(email)
                created += 1
            except DuplicateEmailError:
                logger.info("Seed address already subscribed - skipping")
        if seed:
            logger.info(f"✓ Seeded {created} of {len(seed)} addresses")

        stats = await db.get_stats()
        logger.info(
            f"✓ emails: {stats['total']} rows "
            f"({stats['active']} active, {stats['opted_out']} opted out, "
            f"{stats['confirmed']} confirmed)"
        )
        return True

    except StorageError as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        return False

    finally:
        db.close()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Initialize mailing list database schema")
    parser.add_argument(
        "--db-path",
        default=None,
        help="Path to SQLite database file (default: MAILINGLIST_DB or list.db)",
    )
    parser.add_argument(
        "--seed",
        nargs="*",
        default=[],
        metavar="EMAIL",
        help="Subscribe these addresses after creating the schema",
    )

    args = parser.parse_args()
    db_path = args.db_path or get_settings().database.db

    success = asyncio.run(init_database(db_path, args.seed))

    if not success:
        logger.error("❌ Database initialization failed")
        sys.exit(1)

    logger.info("=== Database Ready ===")
    logger.info(f"Database path: {Path(db_path).absolute()}")


if __name__ == "__main__":
    main()
