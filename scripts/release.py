#!/usr/bin/env python3
"""
Release phase: migrate the schema to head, then seed scopes and the first admin.

Seeding is idempotent. Existing access codes and passwords are never touched,
so this is safe to run on every deploy.

Usage:
  python scripts/release.py [--skip-seed]
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.community.db import normalize_database_url

logger = logging.getLogger("release")


def _database_url() -> str:
    db_url = normalize_database_url(os.environ.get("DATABASE_URL") or "")
    if not db_url:
        raise RuntimeError("DATABASE_URL must be set for a release.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Production releases need a Postgres DATABASE_URL, not sqlite.")
    return db_url


def migrate(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def run_release(*, seed: bool = True) -> None:
    db_url = _database_url()
    logger.info("Release starting (dialect=%s)", db_url.split(":", 1)[0])
    migrate(db_url)
    logger.info("Schema at head")
    if seed:
        from scripts.init_db import seed_only

        seed_only(database_url=db_url)
        logger.info("Seed complete")
    logger.info("Release done")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--skip-seed", action="store_true", help="Only run migrations")
    args = parser.parse_args()
    run_release(seed=not args.skip_seed)


if __name__ == "__main__":
    main()
