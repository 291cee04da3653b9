"""Migrate the settlement database to the latest schema and seed its singletons."""

from __future__ import annotations

import argparse
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from powerpot.db.engine import get_sessionmaker, make_engine
from powerpot.settlement.locking import DEFAULT_LOCK_NAME
from powerpot.settlement.store import SettlementStore

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def upgrade_db(database_url: str | None = None, target_revision: str = "head") -> None:
    """Apply Alembic migrations up to ``target_revision``."""
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    if database_url:
        alembic_cfg.cmd_opts = argparse.Namespace(x=[f"db_url={database_url}"])
    command.upgrade(alembic_cfg, target_revision)


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--database-url", help="Defaults to DB_URL from the environment.")
    parser.add_argument("--revision", default="head", help="Alembic revision to upgrade to.")
    args = parser.parse_args(argv)

    upgrade_db(args.database_url, args.revision)

    engine = make_engine(args.database_url)
    try:
        # The migration seeds the pot; the lock row is created here.
        SettlementStore(get_sessionmaker(engine)).bootstrap(lock_name=DEFAULT_LOCK_NAME)
        tables = sorted(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    print("Current tables:", ", ".join(tables))


if __name__ == "__main__":
    main()
