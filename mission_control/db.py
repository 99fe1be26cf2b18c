"""Schema bootstrap for the store's backing database.

The API never talks to the database directly; this module exists so the
tables the API expects can be created and kept current from one command.
"""
from __future__ import annotations

import argparse
import logging
from pathlib import Path

from sqlalchemy import Engine, create_engine, insert, select

from mission_control.config import get_settings
from mission_control.models import Base, SchemaMigration

log = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def migration_files(directory: Path = MIGRATIONS_DIR) -> list[Path]:
    """SQL migrations in apply order (file names sort by their numeric prefix)."""
    return sorted(directory.glob("*.sql"))


def applied_migrations(engine: Engine) -> set[str]:
    with engine.connect() as conn:
        return set(conn.execute(select(SchemaMigration.name)).scalars())


def run_migrations(engine: Engine | str, directory: Path = MIGRATIONS_DIR) -> list[str]:
    """Create missing tables, then apply pending SQL migrations once each.

    The SQL files hold PostgreSQL-only statements (triggers, row level
    security) and are skipped on any other dialect. Returns the names of
    the files applied by this call.
    """
    if isinstance(engine, str):
        engine = create_engine(engine)
    Base.metadata.create_all(engine)
    if engine.dialect.name != "postgresql":
        log.info("Skipping SQL migrations on %s", engine.dialect.name)
        return []

    done = applied_migrations(engine)
    applied: list[str] = []
    for path in migration_files(directory):
        if path.name in done:
            continue
        with engine.begin() as conn:
            conn.exec_driver_sql(path.read_text(encoding="utf-8"))
            conn.execute(insert(SchemaMigration).values(name=path.name))
        log.info("Applied migration %s", path.name)
        applied.append(path.name)
    return applied


def main():
    parser = argparse.ArgumentParser(description="Create and migrate the Mission Control tables.")
    parser.add_argument("--database-url", help="Defaults to DATABASE_URL")
    args = parser.parse_args()
    logging.basicConfig(level=get_settings().log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    url = args.database_url or get_settings().database_url
    if not url:
        parser.error("DATABASE_URL is not set (or pass --database-url)")
    applied = run_migrations(url)
    print(f"Schema up to date ({len(applied)} migration(s) applied)")


if __name__ == "__main__":
    main()
