"""Apply the progression schema migrations once the database accepts connections.

Run during deploys before the progression service starts taking completion
traffic. After an upgrade the script checks that every table the repository
writes to exists, so a half-applied migration fails the deploy instead of the
first completion request.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import List, Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from skillroads.db import models  # noqa: F401  (registers the progression tables)
from skillroads.db.base import Base
from skillroads.logging_config import configure_logging

LOGGER = logging.getLogger("skillroads.migrations")
URL_PLACEHOLDER = "%(SKILLROADS_DATABASE_URL)s"
DEFAULT_TIMEOUT = int(os.getenv("SKILLROADS_DB_MIGRATION_TIMEOUT", "60"))
DEFAULT_POLL_INTERVAL = float(os.getenv("SKILLROADS_DB_MIGRATION_POLL_INTERVAL", "3"))
BACKEND_ROOT = Path(__file__).resolve().parent.parent


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Upgrade the progression schema after a readiness check.")
    parser.add_argument(
        "--revision",
        default=os.getenv("SKILLROADS_DB_MIGRATION_REVISION", "head"),
        help="Revision identifier to upgrade to (default: head).",
    )
    parser.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT, help="Seconds to wait for the database.")
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL,
        help="Seconds between readiness probes.",
    )
    parser.add_argument("--config", default=str(BACKEND_ROOT / "alembic.ini"), help="Path to alembic.ini.")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--check-only", action="store_true", help="Only wait for the database.")
    mode.add_argument("--current", action="store_true", help="Print the applied revision and exit.")
    return parser.parse_args(argv)


def get_alembic_config(config_path: str) -> Config:
    config = Config(config_path)
    config.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
    return config


def resolve_database_url(config: Config) -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url and url != URL_PLACEHOLDER:
        return url
    env_url = os.getenv("SKILLROADS_DATABASE_URL")
    if not env_url:
        raise RuntimeError("SKILLROADS_DATABASE_URL must be set before running migrations.")
    config.set_main_option("sqlalchemy.url", env_url.replace("%", "%%"))
    return env_url


def wait_for_database(database_url: str, *, timeout: int, poll_interval: float) -> None:
    """Poll with ``SELECT 1`` until the database answers or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    engine: Optional[Engine] = None
    last_error: Optional[Exception] = None
    attempts = 0

    try:
        engine = create_engine(database_url, pool_pre_ping=True)
        while time.monotonic() < deadline:
            attempts += 1
            try:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                LOGGER.info("Database reachable after %s probe(s).", attempts)
                return
            except OperationalError as exc:
                last_error = exc
                LOGGER.warning("Database not ready (probe %s): %s", attempts, exc)
            except SQLAlchemyError as exc:
                last_error = exc
                LOGGER.error("Database error during readiness probe: %s", exc)
                break
            time.sleep(poll_interval)
    finally:
        if engine is not None:
            engine.dispose()

    raise RuntimeError(f"Database did not become ready within {timeout}s.") from last_error


def missing_tables(database_url: str) -> List[str]:
    """Progression tables declared by the ORM models but absent from the database."""
    engine = create_engine(database_url)
    try:
        present = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    return sorted(set(Base.metadata.tables) - present)


def verify_schema(database_url: str) -> None:
    missing = missing_tables(database_url)
    if missing:
        raise RuntimeError(f"Progression schema is incomplete; missing tables: {', '.join(missing)}")
    LOGGER.info("Progression schema verified (%s tables).", len(Base.metadata.tables))


def run_migrations(
    revision: str,
    *,
    timeout: int,
    poll_interval: float,
    config: Optional[Config] = None,
    check_only: bool = False,
) -> None:
    config = config or get_alembic_config(str(BACKEND_ROOT / "alembic.ini"))
    database_url = resolve_database_url(config)
    wait_for_database(database_url, timeout=timeout, poll_interval=poll_interval)
    if check_only:
        LOGGER.info("Readiness check passed; skipping upgrade.")
        return
    LOGGER.info("Upgrading progression schema to %s", revision)
    command.upgrade(config, revision)
    if revision == "head":
        verify_schema(database_url)


def main(argv: Optional[list[str]] = None) -> int:
    configure_logging()
    args = parse_args(argv)
    config = get_alembic_config(args.config)
    try:
        if args.current:
            resolve_database_url(config)
            command.current(config, verbose=True)
            return 0
        run_migrations(
            args.revision,
            timeout=args.timeout,
            poll_interval=args.poll_interval,
            config=config,
            check_only=args.check_only,
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Migration run failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
