"""Run the message bus schema migrations programmatically."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


def upgrade_head(db_path: Path) -> None:
    """Bring the bus database at ``db_path`` to the latest schema revision.

    The scripts ship inside the package, so no ``alembic.ini`` is read and
    the caller's logging handlers stay in place.
    """

    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    config.attributes["configure_logger"] = False
    command.upgrade(config, "head")
