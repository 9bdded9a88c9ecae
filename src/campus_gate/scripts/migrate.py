# src/campus_gate/scripts/migrate.py
"""Apply Alembic migrations up to head against the configured database."""
from __future__ import annotations

import os

from alembic import command
from alembic.config import Config

from campus_gate.core.settings import settings

MIGRATIONS_DIR = os.path.abspath(
    os.path.join(os.path.dirname(__file__), "..", "..", "..", "migrations")
)


def build_config(url: str | None = None) -> Config:
    """Return an Alembic config pointing at the project's migrations folder."""
    cfg = Config()
    cfg.set_main_option("script_location", MIGRATIONS_DIR)
    # ConfigParser interpolation treats '%' specially.
    cfg.set_main_option("sqlalchemy.url", (url or settings.database_url_sync).replace("%", "%%"))
    return cfg


def run_upgrade_head() -> None:
    command.upgrade(build_config(), "head")


if __name__ == "__main__":
    run_upgrade_head()
